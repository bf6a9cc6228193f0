# protocol_engine/actions/builtin.py
from __future__ import annotations

import logging
from typing import Any, Dict, Final, Mapping

from ..models import ActionContext, CreateLayerParams, MarkLocationParams, UpdateSituationParams
from ..protocols import ActionHandler

logger = logging.getLogger(__name__)


async def mark_location(parameters: Mapping[str, Any], ctx: ActionContext) -> str:
    params = MarkLocationParams.model_validate(dict(parameters))
    layer_id = params.layer_id or ctx.default_layer
    element = {
        'type': params.element_type,
        'position': params.position,
        'metadata': {**params.metadata, 'timestamp': ctx.clock()},
    }
    element_id = await ctx.situation.add_element(layer_id, element)
    logger.debug('[%s/%s] marked %s on layer %s', ctx.protocol_id, ctx.step_id, element_id, layer_id)
    return element_id


async def update_situation(parameters: Mapping[str, Any], ctx: ActionContext) -> Dict[str, Any]:
    params = UpdateSituationParams.model_validate(dict(parameters))
    return await ctx.situation.recompute_situation(params.center, params.radius)


async def create_layer(parameters: Mapping[str, Any], ctx: ActionContext) -> Dict[str, Any]:
    params = CreateLayerParams.model_validate(dict(parameters))
    return await ctx.situation.create_layer(params.layer_id, params.name)


BUILTIN_ACTIONS: Final[Dict[str, ActionHandler]] = {
    'mark_location': mark_location,
    'update_situation': update_situation,
    'create_layer': create_layer,
}
