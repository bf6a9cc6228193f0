from __future__ import annotations
import time
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr, field_validator

__all__ = [
    'ConditionKind', 'ConditionOperator', 'ProtocolCondition', 'ProtocolContext',
    'ProtocolDefinition', 'ProtocolKind', 'ProtocolStep', 'coerce_context', 'now_ms',
]

# Keys of a raw situation snapshot that feed each context sub-map when the
# snapshot does not already carry 'environmental' / 'tactical' sections.
_ENVIRONMENTAL_KEYS: Tuple[str, ...] = ('weather', 'alerts')
_TACTICAL_KEYS: Tuple[str, ...] = ('traffic', 'incidents', 'tacticalElements', 'tactical_elements')


def now_ms() -> int:
    """Wall-clock epoch milliseconds; the time unit of every timestamp in the engine."""
    return time.time_ns() // 1_000_000


class ProtocolKind(str, Enum):
    STANDARD = 'standard'
    EMERGENCY = 'emergency'
    CUSTOM = 'custom'


class ConditionKind(str, Enum):
    ENVIRONMENTAL = 'environmental'
    TACTICAL = 'tactical'
    TEMPORAL = 'temporal'


class ConditionOperator(str, Enum):
    EQUALS = 'equals'
    GREATER = 'greater'
    LESS = 'less'
    CONTAINS = 'contains'


class ProtocolCondition(BaseModel):
    """A boolean predicate over the context (or the clock, for temporal conditions)."""
    model_config = ConfigDict(extra='forbid', frozen=True, populate_by_name=True)

    kind: ConditionKind = Field(..., validation_alias=AliasChoices('kind', 'type'))
    operator: ConditionOperator
    value: Any = Field(None, description='Comparison value.')
    key: Optional[str] = Field(
        None,
        description="Dotted path inside the environmental/tactical sub-map, e.g. 'threat' or 'weather.visibility_km'.",
    )


class ProtocolStep(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description='Unique within the owning protocol.')
    action: str = Field(..., min_length=1, description='Action name interpreted by the ActionDispatcher.')
    parameters: Dict[str, Any] = Field(default_factory=dict)
    next_steps: List[str] = Field(default_factory=list, validation_alias=AliasChoices('next_steps', 'nextSteps'))
    completion_criteria: Optional[List[ProtocolCondition]] = Field(
        None,
        validation_alias=AliasChoices('completion_criteria', 'completionCriteria'),
        description='All must hold for the step to count as complete. None or empty means complete after dispatch.',
    )


class ProtocolDefinition(BaseModel):
    """
    Declarative, graph-shaped procedure.

    The definition is frozen; the structural invariants (at least one step,
    no dangling ``next_steps``) are enforced by ``domain.protocol.validation``
    when the protocol is loaded, not here, so malformed graphs can still be
    represented and reported.
    """
    model_config = ConfigDict(extra='forbid', frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field('', description='Display name; defaults to the id.')
    kind: ProtocolKind = Field(ProtocolKind.STANDARD, validation_alias=AliasChoices('kind', 'type'))
    description: str = ''
    steps: List[ProtocolStep] = Field(default_factory=list)
    conditions: List[ProtocolCondition] = Field(default_factory=list, description='Activation conditions.')

    _steps_by_id: Dict[str, ProtocolStep] = PrivateAttr(default_factory=dict)

    @field_validator('name', mode='before')
    @classmethod
    def _name_or_blank(cls, v: Any) -> str:
        return '' if v is None else v

    def model_post_init(self, __context: Any) -> None:
        index: Dict[str, ProtocolStep] = {}
        for step in self.steps:
            # first declaration wins for duplicated ids
            index.setdefault(step.id, step)
        self._steps_by_id = index

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def first_step(self) -> Optional[ProtocolStep]:
        return self.steps[0] if self.steps else None

    @property
    def step_ids(self) -> FrozenSet[str]:
        return frozenset(self._steps_by_id)

    def get_step(self, step_id: str) -> Optional[ProtocolStep]:
        return self._steps_by_id.get(step_id)


class ProtocolContext(BaseModel):
    """Ephemeral, per-evaluation view of the situation."""
    model_config = ConfigDict(extra='ignore', frozen=True, populate_by_name=True)

    environmental: Optional[Dict[str, Any]] = None
    tactical: Optional[Dict[str, Any]] = None
    active_steps: FrozenSet[str] = Field(
        default_factory=frozenset,
        validation_alias=AliasChoices('active_steps', 'activeSteps'),
    )

    def with_active_steps(self, steps: Iterable[str]) -> 'ProtocolContext':
        return self.model_copy(update={'active_steps': frozenset(steps)})

    @classmethod
    def from_situation_update(cls, update: Any, active_steps: Iterable[str] = ()) -> 'ProtocolContext':
        """
        Shape a situation update into a context.

        Accepts a ``ProtocolContext``, a ``SituationUpdatedSignal`` (or any
        pydantic model with ``environmental``/``tactical`` fields), or a plain
        mapping. A mapping without those sections is folded from its raw
        feed keys (``weather``, ``alerts`` -> environmental; ``traffic``,
        ``incidents``, ``tacticalElements`` -> tactical).
        """
        if isinstance(update, cls):
            return update.with_active_steps(active_steps)
        if isinstance(update, BaseModel):
            data: Dict[str, Any] = update.model_dump()
        elif isinstance(update, Mapping):
            data = dict(update)
        else:
            data = {}

        environmental = data.get('environmental')
        if environmental is None:
            environmental = _fold(data, _ENVIRONMENTAL_KEYS)
        tactical = data.get('tactical')
        if tactical is None:
            tactical = _fold(data, _TACTICAL_KEYS)

        return cls(
            environmental=environmental if isinstance(environmental, Mapping) else None,
            tactical=tactical if isinstance(tactical, Mapping) else None,
            active_steps=frozenset(active_steps),
        )


def _fold(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Optional[Dict[str, Any]]:
    folded = {k: data[k] for k in keys if k in data}
    return folded or None


def coerce_context(value: 'ProtocolContext | Mapping[str, Any] | None') -> ProtocolContext:
    if value is None:
        return ProtocolContext()
    if isinstance(value, ProtocolContext):
        return value
    return ProtocolContext.model_validate(dict(value))
