# protocol_engine/__main__.py
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from configs.config_loader import ConfigLoader
from infrastructure.event_bus.memory_event_bus import MemoryEventBus
from infrastructure.situation.memory_situation_store import InMemorySituationStore
from protocol_engine.engine.main import ProtocolOrchestrator
from protocol_engine.errors import ProtocolEngineError

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='protocol-engine',
        description='Load protocol definitions, activate one and feed it situation updates.',
    )
    parser.add_argument('--protocols', action='append', type=Path, default=None,
                        help='Directory of protocol YAML files (repeatable; defaults to the configured protocol_dirs).')
    parser.add_argument('--activate', action='append', default=[], metavar='PROTOCOL_ID',
                        help='Protocol id to activate (repeatable).')
    parser.add_argument('--context', type=json.loads, default=None,
                        help='Activation context as JSON, e.g. \'{"environmental": {"alert_level": 3}}\'.')
    parser.add_argument('--observe', action='append', default=[], metavar='KIND.KEY=VALUE',
                        help='Stage a feed observation before the updates, e.g. environmental.visibility_km=8.')
    parser.add_argument('--updates', type=int, default=1, help='Number of situation recomputes to drive (default: 1).')
    parser.add_argument('--env', default=None, help='Configuration environment (configs/<env>/engine_config.yaml).')
    parser.add_argument('--log-level', default=None, help='Overrides the configured log level.')
    return parser.parse_args(argv)


def _parse_observation(raw: str) -> tuple[str, str, object]:
    target, sep, value = raw.partition('=')
    kind, dot, key = target.partition('.')
    if not sep or not dot or not key:
        raise ValueError(f"Observation '{raw}' must look like KIND.KEY=VALUE")
    try:
        parsed: object = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    return kind, key, parsed


async def _settle(bus: MemoryEventBus, orchestrator: ProtocolOrchestrator) -> None:
    while True:
        await bus.flush()
        await orchestrator.drain()
        if not bus.get_stats()['pending_dispatches']:
            return


async def run(args: argparse.Namespace) -> int:
    loader = ConfigLoader()
    config = await loader.load_engine_config(args.env)
    logging.getLogger().setLevel(args.log_level.upper() if args.log_level else config.numeric_log_level)

    bus = MemoryEventBus(max_history=config.event_history_size)
    store = InMemorySituationStore(bus, initial_layers=config.initial_layers)
    orchestrator = ProtocolOrchestrator(store, event_bus=bus, config=config)
    await orchestrator.start()

    directories: List[Path] = args.protocols or loader.resolve_protocol_dirs(config)
    for directory in directories:
        loaded = await orchestrator.load_protocols_from_directory(directory)
        print(f'Loaded {len(loaded)} protocol(s) from {directory}: {", ".join(loaded) or "-"}')

    exit_code = 0
    for protocol_id in args.activate:
        try:
            await orchestrator.activate_protocol(protocol_id, args.context)
            print(f'Activated {protocol_id}')
        except ProtocolEngineError as exc:
            print(f'Could not activate {protocol_id}: {exc}', file=sys.stderr)
            exit_code = 1
    await _settle(bus, orchestrator)

    for raw in args.observe:
        kind, key, value = _parse_observation(raw)
        store.observe(kind, key, value)

    for i in range(max(args.updates, 0)):
        await store.recompute_situation()
        await _settle(bus, orchestrator)
        logger.info('Update %d/%d processed', i + 1, args.updates)

    await orchestrator.stop()
    await bus.flush()

    print('\nActive protocols:')
    active = orchestrator.active_protocols()
    if not active:
        print('  (none)')
    for protocol_id, steps in sorted(active.items()):
        print(f'  {protocol_id:<24} active steps: {", ".join(sorted(steps)) or "(idle)"}')
    print('\nElements:')
    for element in store.list_elements():
        print(f'  {element["id"]}  {element.get("type", "?"):<9} {element.get("metadata", {})}')
    return exit_code


def cli(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    args = _parse_args(argv)
    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info('Interrupted')
        code = 130
    sys.exit(code)


if __name__ == '__main__':
    cli()
