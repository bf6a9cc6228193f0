# domain/protocol/validation.py
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Set, TYPE_CHECKING

from .errors import CyclicProtocolError, DanglingStepReferenceError, EmptyProtocolError, StructuralError

if TYPE_CHECKING:
    from .schema import ProtocolDefinition


class ProtocolValidator(ABC):
    @abstractmethod
    def validate(self, protocol: 'ProtocolDefinition') -> List[StructuralError]:
        pass


class GraphReferenceValidator(ProtocolValidator):
    """
    Structural well-formedness: at least one step, and every ``next_steps``
    entry names a step of the same protocol.

    Cycles, unreachable steps and duplicate ids are deliberately not checked.
    """

    def validate(self, protocol: 'ProtocolDefinition') -> List[StructuralError]:
        if not protocol.steps:
            return [EmptyProtocolError(protocol.id)]

        errors: List[StructuralError] = []
        step_ids = {s.id for s in protocol.steps}
        for step in protocol.steps:
            for next_id in step.next_steps:
                if next_id not in step_ids:
                    errors.append(DanglingStepReferenceError(protocol.id, step.id, next_id))
        return errors


class AcyclicGraphValidator(ProtocolValidator):
    """Stricter variant: rejects any cycle in the ``next_steps`` graph."""

    def validate(self, protocol: 'ProtocolDefinition') -> List[StructuralError]:
        edges: Dict[str, List[str]] = {}
        for step in protocol.steps:
            edges.setdefault(step.id, list(step.next_steps))

        done: Set[str] = set()
        for root in edges:
            cycle = self._find_cycle(root, edges, done)
            if cycle:
                return [CyclicProtocolError(protocol.id, cycle)]
        return []

    @staticmethod
    def _find_cycle(root: str, edges: Dict[str, List[str]], done: Set[str]) -> List[str]:
        # iterative DFS; `path` doubles as the visiting set
        if root in done:
            return []
        path: List[str] = [root]
        on_path: Set[str] = {root}
        stack = [iter(edges.get(root, ()))]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                finished = path.pop()
                on_path.discard(finished)
                done.add(finished)
                continue
            if nxt in on_path:
                return path[path.index(nxt):] + [nxt]
            if nxt in done or nxt not in edges:
                continue
            path.append(nxt)
            on_path.add(nxt)
            stack.append(iter(edges[nxt]))
        return []


def get_validators(*, reject_cycles: bool = False) -> Sequence[ProtocolValidator]:
    validators: List[ProtocolValidator] = [GraphReferenceValidator()]
    if reject_cycles:
        validators.append(AcyclicGraphValidator())
    return validators


def validate_protocol(protocol: 'ProtocolDefinition', *, reject_cycles: bool = False) -> None:
    """Raise the first ``StructuralError`` found, or return ``None`` when the protocol is well-formed."""
    for validator in get_validators(reject_cycles=reject_cycles):
        errors = validator.validate(protocol)
        if errors:
            raise errors[0]
