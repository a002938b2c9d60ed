"""Reversible operations and the transactional groups that own them."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from cow_history.errors import ApplyError, ValidationError
from cow_history.runtime import telemetry
from cow_history.store import Snapshot, StateProvider, Target, diff_snapshots


class EditKind(str, Enum):
    SET_FIELD = "set_field"
    REMOVE_FIELD = "remove_field"
    RENAME = "rename"
    SPAWN = "spawn"
    DELETE = "delete"
    DUPLICATE = "duplicate"
    REPARENT = "reparent"
    ADD_COMPONENT = "add_component"
    REMOVE_COMPONENT = "remove_component"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class Operation:
    """Atomic reversible edit: ``apply`` writes ``after``, ``revert`` ``before``."""

    target: Target
    before: Snapshot
    after: Snapshot
    description: str
    kind: EditKind = EditKind.CUSTOM
    cost: int = field(init=False, compare=False)

    def __post_init__(self) -> None:
        for snapshot in (self.before, self.after):
            if snapshot.target != self.target:
                raise ValidationError(
                    f"Snapshot for {snapshot.target} does not match {self.target}",
                    target=self.target,
                )
        if self.before.tag != self.after.tag:
            raise ValidationError(
                f"Snapshot tags differ: '{self.before.tag}' vs '{self.after.tag}'",
                target=self.target,
            )
        object.__setattr__(self, "cost", diff_snapshots(self.before, self.after).size)

    @property
    def is_noop(self) -> bool:
        return self.cost == 0

    def apply(self, provider: StateProvider) -> None:
        provider.restore(self.target, self.after)

    def revert(self, provider: StateProvider) -> None:
        provider.restore(self.target, self.before)

    def can_merge(self, newer: "Operation") -> bool:
        """Same target and kind, and ``newer`` starts from exactly the keys
        this operation ended on. Subtree captures whose parent sets differ
        fail the last check."""

        return (
            newer.target == self.target
            and newer.kind is self.kind
            and set(newer.before.keys()) == set(self.after.keys())
        )

    def merged_with(self, newer: "Operation") -> "Operation":
        """Span from this operation's ``before`` to ``newer``'s ``after``."""

        if not self.can_merge(newer):
            raise ValidationError(
                "Only operations with the same target, kind and captured scope "
                "can merge",
                target=self.target,
            )
        return replace(self, after=newer.after)


@dataclass(frozen=True, slots=True)
class OperationGroup:
    """Ordered operations applied and reverted as one undo step."""

    transaction_id: int
    description: str
    operations: Tuple[Operation, ...]
    committed_at: float = 0.0

    @property
    def cost(self) -> int:
        return sum(operation.cost for operation in self.operations)

    @property
    def single(self) -> Optional[Operation]:
        return self.operations[0] if len(self.operations) == 1 else None

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def apply_all(self, provider: StateProvider) -> None:
        """Apply in order; on failure undo this call's progress and re-raise."""

        applied: List[Operation] = []
        for operation in self.operations:
            try:
                operation.apply(provider)
            except ApplyError as exc:
                self._rollback(provider, applied, undo=True, cause=exc)
                raise
            applied.append(operation)

    def revert_all(self, provider: StateProvider) -> None:
        """Revert last-to-first with the same all-or-nothing contract."""

        reverted: List[Operation] = []
        for operation in reversed(self.operations):
            try:
                operation.revert(provider)
            except ApplyError as exc:
                self._rollback(provider, reverted, undo=False, cause=exc)
                raise
            reverted.append(operation)

    def merged_with(self, newer: "OperationGroup") -> "OperationGroup":
        top, incoming = self.single, newer.single
        if top is None or incoming is None:
            raise ValidationError("Only single-operation groups can merge")
        return replace(
            self,
            operations=(top.merged_with(incoming),),
            committed_at=newer.committed_at,
        )

    def _rollback(
        self,
        provider: StateProvider,
        done: List[Operation],
        *,
        undo: bool,
        cause: ApplyError,
    ) -> None:
        for operation in reversed(done):
            try:
                if undo:
                    operation.revert(provider)
                else:
                    operation.apply(provider)
            except ApplyError as rollback_exc:
                cause.rollback_failed = True
                telemetry.record_event(
                    "group.rollback_failed",
                    level="error",
                    data={
                        "transaction": self.transaction_id,
                        "target": str(operation.target),
                        "reason": rollback_exc.reason,
                    },
                )
                return


__all__ = ["EditKind", "Operation", "OperationGroup"]
