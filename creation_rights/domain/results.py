from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from creation_rights.domain.enums import AnomalyKind, OutcomeStatus


@dataclass(frozen=True)
class ReplicationGap:
    """A dependent copy that did not receive a write whose canonical copy landed."""

    copy: str
    path: str
    reason: str
    queued: bool = False


@dataclass(frozen=True)
class ConcurrencyAnomaly:
    kind: AnomalyKind
    subject: str
    path: str
    detail: str = ""


@dataclass(frozen=True)
class OperationResult:
    status: OutcomeStatus
    value: Any = None
    gaps: tuple[ReplicationGap, ...] = ()
    stage: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != OutcomeStatus.failed

    @classmethod
    def from_gaps(
        cls, value: Any, gaps: list[ReplicationGap] | tuple[ReplicationGap, ...], stage: str | None = None
    ) -> "OperationResult":
        status = OutcomeStatus.partial if gaps else OutcomeStatus.succeeded
        return cls(status=status, value=value, gaps=tuple(gaps), stage=stage)

    @classmethod
    def failed(cls, error: str, stage: str | None = None) -> "OperationResult":
        return cls(status=OutcomeStatus.failed, error=error, stage=stage)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "value": self.value,
            "gaps": [asdict(g) for g in self.gaps],
            "stage": self.stage,
            "error": self.error,
        }


@dataclass(frozen=True)
class WriteOutcome:
    """What a collection write did: the stored item plus any mirror that lagged behind."""

    item: dict[str, Any] | None
    created: bool = False
    gaps: list[ReplicationGap] = field(default_factory=list)


def anomaly_to_dict(a: ConcurrencyAnomaly) -> dict[str, Any]:
    return {"kind": a.kind.value, "subject": a.subject, "path": a.path, "detail": a.detail}
