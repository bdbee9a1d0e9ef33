"""Data models for the MoonFRP fleet engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple


class Operation(str, Enum):
    """What a single unit of work does to its target."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    RELOAD = "reload"
    PROBE = "probe"

    @classmethod
    def service_operations(cls) -> tuple["Operation", ...]:
        return (cls.START, cls.STOP, cls.RESTART, cls.RELOAD)


class UnitStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class WorkUnit:
    """One item of a batch. Immutable once enqueued."""

    id: int
    target: str  # service name or host:port
    operation: Operation
    timeout_seconds: float


@dataclass(frozen=True)
class UnitResult:
    """Terminal outcome of a WorkUnit, produced exactly once per unit."""

    unit_id: int
    status: UnitStatus
    detail: str = ""
    completed_at: datetime = field(default_factory=lambda: utc_now())

    @property
    def ok(self) -> bool:
        return self.status is UnitStatus.SUCCESS

    @classmethod
    def success(cls, unit_id: int, detail: str = "") -> "UnitResult":
        return cls(unit_id=unit_id, status=UnitStatus.SUCCESS, detail=detail)

    @classmethod
    def failure(cls, unit_id: int, detail: str) -> "UnitResult":
        return cls(unit_id=unit_id, status=UnitStatus.FAILURE, detail=detail)


@dataclass(frozen=True)
class BatchReport:
    """Aggregate over all UnitResults of one batch.

    ``failures`` holds ``(target, detail)`` pairs in enqueue order.
    """

    total: int
    succeeded: int
    failed: int
    failures: List[Tuple[str, str]] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failed == 0


class FilterKind(str, Enum):
    ALL = "all"
    TYPE = "type"
    TAG = "tag"
    NAME = "name"
    STATUS = "status"


@dataclass(frozen=True)
class TargetFilter:
    """Selector for config files or services.

    Text forms: ``all``, ``type:client``, ``tag:env`` / ``tag:env:prod``,
    ``name:<pattern>``, ``status:active``.
    """

    kind: FilterKind
    value: Optional[str] = None
    tag_value: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "TargetFilter":
        raw = (text or "").strip()
        if not raw or raw == "all":
            return cls(FilterKind.ALL)
        if ":" not in raw:
            raise ValueError(
                f"Invalid filter '{text}'. Use: all, type:<t>, tag:<key>[:<value>], "
                "name:<pattern> or status:<state>"
            )
        kind_text, value = raw.split(":", 1)
        try:
            kind = FilterKind(kind_text.strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid filter type: {kind_text}. Use: all, type, tag, name or status"
            ) from None
        value = value.strip()
        if not value:
            raise ValueError(f"Filter '{text}' is missing a value")
        if kind is FilterKind.TAG and ":" in value:
            key, tag_value = value.split(":", 1)
            return cls(kind, key, tag_value)
        return cls(kind, value)

    def __str__(self) -> str:
        if self.kind is FilterKind.ALL:
            return "all"
        if self.tag_value is not None:
            return f"{self.kind.value}:{self.value}:{self.tag_value}"
        return f"{self.kind.value}:{self.value}"


@dataclass(frozen=True)
class FieldMutation:
    """Set one dotted field path to a value."""

    field_path: str
    value: Any


@dataclass(frozen=True)
class ReplaceBody:
    """Replace the whole file content."""

    body: str


@dataclass(frozen=True)
class TransactionPlan:
    """A proposed mutation over every file the filter selects."""

    filter: TargetFilter
    mutation: FieldMutation | ReplaceBody
    dry_run: bool = False

    @classmethod
    def set_field(
        cls, filter: TargetFilter, field_path: str, value: Any, dry_run: bool = False
    ) -> "TransactionPlan":
        return cls(filter=filter, mutation=FieldMutation(field_path, value), dry_run=dry_run)


class ValidationState(str, Enum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"


@dataclass
class StagedChange:
    """One file under transaction. Never outlives a single ``apply`` call."""

    original_path: Path
    scratch_path: Path
    config_type: str
    state: ValidationState = ValidationState.PENDING
    reason: Optional[str] = None
    backup_path: Optional[Path] = None
    previews: List["FieldChange"] = field(default_factory=list)
    unchanged: bool = False


@dataclass(frozen=True)
class FieldChange:
    path: Path
    field_path: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of a transaction.

    Invariant: ``committed`` is False implies no original file was touched.
    """

    committed: bool
    changed_files: List[Path] = field(default_factory=list)
    validation_errors: List[Tuple[Path, str]] = field(default_factory=list)
    dry_run: bool = False
    previews: List[FieldChange] = field(default_factory=list)
    warnings: List[Tuple[Path, str]] = field(default_factory=list)
    targets: List[Path] = field(default_factory=list)


@dataclass
class CacheEntry:
    """Cached computed summary. ``refreshing`` guards at most one refresh."""

    payload: Any = None
    generated_at: float = 0.0
    ttl_seconds: float = 5.0
    refreshing: bool = False

    @property
    def empty(self) -> bool:
        return self.payload is None


class EngineError(RuntimeError):
    """The engine itself could not run (infrastructure failure)."""


class SupervisorUnavailable(EngineError):
    """The service supervisor cannot be reached at all."""


class TransactionError(EngineError):
    """Staging or commit I/O failed; originals are left as they were."""


class CacheError(EngineError):
    """The cache could neither be computed nor loaded."""


class IndexUnavailable(EngineError):
    """The config index database cannot be opened or queried."""


class BatchCancelled(EngineError):
    """A batch was interrupted; ``report`` covers every enqueued unit."""

    def __init__(self, report: BatchReport) -> None:
        super().__init__(
            f"Batch cancelled after {report.succeeded + report.failed - _cancelled(report)}"
            f"/{report.total} units completed"
        )
        self.report = report


def _cancelled(report: BatchReport) -> int:
    return sum(1 for _, detail in report.failures if detail == CANCELLED_DETAIL)


CANCELLED_DETAIL = "cancelled"

UTC = timezone.utc


def utc_now() -> datetime:
    """Return timezone-aware now() in UTC."""
    return datetime.now(UTC)
