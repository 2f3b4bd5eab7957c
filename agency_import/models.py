"""
Data models shared by the match engine, the executor and the service.

A run turns every spreadsheet line into exactly one Decision; the executor
folds the decisions into an ImportOutcome.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any


class DecisionKind(Enum):
    """What the engine does with one row."""
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"
    FAIL = "fail"


# Skip reasons
SKIP_BLANK = "blank"
SKIP_TRANSACTIONAL = "transactional-row"
SKIP_DUPLICATE = "duplicate"
SKIP_UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ImportContext:
    """
    Who is importing, and for which client.

    operator_id is the authenticated agent; every record the run creates is
    owned by it. client_id, when set, pins all rows of the file to that
    client instead of resolving one per row.
    """
    operator_id: Optional[str]
    client_id: Optional[str] = None


@dataclass
class Decision:
    """The engine's verdict for one row."""
    kind: DecisionKind
    row_number: int
    reason: Optional[str] = None
    message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    target_id: Optional[str] = None      # row updated in place
    archive_id: Optional[str] = None     # predecessor archived before the insert
    amount: float = 0.0
    label: Optional[str] = None          # policy type, for per-type counts
    warning: Optional[str] = None

    @classmethod
    def insert(cls, row_number: int, payload: Dict[str, Any], **kwargs) -> "Decision":
        return cls(DecisionKind.INSERT, row_number, payload=payload, **kwargs)

    @classmethod
    def update(cls, row_number: int, target_id: str, payload: Dict[str, Any], **kwargs) -> "Decision":
        return cls(DecisionKind.UPDATE, row_number, payload=payload, target_id=target_id, **kwargs)

    @classmethod
    def skip(cls, row_number: int, reason: str, message: Optional[str] = None, **kwargs) -> "Decision":
        return cls(DecisionKind.SKIP, row_number, reason=reason, message=message, **kwargs)

    @classmethod
    def fail(cls, row_number: int, message: str, reason: str = "invalid") -> "Decision":
        return cls(DecisionKind.FAIL, row_number, reason=reason, message=f"Row {row_number}: {message}")


@dataclass
class ImportOutcome:
    """Counts and diagnostics of one import run."""
    flow: str
    total_rows: int = 0
    blank_rows: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error_count: int = 0
    warning_count: int = 0
    total_amount: float = 0.0
    skipped_amount: float = 0.0
    type_counts: Dict[str, int] = field(default_factory=dict)
    created_clients: int = 0
    max_diagnostics: int = 20

    def add_error(self, message: str):
        self.error_count += 1
        if len(self.errors) < self.max_diagnostics:
            self.errors.append(message)

    def add_warning(self, message: str):
        self.warning_count += 1
        if len(self.warnings) < self.max_diagnostics:
            self.warnings.append(message)

    @property
    def processed(self) -> int:
        """Non-blank rows."""
        return self.total_rows - self.blank_rows

    @property
    def succeeded(self) -> int:
        return self.inserted + self.updated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow": self.flow,
            "total_rows": self.total_rows,
            "blank_rows": self.blank_rows,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "succeeded": self.succeeded,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "total_amount": round(self.total_amount, 2),
            "skipped_amount": round(self.skipped_amount, 2),
            "type_counts": dict(self.type_counts),
            "created_clients": self.created_clients,
        }
