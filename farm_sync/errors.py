"""Error taxonomy and upload outcome types.

Catalog failures are exceptions. Upload problems are values: every call to
``begin_upload`` returns an :class:`UploadOutcome` the caller branches on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .api import FarmsApiError
from .models import ProcessingStatus


class PartialBackendFailure(RuntimeError):
    """The backend claims farms exist but every strategy came back empty."""

    def __init__(self, total_items: int, strategies: list[str]) -> None:
        super().__init__(
            f"Backend reports {total_items} farms but none were returned (tried {', '.join(strategies)})"
        )
        self.total_items = total_items
        self.strategies = list(strategies)


class CatalogFetchError(FarmsApiError):
    """Every catalog strategy failed at the transport level."""


class UploadError(str, Enum):
    MISSING_BACKEND_IDENTITY = "missing_backend_identity"
    UNSUPPORTED_FILE_TYPE = "unsupported_file_type"
    FILE_TOO_LARGE = "file_too_large"
    ALREADY_IN_PROGRESS = "already_in_progress"
    UPLOAD_FAILED = "upload_failed"
    NO_FILE = "no_file"

    @property
    def is_precondition(self) -> bool:
        return self is not UploadError.UPLOAD_FAILED


class UploadWarning(str, Enum):
    EXTERNAL_PROCESSING_DEGRADED = "external_processing_degraded"


@dataclass(slots=True)
class UploadOutcome:
    """Result of one boundary upload attempt."""

    field_id: str
    status: ProcessingStatus
    error: UploadError | None = None
    message: str | None = None
    warnings: tuple[UploadWarning, ...] = ()
    response: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_id": self.field_id,
            "status": self.status.value,
            "error": self.error.value if self.error else None,
            "message": self.message,
            "warnings": [warning.value for warning in self.warnings],
        }


@dataclass(slots=True)
class BatchOutcome:
    """Aggregate of a batch of independent uploads."""

    outcomes: dict[str, UploadOutcome] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome.ok)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    @property
    def errors(self) -> dict[str, UploadOutcome]:
        return {field_id: outcome for field_id, outcome in self.outcomes.items() if not outcome.ok}

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": {field_id: outcome.message or outcome.error.value for field_id, outcome in self.errors.items()},
        }
