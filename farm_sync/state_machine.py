"""Per-field boundary upload lifecycle.

``AWAITING_GEOMETRY -> PROCESSING -> PROCESSED``, or ``PROCESSING -> ERROR``
with ``ERROR`` retryable. The local status flips to ``PROCESSING`` as soon as
an upload starts and is reconciled with the upload response when it lands.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from aiohttp import ClientError

from .api import FarmsApiClient
from .const import (
    DEFAULT_ALLOWED_EXTENSIONS,
    DEFAULT_MAX_UPLOAD_BYTES,
    DEFAULT_PLACEHOLDER_PREFIXES,
    EXTERNAL_FILE_KEYS,
    EXTERNAL_WARNING_KEYS,
)
from .envelope import unwrap_single
from .errors import UploadError, UploadOutcome, UploadWarning
from .files import BoundaryFile, check_boundary_file
from .identifiers import coerce_id
from .models import Field, ProcessingStatus, parse_area
from .store import FieldStore

_LOGGER = logging.getLogger(__name__)

StatusListener = Callable[[str, ProcessingStatus, ProcessingStatus], None]

TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.AWAITING_GEOMETRY: frozenset({ProcessingStatus.PROCESSING, ProcessingStatus.PROCESSED}),
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.PROCESSED, ProcessingStatus.ERROR}),
    ProcessingStatus.ERROR: frozenset({ProcessingStatus.PROCESSING, ProcessingStatus.PROCESSED}),
    # a processed field may be re-uploaded to replace its boundary
    ProcessingStatus.PROCESSED: frozenset({ProcessingStatus.PROCESSING}),
}

SUCCESS_MESSAGE = "Boundary uploaded and processed"
DEGRADED_MESSAGE = "Boundary uploaded; external processing is currently unavailable"


class InvalidTransition(RuntimeError):
    """Raised when code asks for a transition the lifecycle does not allow."""


def _external_warning(response: Any, payload: Mapping[str, Any]) -> str | None:
    for source in (payload, response):
        if not isinstance(source, Mapping):
            continue
        for key in EXTERNAL_WARNING_KEYS:
            value = source.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
    return None


def _failure_message(response: Any) -> str | None:
    """Return the backend message of a 2xx response that reports failure."""

    if isinstance(response, Mapping) and response.get("success") is False:
        for key in ("message", "error"):
            value = response.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return "Upload rejected by backend"
    return None


def upload_patch(response: Any) -> dict[str, Any]:
    """Build the store patch for a successful upload response.

    Response values win over anything cached for boundary, location and area.
    The processing status is forced to ``PROCESSED`` whatever the backend's
    own status field says.
    """
    payload = unwrap_single(response) or {}
    patch: dict[str, Any] = {
        "processing_status": ProcessingStatus.PROCESSED,
        "upload_confirmed": True,
    }
    boundary = payload.get("boundary")
    if boundary is None:
        boundary = payload.get("geometry")
    if boundary is not None:
        patch["boundary"] = boundary
    if payload.get("location") is not None:
        patch["location"] = payload["location"]
    area = parse_area(payload.get("area"))
    if area is not None:
        patch["area_hectares"] = area
    status = payload.get("status")
    if isinstance(status, str):
        patch["backend_status"] = status
    for key in EXTERNAL_FILE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            patch["external_file_ref"] = value.strip()
            break
    return patch


class FieldProcessingStateMachine:
    """Drive fields through boundary uploads, one upload per field at a time."""

    def __init__(
        self,
        store: FieldStore,
        api: FarmsApiClient,
        *,
        allowed_extensions: tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        placeholder_prefixes: tuple[str, ...] = DEFAULT_PLACEHOLDER_PREFIXES,
    ) -> None:
        self._store = store
        self._api = api
        self._allowed_extensions = allowed_extensions
        self._max_upload_bytes = max_upload_bytes
        self._placeholder_prefixes = tuple(prefix.lower() for prefix in placeholder_prefixes)
        self._in_flight: set[str] = set()
        self._listeners: list[StatusListener] = []
        self.last_errors: dict[str, str] = {}

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self, field_id: str, old: ProcessingStatus, new: ProcessingStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(field_id, old, new)
            except Exception:  # pragma: no cover - listener bugs must not break uploads
                _LOGGER.exception("Status listener failed for %s", field_id)

    # ------------------------------------------------------------------
    def status(self, field_id: str) -> ProcessingStatus | None:
        record = self._store.get(field_id)
        return record.processing_status if record else None

    def in_progress(self, field_id: str) -> bool:
        return field_id in self._in_flight

    def is_placeholder(self, field_id: str) -> bool:
        return field_id.lower().startswith(self._placeholder_prefixes)

    def transition(
        self,
        field_id: str,
        new: ProcessingStatus,
        patch: Mapping[str, Any] | None = None,
    ) -> Field | None:
        """Move ``field_id`` to ``new``, writing ``patch`` in the same update."""

        record = self._store.get(field_id)
        if record is None:
            return None
        old = record.processing_status
        if new is not old and new not in TRANSITIONS[old]:
            raise InvalidTransition(f"{field_id}: {old.value} -> {new.value}")
        changes = dict(patch or {})
        changes["processing_status"] = new
        updated = self._store.apply_field_update(field_id, changes)
        if new is not old:
            _LOGGER.debug("Field %s: %s -> %s", field_id, old.value, new.value)
            self._notify(field_id, old, new)
        return updated

    # ------------------------------------------------------------------
    def _precondition(self, field_id: str | None, file: BoundaryFile) -> tuple[UploadError, str] | None:
        if not field_id or self.is_placeholder(field_id):
            return UploadError.MISSING_BACKEND_IDENTITY, "Field has not been saved to the backend yet"
        if field_id not in self._store:
            return UploadError.MISSING_BACKEND_IDENTITY, f"Field {field_id} is not in the farm catalog"
        if field_id in self._in_flight:
            return UploadError.ALREADY_IN_PROGRESS, f"An upload for field {field_id} is already running"
        problem = check_boundary_file(
            file,
            allowed_extensions=self._allowed_extensions,
            max_bytes=self._max_upload_bytes,
        )
        if problem is UploadError.UNSUPPORTED_FILE_TYPE:
            allowed = ", ".join(self._allowed_extensions)
            return problem, f"Unsupported file type {file.extension or '(none)'}; expected {allowed}"
        if problem is UploadError.FILE_TOO_LARGE:
            return problem, f"File is {file.size} bytes; the limit is {self._max_upload_bytes} bytes"
        return None

    async def begin_upload(
        self,
        field_id: Any,
        file: BoundaryFile,
        display_name: str | None = None,
    ) -> UploadOutcome:
        """Upload ``file`` as the boundary of ``field_id``.

        Never raises for precondition or transport problems; the returned
        :class:`UploadOutcome` carries the error instead. By the time this
        returns successfully the store, and everything reading from it, holds
        the new boundary.
        """
        resolved = coerce_id(field_id)
        failure = self._precondition(resolved, file)
        if failure is not None:
            error, message = failure
            current = self.status(resolved) if resolved else None
            _LOGGER.info("Upload for field %s rejected: %s", resolved or field_id, message)
            return UploadOutcome(
                field_id=resolved or str(field_id or ""),
                status=current or ProcessingStatus.AWAITING_GEOMETRY,
                error=error,
                message=message,
            )

        # claimed before the first await so a second caller sees it
        self._in_flight.add(resolved)
        try:
            self.transition(resolved, ProcessingStatus.PROCESSING)
            try:
                response = await self._api.upload_boundary(
                    resolved,
                    file.filename,
                    file.content,
                    name=display_name,
                    content_type=file.content_type,
                )
            except (ClientError, TimeoutError) as err:
                return self._fail(resolved, str(err) or err.__class__.__name__)
            rejected = _failure_message(response)
            if rejected is not None:
                return self._fail(resolved, rejected)
            return self._succeed(resolved, response)
        except BaseException:
            if self.status(resolved) is ProcessingStatus.PROCESSING:
                self.transition(resolved, ProcessingStatus.ERROR)
                self.last_errors[resolved] = "Upload interrupted"
            raise
        finally:
            self._in_flight.discard(resolved)

    def _fail(self, field_id: str, message: str) -> UploadOutcome:
        _LOGGER.warning("Boundary upload for field %s failed: %s", field_id, message)
        self.last_errors[field_id] = message
        # boundary and backend status stay as they were
        self.transition(field_id, ProcessingStatus.ERROR)
        return UploadOutcome(
            field_id=field_id,
            status=ProcessingStatus.ERROR,
            error=UploadError.UPLOAD_FAILED,
            message=message,
        )

    def _succeed(self, field_id: str, response: Any) -> UploadOutcome:
        payload = unwrap_single(response) or {}
        warning = _external_warning(response, payload)
        self.transition(field_id, ProcessingStatus.PROCESSED, upload_patch(response))
        self.last_errors.pop(field_id, None)
        warnings: tuple[UploadWarning, ...] = ()
        message = SUCCESS_MESSAGE
        if warning:
            _LOGGER.info("Field %s uploaded with external processing warning: %s", field_id, warning)
            warnings = (UploadWarning.EXTERNAL_PROCESSING_DEGRADED,)
            message = f"{DEGRADED_MESSAGE}: {warning}"
        return UploadOutcome(
            field_id=field_id,
            status=ProcessingStatus.PROCESSED,
            message=message,
            warnings=warnings,
            response=response,
        )
