from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence

from .errors import BatchOutcome, UploadError, UploadOutcome
from .files import BoundaryFile
from .identifiers import coerce_id
from .models import ProcessingStatus
from .state_machine import FieldProcessingStateMachine

_LOGGER = logging.getLogger(__name__)


def pair_files(field_ids: Sequence[str], files: Sequence[BoundaryFile]) -> dict[str, BoundaryFile | None]:
    """Pair selected fields with files.

    A single file is shared by every field; otherwise files are matched to
    fields by position and fields left over get ``None``.
    """
    if len(files) == 1:
        return {field_id: files[0] for field_id in field_ids}
    if len(files) > len(field_ids):
        _LOGGER.warning("Ignoring %d boundary files with no selected field", len(files) - len(field_ids))
    return {field_id: (files[pos] if pos < len(files) else None) for pos, field_id in enumerate(field_ids)}


class BatchUploadCoordinator:
    """Run several independent boundary uploads concurrently.

    One field failing never cancels or blocks its siblings; this is a fan-out,
    not a transaction.
    """

    def __init__(self, machine: FieldProcessingStateMachine) -> None:
        self._machine = machine
        self.selection: set[str] = set()
        self.running = False

    def select(self, field_ids: Iterable[str]) -> None:
        self.selection = {resolved for resolved in (coerce_id(item) for item in field_ids) if resolved}

    async def _run_one(self, field_id: str, file: BoundaryFile | None) -> UploadOutcome:
        if file is None:
            return UploadOutcome(
                field_id=field_id,
                status=self._machine.status(field_id) or ProcessingStatus.AWAITING_GEOMETRY,
                error=UploadError.NO_FILE,
                message=f"No boundary file supplied for field {field_id}",
            )
        return await self._machine.begin_upload(field_id, file)

    async def process_many(
        self,
        selected_field_ids: Iterable[str],
        files: Sequence[BoundaryFile],
    ) -> BatchOutcome:
        """Upload ``files`` for ``selected_field_ids`` and aggregate the results.

        Every outcome, success or failure, is present in the returned map once
        all uploads have settled. The selection is cleared afterwards, never
        while uploads are still running.
        """
        resolved_ids = (coerce_id(item) for item in selected_field_ids)
        ordered = list(dict.fromkeys(field_id for field_id in resolved_ids if field_id))
        pairs = pair_files(ordered, list(files))
        self.running = True
        try:
            results = await asyncio.gather(
                *(self._run_one(field_id, file) for field_id, file in pairs.items()),
                return_exceptions=True,
            )
        finally:
            self.running = False
            self.selection.clear()

        batch = BatchOutcome()
        for field_id, result in zip(pairs, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                _LOGGER.error("Upload for field %s raised unexpectedly", field_id, exc_info=result)
                result = UploadOutcome(
                    field_id=field_id,
                    status=self._machine.status(field_id) or ProcessingStatus.ERROR,
                    error=UploadError.UPLOAD_FAILED,
                    message=str(result) or result.__class__.__name__,
                )
            batch.outcomes[field_id] = result
        _LOGGER.info(
            "Batch upload finished: %d attempted, %d succeeded, %d failed",
            batch.attempted,
            batch.succeeded,
            batch.failed,
        )
        return batch
