"""Field boundary ingestion and reconciliation for the farms backend."""

from .api import FarmsApiAuthError, FarmsApiClient, FarmsApiError
from .batch import BatchUploadCoordinator, pair_files
from .catalog import CatalogResult, FarmCatalogFetcher
from .config import FieldSyncConfig, FieldSyncConfigError
from .errors import (
    BatchOutcome,
    CatalogFetchError,
    PartialBackendFailure,
    UploadError,
    UploadOutcome,
    UploadWarning,
)
from .files import BoundaryFile, check_boundary_file
from .geometry import StatusClass, boundary_has_geometry, classify_status, is_processed
from .identifiers import IdMatch, coerce_id, extract_id, ids_match, match_ids, parse_owner_ref
from .index import FarmerFieldIndex
from .manager import FieldSyncManager
from .models import Farmer, Field, InvalidRecordError, ProcessingStatus
from .names import resolve_display_name, resolve_location
from .state_machine import FieldProcessingStateMachine, InvalidTransition
from .store import FieldStore

__all__ = [
    "BatchOutcome",
    "BatchUploadCoordinator",
    "BoundaryFile",
    "CatalogFetchError",
    "CatalogResult",
    "FarmCatalogFetcher",
    "Farmer",
    "FarmerFieldIndex",
    "FarmsApiAuthError",
    "FarmsApiClient",
    "FarmsApiError",
    "Field",
    "FieldProcessingStateMachine",
    "FieldStore",
    "FieldSyncConfig",
    "FieldSyncConfigError",
    "FieldSyncManager",
    "IdMatch",
    "InvalidRecordError",
    "InvalidTransition",
    "PartialBackendFailure",
    "ProcessingStatus",
    "StatusClass",
    "UploadError",
    "UploadOutcome",
    "UploadWarning",
    "boundary_has_geometry",
    "check_boundary_file",
    "classify_status",
    "coerce_id",
    "extract_id",
    "ids_match",
    "is_processed",
    "match_ids",
    "pair_files",
    "parse_owner_ref",
    "resolve_display_name",
    "resolve_location",
]
