from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePath

from .const import DEFAULT_ALLOWED_EXTENSIONS, DEFAULT_MAX_UPLOAD_BYTES
from .errors import UploadError

_CONTENT_TYPES = {
    ".kml": "application/vnd.google-earth.kml+xml",
    ".kmz": "application/vnd.google-earth.kmz",
}


@dataclass(frozen=True, slots=True)
class BoundaryFile:
    """A boundary file selected for upload."""

    filename: str
    content: bytes

    @classmethod
    def from_path(cls, path: str | Path) -> BoundaryFile:
        path = Path(path)
        return cls(filename=path.name, content=path.read_bytes())

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return PurePath(self.filename).suffix.lower()

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES.get(self.extension, "application/octet-stream")


def check_boundary_file(
    file: BoundaryFile,
    *,
    allowed_extensions: tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> UploadError | None:
    """Return the precondition the file violates, or ``None``."""

    if file.extension not in {ext.lower() for ext in allowed_extensions}:
        return UploadError.UNSUPPORTED_FILE_TYPE
    if file.size > max_bytes:
        return UploadError.FILE_TOO_LARGE
    return None
