from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import voluptuous as vol

from .const import (
    CONF_ACCESS_TOKEN,
    CONF_ALLOWED_EXTENSIONS,
    CONF_BASE_URL,
    CONF_FALLBACK_PAGE_SIZE,
    CONF_MAX_RETRIES,
    CONF_MAX_UPLOAD_BYTES,
    CONF_PAGE_SIZE,
    CONF_PLACEHOLDER_PREFIXES,
    CONF_REFRESH_AFTER_UPLOAD,
    CONF_REQUEST_TIMEOUT,
    DEFAULT_ALLOWED_EXTENSIONS,
    DEFAULT_FALLBACK_PAGE_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_UPLOAD_BYTES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_PLACEHOLDER_PREFIXES,
    DEFAULT_REQUEST_TIMEOUT,
)


class FieldSyncConfigError(ValueError):
    """Raised when options fail validation."""


def _base_url(value: Any) -> str:
    text = str(value or "").strip().rstrip("/")
    if text and not text.startswith(("http://", "https://")):
        raise vol.Invalid("base_url must start with http:// or https://")
    return text


def _string_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [part for part in value.replace(";", ",").split(",")]
    if not isinstance(value, list | tuple | set | frozenset):
        raise vol.Invalid("expected a list of strings")
    return tuple(str(item).strip() for item in value if str(item).strip())


def _extensions(value: Any) -> tuple[str, ...]:
    items = _string_tuple(value)
    if not items:
        raise vol.Invalid("at least one file extension is required")
    return tuple(item.lower() if item.startswith(".") else f".{item.lower()}" for item in items)


OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_BASE_URL, default=""): _base_url,
        vol.Optional(CONF_ACCESS_TOKEN, default=""): vol.Any(None, vol.Coerce(str)),
        vol.Optional(CONF_PAGE_SIZE, default=DEFAULT_PAGE_SIZE): vol.All(vol.Coerce(int), vol.Range(min=1, max=1000)),
        vol.Optional(CONF_FALLBACK_PAGE_SIZE, default=DEFAULT_FALLBACK_PAGE_SIZE): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=5000)
        ),
        vol.Optional(CONF_REQUEST_TIMEOUT, default=DEFAULT_REQUEST_TIMEOUT): vol.All(
            vol.Coerce(float), vol.Range(min=1, max=300)
        ),
        vol.Optional(CONF_MAX_RETRIES, default=DEFAULT_MAX_RETRIES): vol.All(vol.Coerce(int), vol.Range(min=1, max=10)),
        vol.Optional(CONF_MAX_UPLOAD_BYTES, default=DEFAULT_MAX_UPLOAD_BYTES): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional(CONF_ALLOWED_EXTENSIONS, default=list(DEFAULT_ALLOWED_EXTENSIONS)): _extensions,
        vol.Optional(CONF_PLACEHOLDER_PREFIXES, default=list(DEFAULT_PLACEHOLDER_PREFIXES)): _string_tuple,
        vol.Optional(CONF_REFRESH_AFTER_UPLOAD, default=True): vol.Boolean(),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(slots=True)
class FieldSyncConfig:
    """Options for :class:`~farm_sync.manager.FieldSyncManager`."""

    base_url: str = ""
    access_token: str = ""
    page_size: int = DEFAULT_PAGE_SIZE
    fallback_page_size: int = DEFAULT_FALLBACK_PAGE_SIZE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    allowed_extensions: tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS
    placeholder_prefixes: tuple[str, ...] = DEFAULT_PLACEHOLDER_PREFIXES
    refresh_after_upload: bool = True

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None) -> FieldSyncConfig:
        try:
            data = OPTIONS_SCHEMA(dict(options or {}))
        except vol.Invalid as err:
            raise FieldSyncConfigError(str(err)) from err
        return cls(
            base_url=data[CONF_BASE_URL],
            access_token=(data[CONF_ACCESS_TOKEN] or "").strip(),
            page_size=data[CONF_PAGE_SIZE],
            fallback_page_size=data[CONF_FALLBACK_PAGE_SIZE],
            request_timeout=data[CONF_REQUEST_TIMEOUT],
            max_retries=data[CONF_MAX_RETRIES],
            max_upload_bytes=data[CONF_MAX_UPLOAD_BYTES],
            allowed_extensions=data[CONF_ALLOWED_EXTENSIONS],
            placeholder_prefixes=data[CONF_PLACEHOLDER_PREFIXES],
            refresh_after_upload=data[CONF_REFRESH_AFTER_UPLOAD],
        )

    @property
    def ready(self) -> bool:
        return bool(self.base_url)

    def as_options(self) -> dict[str, Any]:
        return {
            CONF_BASE_URL: self.base_url,
            CONF_ACCESS_TOKEN: self.access_token,
            CONF_PAGE_SIZE: self.page_size,
            CONF_FALLBACK_PAGE_SIZE: self.fallback_page_size,
            CONF_REQUEST_TIMEOUT: self.request_timeout,
            CONF_MAX_RETRIES: self.max_retries,
            CONF_MAX_UPLOAD_BYTES: self.max_upload_bytes,
            CONF_ALLOWED_EXTENSIONS: list(self.allowed_extensions),
            CONF_PLACEHOLDER_PREFIXES: list(self.placeholder_prefixes),
            CONF_REFRESH_AFTER_UPLOAD: self.refresh_after_upload,
        }
