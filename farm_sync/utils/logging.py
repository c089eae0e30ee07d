from __future__ import annotations

import logging
import time

_LAST: dict[str, float] = {}
_SUPPRESSED: dict[str, int] = {}
_MAX_CODES = 512


def warn_once(logger: logging.Logger, code: str, message: str, window: int = 60) -> bool:
    """Log a warning at most once per ``window`` seconds for ``code``.

    A flaky backend tends to repeat the same complaint on every page probe,
    so the number of suppressed repeats is appended when the window reopens.
    Returns ``True`` when the warning was emitted.
    """
    now = time.monotonic()
    last = _LAST.get(code)
    if last is not None and now - last <= window:
        _SUPPRESSED[code] = _SUPPRESSED.get(code, 0) + 1
        return False
    if len(_LAST) >= _MAX_CODES:
        oldest = min(_LAST, key=_LAST.get)
        _LAST.pop(oldest, None)
        _SUPPRESSED.pop(oldest, None)
    _LAST[code] = now
    suppressed = _SUPPRESSED.pop(code, 0)
    if suppressed:
        logger.warning("%s: %s (%d similar warnings suppressed)", code, message, suppressed)
    else:
        logger.warning("%s: %s", code, message)
    return True


def reset_warnings() -> None:
    """Forget all throttled warning codes."""

    _LAST.clear()
    _SUPPRESSED.clear()
