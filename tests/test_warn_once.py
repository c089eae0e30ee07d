from __future__ import annotations

import logging
from types import SimpleNamespace

from farm_sync.utils import logging as log_utils


def test_warn_once_throttles_and_counts(monkeypatch, caplog):
    logger = logging.getLogger("farm_sync.test")
    now = [100.0]
    monkeypatch.setattr(log_utils, "time", SimpleNamespace(monotonic=lambda: now[0]))

    assert log_utils.warn_once(logger, "empty_page", "page 1 empty")
    assert not log_utils.warn_once(logger, "empty_page", "page 1 empty")
    assert not log_utils.warn_once(logger, "empty_page", "page 1 empty")
    now[0] += 61
    assert log_utils.warn_once(logger, "empty_page", "page 1 empty")

    messages = [record.getMessage() for record in caplog.records]
    assert messages == [
        "empty_page: page 1 empty",
        "empty_page: page 1 empty (2 similar warnings suppressed)",
    ]


def test_codes_are_independent(caplog):
    logger = logging.getLogger("farm_sync.test")
    assert log_utils.warn_once(logger, "a", "first")
    assert log_utils.warn_once(logger, "b", "second")
    assert len(caplog.records) == 2
