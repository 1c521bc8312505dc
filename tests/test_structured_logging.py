from __future__ import annotations

import json
import logging

import pytest

from acctstore.errors import ErrorCode, StorageError, has_code
from acctstore.structured_logging import get_logger, log_event


def test_log_event_emits_single_json_line(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("acctstore.test")
    with caplog.at_level(logging.INFO, logger="acctstore.test"):
        log_event(log, "push_key_created", path="/x/push.key")

    (rec,) = caplog.records
    payload = json.loads(rec.getMessage())
    assert payload["event"] == "push_key_created"
    assert payload["path"] == "/x/push.key"
    assert isinstance(payload["ts_ms"], int)


def test_log_event_falls_back_for_unserializable_fields(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("acctstore.test")
    with caplog.at_level(logging.INFO, logger="acctstore.test"):
        log_event(log, "odd", value=object())

    assert caplog.records[0].getMessage().startswith("event=odd ")


def test_log_event_respects_level(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("acctstore.test")
    with caplog.at_level(logging.WARNING, logger="acctstore.test"):
        log_event(log, "quiet")
    assert caplog.records == []


def test_get_logger_prefers_injected() -> None:
    injected = logging.getLogger("custom")
    assert get_logger("acctstore.x", injected) is injected
    assert get_logger("acctstore.x").name == "acctstore.x"


def test_storage_error_str_includes_cause() -> None:
    try:
        try:
            raise OSError("disk gone")
        except OSError as e:
            raise StorageError(ErrorCode.FILESYSTEM, "unable to write", {"path": "/p"}) from e
    except StorageError as err:
        assert str(err) == "filesystem_error: unable to write: disk gone"
        assert has_code(err, ErrorCode.FILESYSTEM)
        assert not has_code(ValueError(), ErrorCode.FILESYSTEM)
