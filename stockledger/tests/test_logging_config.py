import io
import json
import logging
import sys
from datetime import datetime, timezone

import pytest

from stockledger.app.db.models.core_types import POStatus
from stockledger.app.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
)
from stockledger.services.errors import OverReceiptError


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_json_lines_carry_context_and_extra():
    stream = io.StringIO()
    configure_logging(level="INFO", stream=stream)
    log = get_logger("tests")

    with LogContext.bind(correlation_id="req-1", actor_id="alice"):
        log.info("movement_appended", extra={"change_quantity": 4})
    log.info("outside")

    first, second = _lines(stream)
    assert first["message"] == "movement_appended"
    assert first["logger"] == "stockledger.tests"
    assert first["correlation_id"] == "req-1"
    assert first["actor_id"] == "alice"
    assert first["change_quantity"] == 4
    assert "correlation_id" not in second


def test_configure_is_idempotent():
    stream = io.StringIO()
    configure_logging(stream=stream)
    configure_logging(stream=stream)

    get_logger("tests").warning("once")
    assert len(_lines(stream)) == 1


def test_nested_bind_restores_outer_values():
    with LogContext.bind(correlation_id="outer"):
        with LogContext.bind(correlation_id="inner", po_number="PO-000001"):
            assert LogContext.get_all() == {"correlation_id": "inner", "po_number": "PO-000001"}
        assert LogContext.get_all() == {"correlation_id": "outer"}
    assert LogContext.get_all() == {}


def test_bind_rejects_unknown_fields():
    with pytest.raises(TypeError):
        LogContext.bind(tenant="x")


def test_exception_fields_include_error_code():
    try:
        raise OverReceiptError(1, 10, 8, 3)
    except OverReceiptError:
        record = logging.getLogger("stockledger.tests").makeRecord(
            "stockledger.tests", logging.ERROR, __file__, 1, "failed", (), exc_info=sys.exc_info()
        )

    payload = json.loads(StructuredFormatter().format(record))
    assert payload["exc_type"] == "OverReceiptError"
    assert payload["exc_code"] == "OVER_RECEIPT"
    assert "traceback" in payload


def test_enums_and_datetimes_are_serialized():
    stream = io.StringIO()
    configure_logging(stream=stream)
    get_logger("tests").info(
        "items_received",
        extra={"status_to": POStatus.closed, "at": datetime(2026, 1, 1, tzinfo=timezone.utc)},
    )

    [line] = _lines(stream)
    assert line["status_to"] == "CLOSED"
    assert line["at"] == "2026-01-01T00:00:00+00:00"
