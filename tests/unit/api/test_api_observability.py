import json
import logging
import re

from fastapi.testclient import TestClient

from src.api.main import app
from src.api.observability import JsonFormatter, correlation_id_var


def test_observability_headers_preserve_inbound_correlation_and_trace_id():
    with TestClient(app) as client:
        response = client.get(
            "/health",
            headers={
                "X-Correlation-Id": "corr-inbound-123",
                "X-Request-Id": "req-inbound-123",
                "traceparent": "00-1234567890abcdef1234567890abcdef-0000000000000001-01",
            },
        )

    assert response.status_code == 200
    assert response.headers["X-Correlation-Id"] == "corr-inbound-123"
    assert response.headers["X-Request-Id"] == "req-inbound-123"
    assert response.headers["X-Trace-Id"] == "1234567890abcdef1234567890abcdef"
    assert (
        response.headers["traceparent"] == "00-1234567890abcdef1234567890abcdef-0000000000000001-01"
    )


def test_observability_headers_generate_ids_when_missing():
    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert re.fullmatch(r"corr_[0-9a-f]{12}", response.headers["X-Correlation-Id"])
    assert re.fullmatch(r"req_[0-9a-f]{12}", response.headers["X-Request-Id"])
    assert re.fullmatch(r"[0-9a-f]{32}", response.headers["X-Trace-Id"])
    assert re.fullmatch(
        r"00-[0-9a-f]{32}-0000000000000001-01",
        response.headers["traceparent"],
    )


def test_access_log_carries_flow_identifiers(caplog):
    caplog.set_level(logging.INFO, logger="http.access")

    with TestClient(app) as client:
        response = client.get("/flows/fi_missing/movements/roof_overview/validate")

    assert response.status_code == 404
    access = [record for record in caplog.records if record.name == "http.access"]
    fields = access[-1].extra_fields
    assert fields["status_code"] == 404
    assert fields["flow_instance_id"] == "fi_missing"
    assert fields["movement_id"] == "roof_overview"


def test_json_formatter_merges_extra_fields_and_context():
    record = logging.LogRecord(
        name="src.core.flows.service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="flow.started",
        args=(),
        exc_info=None,
    )
    record.extra_fields = {"flow_instance_id": "fi_1", "claim_id": "CLM-1"}
    token = correlation_id_var.set("corr-1")
    try:
        payload = json.loads(JsonFormatter().format(record))
    finally:
        correlation_id_var.reset(token)

    assert payload["message"] == "flow.started"
    assert payload["level"] == "INFO"
    assert payload["service"] == "field-inspection-flow-engine"
    assert payload["correlation_id"] == "corr-1"
    assert payload["flow_instance_id"] == "fi_1"
    assert "request_id" not in payload
