"""
Request correlation IDs and log stamping.
"""

import logging

import pytest

from tenapay.app.core.observability import CorrelationIdFilter, correlation_id_var


@pytest.mark.asyncio
async def test_correlation_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "req-42"})

    assert response.headers["X-Correlation-ID"] == "req-42"
    assert float(response.headers["X-Process-Time"]) >= 0


@pytest.mark.asyncio
async def test_failed_requests_are_logged_with_their_id(client, caplog):
    with caplog.at_level(logging.WARNING, logger="tenapay.requests"):
        await client.get("/v1/users/me", headers={"X-Correlation-ID": "req-401"})

    [record] = [r for r in caplog.records if r.name == "tenapay.requests"]
    assert record.correlation_id == "req-401"
    assert "/v1/users/me" in record.getMessage()


def test_filter_stamps_current_correlation_id():
    record = logging.LogRecord("tenapay.app.services.ledger", logging.INFO, __file__, 1, "posted", None, None)
    token = correlation_id_var.set("req-7")
    try:
        assert CorrelationIdFilter().filter(record) is True
    finally:
        correlation_id_var.reset(token)

    assert record.correlation_id == "req-7"
