"""Tests for ErrorReporter and HttpRootCauseReporter."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from errwatch.core.config import ReporterConfig
from errwatch.core.types import ErrorEvent
from errwatch.reporting.clustering import ErrorClusterer
from errwatch.reporting.exceptions import ReporterConnectionError, ReporterParseError
from errwatch.reporting.reporter import ErrorReport, ErrorReporter, HttpRootCauseReporter


# ── Helpers ─────────────────────────────────────────────────────


def _config(**kw: object) -> ReporterConfig:
    defaults: dict[str, object] = {
        "environment": "test",
        "release": "1.2.3",
        "endpoint": "https://errors.example.com/api/clusters",
    }
    defaults.update(kw)
    return ReporterConfig(**defaults)  # type: ignore[arg-type]


def _raise(exc: BaseException) -> BaseException:
    try:
        raise exc
    except BaseException as caught:
        return caught


def _response(status: int = 200, json_body: object = None, text: str | None = None) -> httpx.Response:
    kwargs: dict[str, object] = {}
    if text is not None:
        kwargs["text"] = text
    else:
        kwargs["json"] = json_body
    return httpx.Response(
        status_code=status,
        request=httpx.Request("GET", "https://errors.example.com/api/clusters"),
        **kwargs,  # type: ignore[arg-type]
    )


# ── ErrorReporter ───────────────────────────────────────────────


class TestCaptureError:
    def test_returns_unique_ids(self) -> None:
        reporter = ErrorReporter(_config(), log_errors=False)
        a = reporter.capture_error(ValueError("x"))
        b = reporter.capture_error(ValueError("x"))
        assert a != b

    def test_integration_receives_report(self) -> None:
        reports: list[ErrorReport] = []
        reporter = ErrorReporter(_config(server_name="web-1"), log_errors=False)
        reporter.add_integration(reports.append)
        reporter.set_user_context({"id": "u1"})
        reporter.add_breadcrumb("clicked save", "ui", {"button": "save"})

        report_id = reporter.capture_error(_raise(KeyError("profile")), {"route": "/p"})

        assert len(reports) == 1
        report = reports[0]
        assert report.id == report_id
        assert report.error_type == "KeyError"
        assert report.stack is not None and "KeyError" in report.stack
        assert report.context["environment"] == "test"
        assert report.context["release"] == "1.2.3"
        assert report.context["server_name"] == "web-1"
        assert report.context["user"] == {"id": "u1"}
        assert report.context["route"] == "/p"
        assert [b.message for b in report.breadcrumbs] == ["clicked save"]

    def test_capture_error_event(self) -> None:
        reports: list[ErrorReport] = []
        reporter = ErrorReporter(_config(), log_errors=False)
        reporter.add_integration(reports.append)
        reporter.capture_error(ErrorEvent(type="DB", code="E42", message="db down"))
        assert reports[0].error_type == "E42"
        assert reports[0].message == "db down"
        assert reports[0].stack is None

    def test_failing_integration_is_isolated(self) -> None:
        reports: list[ErrorReport] = []

        def broken(report: ErrorReport) -> None:
            raise RuntimeError("integration down")

        reporter = ErrorReporter(_config(), log_errors=False)
        reporter.add_integration(broken)
        reporter.add_integration(reports.append)
        reporter.capture_error(ValueError("x"))
        assert len(reports) == 1
        assert len(reporter.clusterer) == 1

    def test_default_log_integration(self) -> None:
        reporter = ErrorReporter(_config())
        reporter.capture_error(ValueError("logged"))
        assert len(reporter.clusterer) == 1


class TestReporterWiring:
    def test_injected_empty_clusterer_is_kept(self) -> None:
        clusterer = ErrorClusterer(max_clusters=3)
        reporter = ErrorReporter(_config(), clusterer=clusterer, log_errors=False)
        assert reporter.clusterer is clusterer
        reporter.capture_error(ValueError("x"))
        assert len(clusterer) == 1

    def test_default_clusterer_uses_config_limit(self) -> None:
        reporter = ErrorReporter(_config(max_clusters=1), log_errors=False)
        reporter.capture_error(ErrorEvent(type="A", message="a"))
        reporter.capture_error(ErrorEvent(type="B", message="b"))
        assert len(reporter.clusterer) == 1


class TestBreadcrumbs:
    def test_oldest_dropped_past_limit(self) -> None:
        reporter = ErrorReporter(_config(max_breadcrumbs=2), log_errors=False)
        for i in range(3):
            reporter.add_breadcrumb(f"step {i}", "nav")
        assert [b.message for b in reporter.breadcrumbs] == ["step 1", "step 2"]


class TestReporterClusters:
    async def test_similar_errors_cluster_together(self) -> None:
        reporter = ErrorReporter(_config(), log_errors=False)
        reporter.capture_error(ErrorEvent(type="NotFound", message="user 1 not found"))
        reporter.capture_error(ErrorEvent(type="NotFound", message="user 2 not found"))
        reporter.capture_error(ErrorEvent(type="Timeout", message="db timed out"))
        clusters = await reporter.get_clusters()
        assert [c.count for c in clusters] == [2, 1]


# ── HttpRootCauseReporter ───────────────────────────────────────


class TestHttpRootCauseReporter:
    async def test_list_payload(self) -> None:
        reporter = HttpRootCauseReporter(_config())
        await reporter.connect()
        try:
            body = [{"id": "c1", "count": 4, "sample_message": "boom"}]
            with patch.object(reporter._http, "get", new_callable=AsyncMock) as mock_get:  # type: ignore[union-attr]
                mock_get.return_value = _response(json_body=body)
                clusters = await reporter.get_clusters()
            assert clusters[0].id == "c1"
            assert clusters[0].count == 4
        finally:
            await reporter.close()

    async def test_wrapped_payload(self) -> None:
        reporter = HttpRootCauseReporter(_config())
        await reporter.connect()
        try:
            body = {"clusters": [{"id": "c1", "count": 1}]}
            with patch.object(reporter._http, "get", new_callable=AsyncMock) as mock_get:  # type: ignore[union-attr]
                mock_get.return_value = _response(json_body=body)
                clusters = await reporter.get_clusters()
            assert [c.id for c in clusters] == ["c1"]
        finally:
            await reporter.close()

    async def test_http_error_status(self) -> None:
        reporter = HttpRootCauseReporter(_config())
        await reporter.connect()
        try:
            with patch.object(reporter._http, "get", new_callable=AsyncMock) as mock_get:  # type: ignore[union-attr]
                mock_get.return_value = _response(status=503, json_body={})
                with pytest.raises(ReporterConnectionError):
                    await reporter.get_clusters()
        finally:
            await reporter.close()

    async def test_transport_error(self) -> None:
        reporter = HttpRootCauseReporter(_config())
        await reporter.connect()
        try:
            with patch.object(reporter._http, "get", new_callable=AsyncMock) as mock_get:  # type: ignore[union-attr]
                mock_get.side_effect = httpx.ConnectError("refused")
                with pytest.raises(ReporterConnectionError):
                    await reporter.get_clusters()
        finally:
            await reporter.close()

    async def test_invalid_json(self) -> None:
        reporter = HttpRootCauseReporter(_config())
        await reporter.connect()
        try:
            with patch.object(reporter._http, "get", new_callable=AsyncMock) as mock_get:  # type: ignore[union-attr]
                mock_get.return_value = _response(text="<html>")
                with pytest.raises(ReporterParseError):
                    await reporter.get_clusters()
        finally:
            await reporter.close()

    async def test_malformed_cluster(self) -> None:
        reporter = HttpRootCauseReporter(_config())
        await reporter.connect()
        try:
            with patch.object(reporter._http, "get", new_callable=AsyncMock) as mock_get:  # type: ignore[union-attr]
                mock_get.return_value = _response(json_body=[{"count": "many"}])
                with pytest.raises(ReporterParseError):
                    await reporter.get_clusters()
        finally:
            await reporter.close()

    async def test_connect_and_close(self) -> None:
        reporter = HttpRootCauseReporter(_config(api_key="k"))  # type: ignore[arg-type]
        assert reporter.connected is False
        await reporter.connect()
        assert reporter.connected is True
        await reporter.close()
        assert reporter.connected is False

    async def test_connect_returns_client(self) -> None:
        reporter = HttpRootCauseReporter(_config())
        client = await reporter.connect()
        try:
            assert isinstance(client, httpx.AsyncClient)
            assert reporter.connected is True
        finally:
            await reporter.close()

    async def test_get_clusters_connects_on_demand(self) -> None:
        reporter = HttpRootCauseReporter(_config())
        try:
            with patch.object(httpx.AsyncClient, "get", new_callable=AsyncMock) as mock_get:
                mock_get.return_value = _response(json_body=[])
                assert await reporter.get_clusters() == []
            assert reporter.connected is True
        finally:
            await reporter.close()
