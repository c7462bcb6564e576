"""Root-cause reporters — the query side consumed by the dashboard.

``ErrorReporter`` is the in-process implementation: it captures errors with
breadcrumbs and user context, fans them out to integrations, and clusters
them. ``HttpRootCauseReporter`` reads clusters from a remote service.
"""

from __future__ import annotations

import abc
import time
import traceback
import uuid
from collections import deque
from collections.abc import Callable
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from errwatch.core.config import ReporterConfig
from errwatch.core.types import ErrorEvent, RootCauseCluster
from errwatch.reporting.clustering import ErrorClusterer
from errwatch.reporting.exceptions import ReporterConnectionError, ReporterParseError

logger = structlog.get_logger(__name__)


class Breadcrumb(BaseModel):
    """A trail entry recorded before an error is captured."""

    message: str
    category: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class ErrorReport(BaseModel):
    """Everything an integration receives for one captured error."""

    id: str
    error_type: str
    message: str
    stack: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    breadcrumbs: list[Breadcrumb] = Field(default_factory=list)


Integration = Callable[[ErrorReport], None]


class RootCauseReporter(abc.ABC):
    """Source of root-cause clusters for the dashboard."""

    @abc.abstractmethod
    async def get_clusters(self) -> list[RootCauseCluster]:
        """Return clusters of structurally similar errors."""

    async def close(self) -> None:
        """Release resources (HTTP clients, etc.)."""


class ErrorReporter(RootCauseReporter):
    """Captures errors from anywhere in the application.

    Usage::

        reporter = ErrorReporter(settings.reporter)
        reporter.add_breadcrumb("loading profile", "http")
        try:
            ...
        except Exception as exc:
            reporter.capture_error(exc, {"route": "/profile"})
    """

    def __init__(
        self,
        config: ReporterConfig | None = None,
        clusterer: ErrorClusterer | None = None,
        log_errors: bool = True,
    ) -> None:
        self._config = config or ReporterConfig()
        if clusterer is None:
            clusterer = ErrorClusterer(max_clusters=self._config.max_clusters)
        self._clusterer = clusterer
        self._breadcrumbs: deque[Breadcrumb] = deque(maxlen=self._config.max_breadcrumbs)
        self._integrations: list[Integration] = []
        self._user_context: dict[str, Any] = {}
        if log_errors:
            self._integrations.append(_log_integration)

    @property
    def clusterer(self) -> ErrorClusterer:
        return self._clusterer

    @property
    def breadcrumbs(self) -> list[Breadcrumb]:
        return list(self._breadcrumbs)

    def add_integration(self, integration: Integration) -> None:
        self._integrations.append(integration)

    def set_user_context(self, context: dict[str, Any]) -> None:
        self._user_context = dict(context)

    def add_breadcrumb(
        self,
        message: str,
        category: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        self._breadcrumbs.append(
            Breadcrumb(message=message, category=category, data=data or {})
        )

    def capture_error(
        self,
        error: BaseException | ErrorEvent,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Report *error* to every integration and cluster it. Returns its id."""
        if isinstance(error, ErrorEvent):
            error_type = error.code or error.type
            message = error.message
            stack = None
        else:
            error_type = type(error).__name__
            message = str(error)
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        full_context: dict[str, Any] = {
            "environment": self._config.environment,
            "release": self._config.release,
        }
        if self._config.server_name:
            full_context["server_name"] = self._config.server_name
        if self._user_context:
            full_context["user"] = dict(self._user_context)
        full_context.update(context or {})

        report = ErrorReport(
            id=uuid.uuid4().hex,
            error_type=error_type,
            message=message,
            stack=stack,
            context=full_context,
            breadcrumbs=list(self._breadcrumbs),
        )

        for integration in self._integrations:
            try:
                integration(report)
            except Exception:
                logger.exception(
                    "reporter_integration_error",
                    integration=getattr(integration, "__name__", type(integration).__name__),
                    report_id=report.id,
                )

        self._clusterer.add_error(error_type, message, stack)
        return report.id

    async def get_clusters(self) -> list[RootCauseCluster]:
        return self._clusterer.get_clusters()


def _log_integration(report: ErrorReport) -> None:
    logger.error(
        "error_captured",
        report_id=report.id,
        error_type=report.error_type,
        message=report.message,
        breadcrumbs=len(report.breadcrumbs),
        context={k: v for k, v in report.context.items() if k != "user"},
    )


class HttpRootCauseReporter(RootCauseReporter):
    """Fetches clusters from a remote error-tracking endpoint.

    The endpoint answers ``GET`` with either a JSON list of clusters or an
    object holding them under ``"clusters"``.
    """

    def __init__(self, config: ReporterConfig, timeout_secs: float = 10.0) -> None:
        self._endpoint = config.endpoint
        self._api_key = config.api_key.get_secret_value()
        self._timeout_secs = timeout_secs
        self._http: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        return self._http is not None and not self._http.is_closed

    async def connect(self) -> httpx.AsyncClient:
        """Create the httpx async client."""
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout_secs),
            headers=headers,
        )
        return self._http

    async def close(self) -> None:
        """Close the httpx async client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def get_clusters(self) -> list[RootCauseCluster]:
        http = self._http
        if http is None or http.is_closed:
            http = await self.connect()

        try:
            response = await http.get(self._endpoint)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ReporterConnectionError(
                f"Reporter returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ReporterConnectionError(f"Reporter request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ReporterParseError("Reporter returned invalid JSON") from exc

        items = body.get("clusters") if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise ReporterParseError("Reporter returned no cluster list")

        try:
            return [RootCauseCluster.model_validate(item) for item in items]
        except ValidationError as exc:
            raise ReporterParseError(f"Malformed cluster: {exc.error_count()} errors") from exc
