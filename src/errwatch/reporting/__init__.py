"""Error capture and root-cause clustering."""

from errwatch.reporting.clustering import ErrorClusterer, fingerprint, normalize_message
from errwatch.reporting.exceptions import (
    ReporterConnectionError,
    ReporterError,
    ReporterParseError,
)
from errwatch.reporting.reporter import (
    Breadcrumb,
    ErrorReport,
    ErrorReporter,
    HttpRootCauseReporter,
    RootCauseReporter,
)

__all__ = [
    "Breadcrumb",
    "ErrorClusterer",
    "ErrorReport",
    "ErrorReporter",
    "HttpRootCauseReporter",
    "ReporterConnectionError",
    "ReporterError",
    "ReporterParseError",
    "RootCauseReporter",
    "fingerprint",
    "normalize_message",
]
