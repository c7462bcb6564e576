"""ErrorClusterer — groups structurally similar errors by fingerprint."""

from __future__ import annotations

import hashlib
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from errwatch.core.types import RootCauseCluster

MAX_SAMPLE_CHARS = 1024

# Order matters: uuids and hex ids must be replaced before bare digits.
_NORMALIZERS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b"), "<uuid>"),
    (re.compile(r"\b0x[0-9a-fA-F]+\b"), "<hex>"),
    (re.compile(r"\b[0-9a-fA-F]{16,}\b"), "<hex>"),
    (re.compile(r"'[^']*'|\"[^\"]*\""), "<str>"),
    (re.compile(r"\d+"), "<n>"),
    (re.compile(r"\s+"), " "),
]

_FRAME_RE = re.compile(r'File "([^"]+)", line \d+, in (\S+)')


def normalize_message(message: str) -> str:
    """Strip the variable parts of an error message."""
    text = message
    for pattern, repl in _NORMALIZERS:
        text = pattern.sub(repl, text)
    return text.strip()


def _innermost_frame(stack: str | None) -> str:
    if not stack:
        return ""
    frames = _FRAME_RE.findall(stack)
    if not frames:
        return ""
    path, func = frames[-1]
    return f"{path}:{func}"


def fingerprint(error_type: str, message: str, stack: str | None = None) -> str:
    key = "|".join([error_type, normalize_message(message), _innermost_frame(stack)])
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


@dataclass
class _Cluster:
    id: str
    error_type: str
    sample_message: str
    count: int = 0
    last_seen: float = 0.0


class ErrorClusterer:
    """Counts errors per fingerprint, evicting the least recently seen
    cluster once ``max_clusters`` is reached."""

    def __init__(
        self,
        max_clusters: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_clusters < 1:
            raise ValueError("max_clusters must be at least 1")
        self._max_clusters = max_clusters
        self._clock = clock
        self._clusters: dict[str, _Cluster] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._clusters)

    def add_error(self, error_type: str, message: str, stack: str | None = None) -> str:
        """Fold one error into its cluster and return the cluster id."""
        cluster_id = fingerprint(error_type, message, stack)
        now = self._clock()
        with self._lock:
            cluster = self._clusters.get(cluster_id)
            if cluster is None:
                if len(self._clusters) >= self._max_clusters:
                    lru = min(self._clusters, key=lambda k: self._clusters[k].last_seen)
                    del self._clusters[lru]
                cluster = _Cluster(
                    id=cluster_id,
                    error_type=error_type,
                    sample_message=message[:MAX_SAMPLE_CHARS],
                )
                self._clusters[cluster_id] = cluster
            cluster.count += 1
            cluster.last_seen = now
        return cluster_id

    def get_clusters(self) -> list[RootCauseCluster]:
        """Clusters ordered by occurrence count, largest first."""
        with self._lock:
            clusters = sorted(self._clusters.values(), key=lambda c: c.count, reverse=True)
            return [
                RootCauseCluster(
                    id=c.id,
                    count=c.count,
                    sample_message=c.sample_message,
                    error_type=c.error_type,
                )
                for c in clusters
            ]

    def clear(self) -> None:
        with self._lock:
            self._clusters.clear()
