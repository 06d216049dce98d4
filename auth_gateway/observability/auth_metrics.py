"""Login counters and latency histograms, exported in Prometheus text format.

Values are process-local and reset on restart. Label values are clamped to a
known set so a misbehaving client cannot grow the series without bound.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock

type Labels = tuple[tuple[str, str], ...]

LATENCY_BUCKETS_MS: tuple[float, ...] = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000)

PROVIDERS = frozenset({"azure", "ldap", "none"})
OUTCOMES = frozenset({"success", "failure", "denied"})
MAX_FAILURE_SERIES = 50
OVERFLOW = "other"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_labels(labels: Labels) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{name}="{_escape(value)}"' for name, value in labels) + "}"


@dataclass
class _CounterFamily:
    name: str
    help: str
    max_series: int | None = None
    values: Counter = field(default_factory=Counter)

    def inc(self, labels: Labels) -> None:
        if (
            self.max_series is not None
            and labels not in self.values
            and len(self.values) >= self.max_series
        ):
            labels = tuple((name, OVERFLOW) for name, _ in labels)
        self.values[labels] += 1

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help}", f"# TYPE {self.name} counter"]
        for labels, count in sorted(self.values.items()):
            lines.append(f"{self.name}{_format_labels(labels)} {count}")
        return lines


@dataclass
class _Series:
    bucket_hits: list[int]
    count: int = 0
    total: float = 0.0


@dataclass
class _HistogramFamily:
    name: str
    help: str
    buckets: tuple[float, ...] = LATENCY_BUCKETS_MS
    series: dict[Labels, _Series] = field(default_factory=dict)

    def observe(self, labels: Labels, value: float) -> None:
        series = self.series.get(labels)
        if series is None:
            series = self.series[labels] = _Series(bucket_hits=[0] * len(self.buckets))
        series.count += 1
        series.total += value
        for index, bound in enumerate(self.buckets):
            if value <= bound:
                series.bucket_hits[index] += 1
                break

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help}", f"# TYPE {self.name} histogram"]
        for labels, series in sorted(self.series.items()):
            cumulative = 0
            for bound, hits in zip(self.buckets, series.bucket_hits, strict=True):
                cumulative += hits
                le = _format_labels((*labels, ("le", str(bound))))
                lines.append(f"{self.name}_bucket{le} {cumulative}")
            lines.append(f"{self.name}_bucket{_format_labels((*labels, ('le', '+Inf')))} {series.count}")
            lines.append(f"{self.name}_sum{_format_labels(labels)} {series.total}")
            lines.append(f"{self.name}_count{_format_labels(labels)} {series.count}")
        return lines


class AuthMetrics:
    """Thread-safe login metrics shared by every authentication strategy."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._success = _CounterFamily("auth_success_total", "Count of successful logins")
        self._failure = _CounterFamily(
            "auth_failure_total", "Count of failed logins", max_series=MAX_FAILURE_SERIES
        )
        self._denied = _CounterFamily(
            "auth_access_denied_total", "Count of group allow-list denials"
        )
        self._duration = _HistogramFamily(
            "auth_authentication_duration_ms", "Login round-trip duration in milliseconds"
        )

    @staticmethod
    def _provider(provider: str) -> Labels:
        value = (provider or "none").strip().lower()
        return (("provider", value if value in PROVIDERS else OVERFLOW),)

    def inc_auth_success(self, *, provider: str) -> None:
        with self._lock:
            self._success.inc(self._provider(provider))

    def inc_auth_failure(self, *, reason: str, code: str) -> None:
        labels = (("reason", (reason or "unknown").strip()), ("code", (code or "unknown").strip()))
        with self._lock:
            self._failure.inc(labels)

    def inc_access_denied(self, *, provider: str) -> None:
        with self._lock:
            self._denied.inc(self._provider(provider))

    def observe_authentication_duration_ms(
        self, *, provider: str, outcome: str, duration_ms: float
    ) -> None:
        outcome = (outcome or "").strip().lower()
        labels = (*self._provider(provider), ("outcome", outcome if outcome in OUTCOMES else "unknown"))
        with self._lock:
            self._duration.observe(labels, float(duration_ms))

    def render_prometheus(self) -> str:
        with self._lock:
            families = (self._success, self._failure, self._denied, self._duration)
            lines = [line for family in families for line in family.render()]
        return "\n".join(lines) + "\n"


_metrics: AuthMetrics | None = None


def get_auth_metrics() -> AuthMetrics:
    global _metrics
    if _metrics is None:
        _metrics = AuthMetrics()
    return _metrics
