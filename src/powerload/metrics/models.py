from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class RequestOutcome:
    success: bool
    elapsed_ms: float
    status_code: int = 0
    content_length: int = 0
    error_message: str = ""
    is_timeout: bool = False

    @classmethod
    def failed(cls, started: float, message: str, *, is_timeout: bool = False) -> RequestOutcome:
        """Build a failure outcome timed from a ``time.perf_counter()`` start mark."""
        return cls(
            success=False,
            elapsed_ms=elapsed_ms_since(started),
            error_message=message,
            is_timeout=is_timeout,
        )


@dataclass(frozen=True, slots=True)
class AggregateStatistics:
    total_requests: int
    successful: int
    failed: int
    timeouts: int
    success_rate: float
    total_time_ms: float
    throughput_rps: float
    min_ms: float
    max_ms: float
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float
    p99_ms: float
    status_codes: dict[int, int] = field(default_factory=dict)
    top_errors: list[tuple[str, int]] = field(default_factory=list)


def elapsed_ms_since(started: float) -> float:
    return max(0.0, (time.perf_counter() - started) * 1000.0)
