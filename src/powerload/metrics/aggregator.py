from __future__ import annotations

from collections import Counter
from typing import Sequence

import numpy as np

from powerload.metrics.models import AggregateStatistics, RequestOutcome

TOP_ERRORS = 3


def percentile(sorted_values: Sequence[float], pct: float) -> float:
    """Linearly interpolated percentile over an ascending sample.

    The rank is ``pct / 100 * (n - 1)``; a fractional rank blends the two
    neighbouring order statistics, which is numpy's default ``linear`` method.
    """
    if len(sorted_values) == 0:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    return float(np.percentile(np.asarray(sorted_values, dtype=float), pct))


def summarize(
    outcomes: Sequence[RequestOutcome],
    total_time_ms: float,
    total_requests: int,
) -> AggregateStatistics:
    successful = sum(1 for o in outcomes if o.success)
    failed = len(outcomes) - successful
    timeouts = sum(1 for o in outcomes if o.is_timeout)

    latencies = sorted(o.elapsed_ms for o in outcomes)
    if latencies:
        min_ms = float(latencies[0])
        max_ms = float(latencies[-1])
        mean_ms = float(np.mean(latencies))
    else:
        min_ms = max_ms = mean_ms = 0.0

    success_rate = successful / total_requests * 100.0 if total_requests > 0 else 0.0
    seconds = total_time_ms / 1000.0
    throughput = total_requests / seconds if seconds > 0 else 0.0

    return AggregateStatistics(
        total_requests=total_requests,
        successful=successful,
        failed=failed,
        timeouts=timeouts,
        success_rate=success_rate,
        total_time_ms=total_time_ms,
        throughput_rps=throughput,
        min_ms=min_ms,
        max_ms=max_ms,
        mean_ms=mean_ms,
        p50_ms=percentile(latencies, 50),
        p90_ms=percentile(latencies, 90),
        p95_ms=percentile(latencies, 95),
        p99_ms=percentile(latencies, 99),
        status_codes=status_distribution(outcomes),
        top_errors=common_errors(outcomes),
    )


def status_distribution(outcomes: Sequence[RequestOutcome]) -> dict[int, int]:
    counts = Counter(o.status_code for o in outcomes)
    return dict(sorted(counts.items()))


def common_errors(outcomes: Sequence[RequestOutcome], limit: int = TOP_ERRORS) -> list[tuple[str, int]]:
    # Counter keeps insertion order and most_common is stable, so ties stay first-seen.
    counts = Counter(o.error_message for o in outcomes if not o.success and o.error_message)
    return counts.most_common(limit)
