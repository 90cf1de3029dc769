from __future__ import annotations

from powerload.metrics.aggregator import percentile, summarize
from powerload.metrics.models import AggregateStatistics, RequestOutcome, elapsed_ms_since

__all__ = ["AggregateStatistics", "RequestOutcome", "elapsed_ms_since", "percentile", "summarize"]
