from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TextIO

from powerload.config import LoadTestConfig, TransportProtocol
from powerload.errors import ConfigurationError
from powerload.loadgen.client import Sender, sender_for
from powerload.loadgen.progress import DispatchCounters, ProgressReporter
from powerload.metrics import AggregateStatistics, RequestOutcome, summarize
from powerload.storage import Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunResult:
    run_id: str
    outcomes: list[RequestOutcome]
    elapsed_ms: float


def _new_run_id() -> str:
    return uuid.uuid4().hex


async def run_load_test(
    config: LoadTestConfig,
    *,
    sender: Sender | None = None,
    storage: Storage | None = None,
    progress_stream: TextIO | None = None,
) -> AggregateStatistics:
    """Dispatch ``config.total_requests`` requests and reduce them to statistics.

    At most ``config.concurrency`` requests are in flight at once. Individual
    request failures are recorded as outcomes; only configuration defects raise.
    The sender, supplied or built here, is closed when the run ends.
    """
    validate(config)
    if sender is None:
        sender = sender_for(config)
    run_id = _new_run_id()
    logger.info(
        "Starting run %s: %d %s request(s) to %s, concurrency %d",
        run_id,
        config.total_requests,
        config.protocol.value,
        config.target,
        config.effective_concurrency,
    )
    result = await _execute_load(run_id, config, sender, progress_stream)
    stats = summarize(result.outcomes, result.elapsed_ms, config.total_requests)
    logger.info(
        "Run %s finished in %.0f ms: %d ok, %d failed, %d timed out",
        run_id,
        result.elapsed_ms,
        stats.successful,
        stats.failed,
        stats.timeouts,
    )
    if storage is not None:
        storage.save_run(config, run_id, result.outcomes, stats)
    return stats


def validate(config: LoadTestConfig | None) -> None:
    if config is None:
        msg = "A load test configuration is required"
        raise ConfigurationError(msg)
    if not config.target:
        msg = "Target must not be empty"
        raise ConfigurationError(msg)
    if config.total_requests < 0:
        msg = f"Number of requests must be >= 0, got {config.total_requests}"
        raise ConfigurationError(msg)
    if config.concurrency < 1:
        msg = f"Concurrency must be >= 1, got {config.concurrency}"
        raise ConfigurationError(msg)
    if config.timeout_sec <= 0:
        msg = f"Timeout must be positive, got {config.timeout_sec}"
        raise ConfigurationError(msg)
    if config.delay_ms < 0:
        msg = f"Delay must be >= 0, got {config.delay_ms}"
        raise ConfigurationError(msg)
    if config.protocol in (TransportProtocol.TCP, TransportProtocol.UDP) and config.port <= 0:
        msg = f"{config.protocol.value.upper()} requires a positive port"
        raise ConfigurationError(msg)


async def _execute_load(
    run_id: str,
    config: LoadTestConfig,
    sender: Sender,
    progress_stream: TextIO | None,
) -> RunResult:
    outcomes: list[RequestOutcome] = []
    counters = DispatchCounters()
    gate = asyncio.Semaphore(config.effective_concurrency)
    reporter = None
    if progress_stream is not None:
        reporter = ProgressReporter(counters, config.total_requests, progress_stream)
        reporter.start()

    tasks: list[asyncio.Task[None]] = []
    started_mono = time.perf_counter()
    try:
        for _ in range(config.total_requests):
            await gate.acquire()
            tasks.append(asyncio.create_task(_dispatch_one(sender, config, gate, counters, outcomes)))
        if tasks:
            await asyncio.gather(*tasks)
    finally:
        elapsed_ms = (time.perf_counter() - started_mono) * 1000.0
        for task in tasks:
            task.cancel()
        if reporter is not None:
            reporter.stop()
        await sender.aclose()
    return RunResult(run_id=run_id, outcomes=outcomes, elapsed_ms=elapsed_ms)


async def _dispatch_one(
    sender: Sender,
    config: LoadTestConfig,
    gate: asyncio.Semaphore,
    counters: DispatchCounters,
    outcomes: list[RequestOutcome],
) -> None:
    counters.in_progress += 1
    started = time.perf_counter()
    try:
        try:
            outcome = await sender.send(config)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("Sender raised instead of returning an outcome")
            outcome = RequestOutcome.failed(started, f"Unexpected error: {exc}")
        outcomes.append(outcome)
        if config.verbose:
            _log_outcome(outcome)
    finally:
        counters.in_progress -= 1
        counters.completed += 1
        try:
            # The slot stays taken through the pause so pacing holds per slot.
            if config.delay_ms > 0:
                await asyncio.sleep(config.delay_ms / 1000.0)
        finally:
            gate.release()


def _log_outcome(outcome: RequestOutcome) -> None:
    if outcome.success:
        logger.info(
            "Request completed: status=%d time=%.1fms bytes=%d",
            outcome.status_code,
            outcome.elapsed_ms,
            outcome.content_length,
        )
    elif outcome.error_message:
        logger.info("Request failed after %.1fms: %s", outcome.elapsed_ms, outcome.error_message)
    else:
        logger.info("Request failed: status=%d time=%.1fms", outcome.status_code, outcome.elapsed_ms)
