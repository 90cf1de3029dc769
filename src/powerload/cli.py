from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from powerload.config import LoadTestConfig, TransportProtocol
from powerload.errors import ConfigurationError
from powerload.loadgen.runner import run_load_test
from powerload.metrics import AggregateStatistics
from powerload.storage import Storage, default_storage


def _parse_headers(values: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for raw in values:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            msg = f"Invalid header {raw!r}, expected 'key:value'"
            raise ConfigurationError(msg)
        headers[name.strip()] = value.strip()
    return headers


def _format_url(url: str, protocol: TransportProtocol) -> str:
    if protocol is TransportProtocol.HTTP and "://" not in url:
        return f"http://{url}"
    return url


def build_config(args: argparse.Namespace) -> LoadTestConfig:
    protocol = TransportProtocol(args.protocol)
    return LoadTestConfig(
        target=_format_url(args.url, protocol),
        protocol=protocol,
        port=args.port,
        method=args.method.upper(),
        headers=_parse_headers(args.header),
        body=args.data,
        total_requests=args.number,
        concurrency=args.concurrency,
        timeout_sec=args.timeout,
        delay_ms=args.delay,
        verbose=args.verbose,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HTTP/TCP/UDP load generator")
    parser.add_argument("-u", "--url", required=True, help="Target URL or host")
    parser.add_argument("-n", "--number", type=int, default=100, help="Total requests")
    parser.add_argument("-c", "--concurrency", type=int, default=10, help="Requests in flight")
    parser.add_argument("-t", "--timeout", type=float, default=10.0, help="Per-request timeout (sec)")
    parser.add_argument("-m", "--method", default="GET")
    parser.add_argument("-H", "--header", action="append", default=[], help="Header as 'key:value'")
    parser.add_argument("-d", "--data", default=None, help="Request body")
    parser.add_argument("--delay", type=float, default=0.0, help="Pause after each request (ms)")
    parser.add_argument("-p", "--protocol", choices=[p.value for p in TransportProtocol], default="http")
    parser.add_argument("--port", type=int, default=0, help="Port for tcp/udp targets")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--save", action="store_true", help="Persist the run to the default store")
    parser.add_argument("--db", type=Path, default=None, help="Persist the run to this DuckDB file")
    return parser


def _print_summary(stats: AggregateStatistics) -> None:
    print(f"Total duration:   {stats.total_time_ms / 1000.0:.2f} s")
    print(f"Throughput:       {stats.throughput_rps:.2f} req/s")
    print(f"Total requests:   {stats.total_requests}")
    print(f"Successful:       {stats.successful} ({stats.success_rate:.1f}%)")
    if stats.failed:
        print(f"Failed:           {stats.failed}")
    if stats.timeouts:
        print(f"Timed out:        {stats.timeouts}")
    print(f"Latency min/avg/max: {stats.min_ms:.1f} / {stats.mean_ms:.1f} / {stats.max_ms:.1f} ms")
    print(
        f"Latency p50/p90/p95/p99: {stats.p50_ms:.1f} / {stats.p90_ms:.1f} / "
        f"{stats.p95_ms:.1f} / {stats.p99_ms:.1f} ms"
    )
    for code, count in stats.status_codes.items():
        print(f"  status {code}: {count}")
    if stats.top_errors:
        print("Common errors:")
        for message, count in stats.top_errors:
            print(f"  {count} x {message}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage: Storage | None = None
    if args.db is not None:
        storage = Storage(args.db)
    elif args.save:
        storage = default_storage()

    try:
        config = build_config(args)
        stats = asyncio.run(run_load_test(config, storage=storage, progress_stream=sys.stderr))
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    _print_summary(stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
