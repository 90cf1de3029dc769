from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import httpx


class TransportProtocol(str, Enum):
    HTTP = "http"
    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True, slots=True)
class LoadTestConfig:
    target: str
    protocol: TransportProtocol = TransportProtocol.HTTP
    port: int = 0
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str | None = None
    total_requests: int = 100
    concurrency: int = 10
    timeout_sec: float = 10.0
    delay_ms: float = 0.0
    verbose: bool = False

    @property
    def effective_concurrency(self) -> int:
        # A limit above the request count behaves exactly like C == N.
        return max(1, min(self.concurrency, self.total_requests))

    @property
    def host(self) -> str:
        if "://" in self.target:
            return httpx.URL(self.target).host
        return self.target

    @property
    def payload(self) -> bytes:
        if not self.body:
            return b""
        return self.body.encode("utf-8")

    def to_metadata(self) -> Mapping[str, Any]:
        return {
            "target": self.target,
            "protocol": self.protocol.value,
            "port": self.port,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
            "total_requests": self.total_requests,
            "concurrency": self.concurrency,
            "timeout_sec": self.timeout_sec,
            "delay_ms": self.delay_ms,
            "verbose": self.verbose,
        }
