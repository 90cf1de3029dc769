from __future__ import annotations

from powerload.config.models import LoadTestConfig, TransportProtocol

__all__ = ["LoadTestConfig", "TransportProtocol"]
