"""Generic reachability checks against named targets."""

from __future__ import annotations

from dataclasses import dataclass, field
import socket
import time
from typing import Protocol
from urllib import error, request


class Reachability(Protocol):
    """Reachability tests; each raises OSError-derived errors on failure."""

    def resolve(self, name: str, timeout_s: float) -> list[str]:
        """Resolve a host name to addresses."""

    def connect(self, host: str, port: int, timeout_s: float) -> float:
        """Open a TCP connection; return latency in milliseconds."""

    def fetch(self, url: str, timeout_s: float) -> int:
        """Fetch a URL; return the HTTP status code."""


class SocketReachability:
    """Reachability over the host network stack."""

    def resolve(self, name: str, timeout_s: float) -> list[str]:
        # getaddrinfo has no timeout of its own; the evaluator deadline bounds it.
        infos = socket.getaddrinfo(name, None)
        return sorted({info[4][0] for info in infos})

    def connect(self, host: str, port: int, timeout_s: float) -> float:
        start = time.monotonic()
        with socket.create_connection((host, port), timeout=timeout_s):
            return (time.monotonic() - start) * 1000.0

    def fetch(self, url: str, timeout_s: float) -> int:
        req = request.Request(url, method="GET", headers={"User-Agent": "tunnel-supervisor"})
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                response.read(1024)
                return int(response.status)
        except error.HTTPError as exc:
            return int(exc.code)


@dataclass
class FakeReachability:
    """Table-driven Reachability for tests."""

    unreachable: set[str] = field(default_factory=set)
    delay_s: float = 0.0

    def _check(self, target: str) -> None:
        if self.delay_s:
            time.sleep(self.delay_s)
        if target in self.unreachable:
            raise OSError(f"{target} unreachable")

    def resolve(self, name: str, timeout_s: float) -> list[str]:
        self._check(name)
        return ["192.0.2.1"]

    def connect(self, host: str, port: int, timeout_s: float) -> float:
        self._check(host)
        return 1.0

    def fetch(self, url: str, timeout_s: float) -> int:
        self._check(url)
        return 200
