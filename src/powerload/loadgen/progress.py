from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TextIO

BAR_WIDTH = 30
REFRESH_INTERVAL_SEC = 0.2


@dataclass(slots=True)
class DispatchCounters:
    """Counters written only by the dispatcher; everyone else reads."""

    completed: int = 0
    in_progress: int = 0


def render_progress(completed: int, in_progress: int, total: int, width: int = BAR_WIDTH) -> str:
    fraction = completed / total if total > 0 else 1.0
    fraction = min(1.0, max(0.0, fraction))
    filled = int(width * fraction)
    bar = "[" + "█" * filled + "░" * (width - filled) + "]"
    return f"{bar} {fraction * 100:.1f}% ({completed}/{total}) - In progress: {in_progress}"


class ProgressReporter:
    def __init__(
        self,
        counters: DispatchCounters,
        total: int,
        stream: TextIO,
        interval_sec: float = REFRESH_INTERVAL_SEC,
    ) -> None:
        self._counters = counters
        self._total = total
        self._stream = stream
        self._interval_sec = interval_sec
        self._stop = threading.Event()
        self._render_lock = threading.Lock()
        self._thread = threading.Thread(target=self._loop, name="powerload-progress", daemon=True)
        self._stopped = False

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join()
        with self._render_lock:
            self._write()
        self._stream.write("\n")
        self._stream.flush()

    def tick(self) -> bool:
        # A slow terminal must never hold up the loop; drop the frame instead.
        if not self._render_lock.acquire(blocking=False):
            return False
        try:
            self._write()
        finally:
            self._render_lock.release()
        return True

    def _loop(self) -> None:
        while not self._stop.wait(self._interval_sec):
            self.tick()

    def _write(self) -> None:
        line = render_progress(self._counters.completed, self._counters.in_progress, self._total)
        self._stream.write("\r" + line + "    ")
        self._stream.flush()
