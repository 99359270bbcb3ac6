"""Live progress line for the verify sweep."""

import shutil
import sys
import time

from tqdm import tqdm


def _fit(text: str, width: int) -> str:
    """Truncate text to width, keeping head and tail, then pad to width."""
    if len(text) > width:
        if width <= 3:
            text = text[:width]
        else:
            head = width // 2 - 1
            tail = width - head - 3
            text = f"{text[:head]}...{text[-tail:]}"
    return text.ljust(width)


class SweepProgress:
    """Single status line: tqdm meter for entries verified plus orphan count.

    The total is unknown up front (the node streams entries until it is done),
    so the meter shows count and rate only.

    Example:
        with SweepProgress() as progress:
            for entry in entries:
                progress.update(advance=1)
    """

    def __init__(self, prefix: str = "🔍 Verifying", unit: str = "entries", enabled: bool = None):
        """Initialize progress display.

        Args:
            prefix: Label in front of the meter
            unit: Unit name for the counter
            enabled: Force enable/disable. If None, auto-detects TTY.
        """
        if enabled is None:
            enabled = sys.stdout.isatty()
        self.enabled = enabled
        self.prefix = prefix
        self.unit = unit
        self.start = time.monotonic()
        self.n = 0
        self.orphans = 0

    def _width(self) -> int:
        try:
            width = shutil.get_terminal_size((120, 20)).columns
        except Exception:
            width = 120
        return max(10, width - 2)

    def _line(self, width: int) -> str:
        elapsed = max(time.monotonic() - self.start, 1e-9)
        meter = tqdm.format_meter(
            self.n,
            None,
            elapsed,
            prefix=self.prefix,
            unit=self.unit,
        )
        return _fit(f"{meter} | orphans: {self.orphans}", width)

    def update(self, *, advance: int = 0, orphan: bool = False) -> None:
        """Count verified entries (and orphans) and redraw the line."""
        self.n += advance
        if orphan:
            self.orphans += 1
        if not self.enabled:
            return
        sys.stdout.write("\r" + self._line(self._width()))
        sys.stdout.flush()

    def clear(self) -> None:
        """Blank the line so regular output can be printed over it."""
        if not self.enabled:
            return
        sys.stdout.write("\r\x1b[2K")
        sys.stdout.flush()

    def close(self) -> None:
        if not self.enabled:
            return
        sys.stdout.write("\r" + self._line(self._width()) + "\n")
        sys.stdout.flush()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
