"""
Run configuration for a filestore sweep.

Values come from command-line options first, then environment variables,
then built-in defaults. The resolved CleanupConfig is immutable and is passed
explicitly to everything that needs it.
"""

import math
import os
import re
from dataclasses import dataclass
from typing import Optional, Union

import click

DEFAULT_ENDPOINT = "http://127.0.0.1:5001"
DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_UNPIN_ATTEMPTS = 64

ENDPOINT_ENV_VARS = ("FILESTORE_CLEANUP_ENDPOINT", "IPFS_API_URL")
TIMEOUT_ENV_VARS = ("FILESTORE_CLEANUP_TIMEOUT",)

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


@dataclass(frozen=True)
class CleanupConfig:
    """
    Settings for one sweep.

    Attributes:
        endpoint: Base URL of the node's HTTP API (no trailing slash)
        timeout: Seconds to wait for version and block/rm calls (0 = no timeout)
        verbose: Print per-block confirmations and the run summary
        max_unpin_attempts: Pins removed for a single block before giving up
            (0 = keep going until block/rm stops reporting a pin)
    """
    endpoint: str = DEFAULT_ENDPOINT
    timeout: float = DEFAULT_TIMEOUT
    verbose: bool = False
    max_unpin_attempts: int = DEFAULT_MAX_UNPIN_ATTEMPTS


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a Go-style duration ("30s", "1m30s", "500ms", "0") into seconds.

    A bare number is taken as seconds. Negative durations are rejected.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        if not text:
            raise ValueError("empty duration")
        try:
            seconds = float(text)
        except ValueError:
            sign = 1.0
            if text[0] in "+-":
                sign = -1.0 if text[0] == "-" else 1.0
                text = text[1:]
            pos = 0
            seconds = 0.0
            while pos < len(text):
                match = _DURATION_PART.match(text, pos)
                if not match:
                    raise ValueError(f"invalid duration {value!r}")
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos == 0:
                raise ValueError(f"invalid duration {value!r}")
            seconds *= sign
    if not math.isfinite(seconds):
        raise ValueError(f"invalid duration {value!r}")
    if seconds < 0:
        raise ValueError(f"negative duration {value!r}")
    return seconds


class DurationParamType(click.ParamType):
    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, float):
            return value
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationParamType()


def normalize_endpoint(endpoint: str) -> str:
    """Add a scheme to bare host:port values and drop trailing slashes."""
    endpoint = endpoint.strip()
    if "://" not in endpoint:
        endpoint = f"http://{endpoint}"
    return endpoint.rstrip("/")


def _get_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def load_config(endpoint: Optional[str] = None,
                timeout: Optional[float] = None,
                verbose: bool = False,
                max_unpin_attempts: Optional[int] = None) -> CleanupConfig:
    """
    Build a CleanupConfig, filling unset values from the environment.

    Args:
        endpoint: API base URL (default: $FILESTORE_CLEANUP_ENDPOINT,
            $IPFS_API_URL, then http://127.0.0.1:5001)
        timeout: Call timeout in seconds (default: $FILESTORE_CLEANUP_TIMEOUT, then 30s)
        verbose: Verbose output
        max_unpin_attempts: Unpin limit per block (default: 64)

    Raises:
        ValueError: if the timeout from the environment cannot be parsed, or
            max_unpin_attempts is negative
    """
    endpoint = endpoint or _get_env(*ENDPOINT_ENV_VARS) or DEFAULT_ENDPOINT

    if timeout is None:
        env_timeout = _get_env(*TIMEOUT_ENV_VARS)
        timeout = parse_duration(env_timeout) if env_timeout else DEFAULT_TIMEOUT

    if max_unpin_attempts is None:
        max_unpin_attempts = DEFAULT_MAX_UNPIN_ATTEMPTS
    if max_unpin_attempts < 0:
        raise ValueError("max_unpin_attempts must be >= 0")

    return CleanupConfig(
        endpoint=normalize_endpoint(endpoint),
        timeout=float(timeout),
        verbose=verbose,
        max_unpin_attempts=max_unpin_attempts,
    )
