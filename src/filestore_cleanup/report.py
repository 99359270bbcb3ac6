"""JSON report of a finished sweep."""

from datetime import datetime
from pathlib import Path
from typing import Union

import orjson

from filestore_cleanup.config import CleanupConfig
from filestore_cleanup.sweep import SweepStats


def build_report(stats: SweepStats, config: CleanupConfig,
                 started_at: datetime, finished_at: datetime) -> dict:
    return {
        "endpoint": config.endpoint,
        "started_at": started_at.isoformat(timespec="seconds"),
        "finished_at": finished_at.isoformat(timespec="seconds"),
        "duration_seconds": round((finished_at - started_at).total_seconds(), 3),
        "stats": stats.counters(),
        "removed": list(stats.removed),
        "failures": list(stats.failures),
    }


def write_report(report: dict, out_path: Union[str, Path]) -> Path:
    """Write the report as indented JSON, creating parent directories."""
    out = Path(out_path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(orjson.dumps(report, option=orjson.OPT_INDENT_2))
    return out
