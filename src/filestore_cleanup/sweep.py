"""
Filestore sweep: remove blocks whose backing file no longer exists.

Entries are taken one at a time from `filestore/verify`. For each entry
reporting a missing file, block/rm is retried until it succeeds or fails
for a reason other than a pin. Every pin the node reports in the way is
removed before the next attempt.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional
from urllib.parse import quote

from rich.console import Console
from rich.markup import escape

from filestore_cleanup.config import CleanupConfig
from filestore_cleanup.errors import ApiError, FilestoreCleanupError, TransportError
from filestore_cleanup.pinned import extract_pin_id, is_pin_conflict
from filestore_cleanup.progress import SweepProgress
from filestore_cleanup.verify_stream import stream_verify

console = Console(soft_wrap=True)


@dataclass
class SweepStats:
    """Counters and outcomes for one sweep."""
    entries_seen: int = 0
    orphans_found: int = 0
    blocks_removed: int = 0
    blocks_failed: int = 0
    pins_removed: int = 0
    pin_errors: int = 0
    decode_errors: int = 0
    removed: List[str] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)

    def counters(self) -> Dict[str, int]:
        data = asdict(self)
        del data["removed"]
        del data["failures"]
        return data


def _say(message: str, progress: Optional[SweepProgress] = None) -> None:
    if progress is not None:
        progress.clear()
    console.print(message, highlight=False)


def _give_up(key: str, error: str, stats: SweepStats,
             progress: Optional[SweepProgress]) -> bool:
    stats.blocks_failed += 1
    stats.failures.append({"key": key, "error": error})
    _say(f"❌ Error removing bad block {escape(key)}: {escape(error)}", progress)
    return False


def remove_orphan(client, key: str, config: CleanupConfig, stats: SweepStats,
                  progress: Optional[SweepProgress] = None) -> bool:
    """
    Remove one block, unpinning whatever blocks the removal.

    Returns True if the block was removed. Failures are logged and recorded
    in stats; nothing is raised.
    """
    block_cmd = "block/rm?arg=" + quote(key, safe="")
    unpins = 0

    while True:
        try:
            client.request(block_cmd, config.timeout)
        except TransportError as e:
            return _give_up(key, str(e), stats, progress)
        except ApiError as e:
            if not is_pin_conflict(e.text):
                return _give_up(key, e.text, stats, progress)

            pin_id = extract_pin_id(e.text)
            if pin_id is None:
                return _give_up(key, f"no pin found in error: {e.text}", stats, progress)
            if config.max_unpin_attempts and unpins >= config.max_unpin_attempts:
                return _give_up(
                    key, f"still pinned after {unpins} unpin attempts: {e.text}",
                    stats, progress,
                )

            _say(f"📌 Affected block is pinned, removing pin: {escape(pin_id)}", progress)
            unpins += 1
            try:
                # pin/rm can be slow on large recursive pins: no timeout
                client.request("pin/rm?arg=" + quote(pin_id, safe=""), 0)
            except FilestoreCleanupError as pin_err:
                stats.pin_errors += 1
                _say(f"⚠️  Error removing pin {escape(pin_id)}: {escape(str(pin_err))}", progress)
            else:
                stats.pins_removed += 1
            continue

        stats.blocks_removed += 1
        stats.removed.append(key)
        if config.verbose:
            _say(f"✅ Removed: {escape(key)}", progress)
        return True


def clean_filestore(client, config: CleanupConfig,
                    progress: Optional[SweepProgress] = None) -> SweepStats:
    """
    Run one full sweep over `filestore/verify`.

    Args:
        client: NodeClient (or anything with request/stream)
        config: Run configuration
        progress: Optional live progress line

    Returns:
        SweepStats for the run

    Raises:
        TransportError: the verify stream could not be opened or broke
        ApiError: the node answered the verify request with an error
    """
    stats = SweepStats()
    if config.verbose:
        _say("🧹 Removing blocks that point to a file that doesn't exist from filestore...")

    def on_decode_error(message: str) -> None:
        stats.decode_errors += 1
        _say(f"⚠️  Error decoding filestore entry: {escape(message)}", progress)

    for entry in stream_verify(client, on_error=on_decode_error):
        stats.entries_seen += 1
        if progress is not None:
            progress.update(advance=1, orphan=entry.is_orphan)
        if not entry.is_orphan:
            continue

        stats.orphans_found += 1
        _say(f"🗑️  Removing reference from filestore: {escape(entry.key)}", progress)
        remove_orphan(client, entry.key, config, stats, progress)

    if config.verbose:
        _say(
            f"📊 {stats.entries_seen} entries checked, {stats.orphans_found} orphaned, "
            f"{stats.blocks_removed} removed, {stats.blocks_failed} failed, "
            f"{stats.pins_removed} pins removed"
        )
    return stats
