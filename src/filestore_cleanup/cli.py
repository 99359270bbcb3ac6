# src/filestore_cleanup/cli.py

import os
import sys
import time
from datetime import datetime
from pathlib import Path

import click

from filestore_cleanup import __version__
from filestore_cleanup.config import DEFAULT_MAX_UNPIN_ATTEMPTS, DURATION, load_config
from filestore_cleanup.errors import FilestoreCleanupError

COPYRIGHT_LINES = (
    "Copyright © 2021, The filestore-cleanup Contributors. All rights reserved.",
    "BSD 3-Clause “New” or “Revised” License.",
)

_LOG_SETUP = False
_LOG_FILE = None
_LOG_PATH = None
_RUN_HEADER_EMITTED = False


class _TeeStream:
    """Write to the terminal stream and copy everything into the master log."""

    def __init__(self, primary, log_file):
        self._primary = primary
        self._log_file = log_file
        self.encoding = getattr(primary, "encoding", "utf-8")

    def write(self, data):
        if isinstance(data, bytes):
            data = data.decode(self.encoding, errors="replace")
        result = self._primary.write(data)
        try:
            self._log_file.write(data)
        except (OSError, ValueError):
            pass
        return result

    def flush(self):
        self._primary.flush()
        try:
            self._log_file.flush()
        except (OSError, ValueError):
            pass

    def __getattr__(self, name):
        return getattr(self._primary, name)


def _log_path() -> Path:
    log_file = os.environ.get("FILESTORE_CLEANUP_LOG_FILE")
    if log_file:
        return Path(os.path.expanduser(log_file))
    log_dir = os.environ.get("FILESTORE_CLEANUP_LOG_DIR")
    base_dir = Path(log_dir) if log_dir else (Path.home() / ".logs" / "filestore-cleanup")
    return base_dir / "filestore-cleanup.log"


def _setup_master_log() -> None:
    global _LOG_SETUP, _LOG_FILE, _LOG_PATH
    if _LOG_SETUP:
        return
    _LOG_SETUP = True
    if os.environ.get("FILESTORE_CLEANUP_LOG_DISABLED") == "1":
        return
    try:
        path = _log_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        _LOG_FILE = open(path, "a", encoding="utf-8", buffering=1)
    except OSError as e:
        print(f"⚠️  Master log disabled: {e}", file=sys.stderr)
        return
    _LOG_PATH = path
    sys.stdout = _TeeStream(sys.stdout, _LOG_FILE)
    sys.stderr = _TeeStream(sys.stderr, _LOG_FILE)


def _emit_run_header() -> None:
    global _RUN_HEADER_EMITTED
    if _RUN_HEADER_EMITTED:
        return
    timestamp = time.strftime("%Y-%m-%dT%H:%M:%S%z")
    print(f"🧾 filestore-cleanup v{__version__} @ {timestamp}")
    if _LOG_PATH:
        print(f"🧾 log: {_LOG_PATH}")
    _RUN_HEADER_EMITTED = True


def _print_copyright(ctx, param, value):
    if not value or ctx.resilient_parsing:
        return
    for line in COPYRIGHT_LINES:
        click.echo(line)
    ctx.exit(0)


@click.command()
@click.option("--endpoint", default=None,
              help="Node API to connect to (default: $FILESTORE_CLEANUP_ENDPOINT, "
                   "$IPFS_API_URL or http://127.0.0.1:5001).")
@click.option("--timeout", type=DURATION, default=None,
              help="Per connect/read timeout for calls like 'version' and 'block/rm', "
                   "e.g. 60s; not a total deadline for the call "
                   "(default: $FILESTORE_CLEANUP_TIMEOUT or 30s; 0 disables).")
@click.option("-v", "--verbose", is_flag=True, help="Display verbose output.")
@click.option("--max-unpin-attempts", type=click.IntRange(min=0),
              default=DEFAULT_MAX_UNPIN_ATTEMPTS, show_default=True,
              help="Pins to remove for one block before giving up (0 = no limit).")
@click.option("--report", "report_path", type=click.Path(dir_okay=False), default=None,
              help="Write a JSON summary of the sweep to this file.")
@click.option("--no-progress", is_flag=True, help="Don't show the live progress line.")
@click.option("--copyright", is_flag=True, is_eager=True, expose_value=False,
              callback=_print_copyright, help="Display copyright and exit.")
@click.version_option(__version__, prog_name="filestore-cleanup",
                      message="%(prog)s %(version)s")
def cli(endpoint, timeout, verbose, max_unpin_attempts, report_path, no_progress):
    """Remove filestore blocks that point to files that no longer exist."""
    from filestore_cleanup import client as node_client
    from filestore_cleanup.progress import SweepProgress
    from filestore_cleanup.report import build_report, write_report
    from filestore_cleanup.sweep import clean_filestore

    _setup_master_log()
    _emit_run_header()

    try:
        config = load_config(endpoint=endpoint, timeout=timeout, verbose=verbose,
                             max_unpin_attempts=max_unpin_attempts)
    except ValueError as e:
        raise click.UsageError(str(e))

    with node_client.get_node_client(config) as client:
        try:
            node_version = client.version(config.timeout)
        except FilestoreCleanupError as e:
            click.echo(f"❌ Failed to connect to end point: {e}", err=True)
            click.echo(f"   URL: {config.endpoint}", err=True)
            sys.exit(1)

        if verbose:
            print(f"🔌 Connected to {config.endpoint} (node {node_version or 'unknown'})")
        print("🧹 Checking and cleaning filestore...")

        started_at = datetime.now().astimezone()
        with SweepProgress(enabled=False if no_progress else None) as progress:
            try:
                stats = clean_filestore(client, config, progress=progress)
            except FilestoreCleanupError as e:
                progress.clear()
                click.echo(f"❌ Filestore sweep failed: {e}", err=True)
                sys.exit(1)
        finished_at = datetime.now().astimezone()

    if report_path:
        out = write_report(build_report(stats, config, started_at, finished_at), report_path)
        print(f"📝 Report written to: {out}")


def main():
    cli()


if __name__ == "__main__":
    main()
