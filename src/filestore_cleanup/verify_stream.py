"""
Streaming reader for `filestore/verify`.

The node answers with one JSON object per filestore entry, written back to
back for as long as the verification runs. Entries are decoded as they arrive
so the sweep can act on each one without waiting for the full response.
"""

import codecs
import itertools
import json
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Union

import requests

from filestore_cleanup.errors import (
    ApiError,
    TransportError,
    envelope_from_value,
    lookup_field,
)

VERIFY_COMMAND = "filestore/verify"
CHUNK_SIZE = 64 * 1024

# Status reported for an entry whose backing file does not exist.
NO_FILE = 11

# A decode error this close to the end of the buffer may just be a value cut
# off mid-token; wait for more data before calling it malformed.
TRUNCATION_WINDOW = 32

_WHITESPACE = re.compile(r"[ \t\n\r]*")
_decoder = json.JSONDecoder()

ErrorCallback = Callable[[str], None]


@dataclass(frozen=True)
class FileStoreEntry:
    """One result from `filestore/verify` (only the fields the sweep uses)."""
    status: int
    key: str

    @property
    def is_orphan(self) -> bool:
        return self.status == NO_FILE


def _report(on_error: Optional[ErrorCallback], message: str) -> None:
    if on_error is not None:
        on_error(message)


def _may_be_truncated(buf: str, err: json.JSONDecodeError) -> bool:
    if err.msg.startswith("Unterminated string"):
        return True
    return err.pos + TRUNCATION_WINDOW > len(buf)


def iter_json_values(chunks: Iterable[Union[bytes, str]],
                     on_error: Optional[ErrorCallback] = None) -> Iterator[object]:
    """
    Decode a stream of concatenated JSON values.

    Values may be separated by whitespace or nothing at all. A fragment that
    cannot be decoded is reported through on_error and skipped; decoding
    resumes at the next "{" after the start of the broken fragment, so a
    value that begins inside a truncated one is still recovered.
    """
    utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buf = ""
    resync = False
    eof = False

    for chunk in itertools.chain(chunks, [None]):
        if chunk is None:
            eof = True
            buf += utf8.decode(b"", final=True)
        elif isinstance(chunk, bytes):
            buf += utf8.decode(chunk)
        else:
            buf += chunk

        pos = 0
        while True:
            if resync:
                idx = buf.find("{", pos)
                if idx < 0:
                    pos = len(buf)
                    break
                pos = idx
                resync = False

            start = _WHITESPACE.match(buf, pos).end()
            if start == len(buf):
                pos = start
                break

            try:
                value, end = _decoder.raw_decode(buf, start)
            except json.JSONDecodeError as e:
                if not eof and _may_be_truncated(buf, e):
                    pos = start
                    break
                fragment = buf[start:e.pos + 1]
                if len(fragment) > 80:
                    fragment = fragment[:77] + "..."
                _report(on_error, f"{e.msg} (near {fragment!r})")
                idx = buf.find("{", start + 1)
                if idx < 0:
                    pos = len(buf)
                    resync = True
                    break
                pos = idx
                continue

            yield value
            pos = end

        # one trim per chunk; decoding above only moves pos
        buf = buf[pos:]


def parse_entry(value) -> FileStoreEntry:
    """
    Build a FileStoreEntry from a decoded JSON value.

    Missing fields default to status 0 and an empty key.

    Raises:
        ValueError: value is not an object or a field has the wrong type
    """
    if not isinstance(value, dict):
        raise ValueError(f"expected object, got {type(value).__name__}")

    status = lookup_field(value, "Status")
    if status is None:
        status = 0
    elif isinstance(status, bool) or not isinstance(status, int):
        raise ValueError(f"invalid Status {status!r}")

    key = ""
    key_obj = lookup_field(value, "Key")
    if key_obj is not None:
        if not isinstance(key_obj, dict):
            raise ValueError(f"invalid Key {key_obj!r}")
        slash = key_obj.get("/")
        if slash is not None:
            if not isinstance(slash, str):
                raise ValueError(f"invalid Key {key_obj!r}")
            key = slash

    return FileStoreEntry(status=status, key=key)


def _iter_chunks(response: requests.Response) -> Iterator[bytes]:
    try:
        yield from response.iter_content(chunk_size=CHUNK_SIZE)
    except requests.RequestException as e:
        raise TransportError(VERIFY_COMMAND, e) from e


def stream_verify(client, on_error: Optional[ErrorCallback] = None) -> Iterator[FileStoreEntry]:
    """
    Yield filestore entries from `filestore/verify` as they arrive.

    The request is sent on first iteration. The response is closed when the
    generator finishes, is closed early, or is abandoned by an exception.

    An error object as the first value means the node refused the request
    and ends the stream. An error object later on only affects that entry:
    it is reported through on_error and skipped.

    Raises:
        TransportError: the stream could not be opened or broke mid-read
        ApiError: the node answered with an error object instead of entries
    """
    response = client.stream(VERIFY_COMMAND)
    try:
        first = True
        for value in iter_json_values(_iter_chunks(response), on_error):
            envelope = envelope_from_value(value)
            if envelope is not None and envelope.text:
                if first:
                    raise ApiError(envelope.text, command=VERIFY_COMMAND)
                _report(on_error, f"error entry: {envelope.text}")
                continue
            first = False
            try:
                entry = parse_entry(value)
            except ValueError as e:
                _report(on_error, f"bad entry: {e}")
                continue
            yield entry
    finally:
        response.close()
