"""
Tests for the streaming `filestore/verify` reader.
"""

import json
import unittest

import pytest
import requests

from filestore_cleanup.errors import ApiError, TransportError
from filestore_cleanup.verify_stream import (
    NO_FILE,
    VERIFY_COMMAND,
    FileStoreEntry,
    iter_json_values,
    parse_entry,
    stream_verify,
)


def _entry(status, key):
    return {"Status": status, "ErrorMsg": "", "Key": {"/": key}, "FilePath": f"/data/{key}", "Offset": 0, "Size": 262144}


class _FakeResponse:
    def __init__(self, chunks, fail_after=None):
        self._chunks = list(chunks)
        self._fail_after = fail_after
        self.closed = False

    def iter_content(self, chunk_size=None):
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise requests.exceptions.ChunkedEncodingError("connection reset")
            yield chunk

    def close(self):
        self.closed = True


class _FakeStreamClient:
    def __init__(self, response):
        self.response = response
        self.opened = []

    def stream(self, cmd):
        self.opened.append(cmd)
        return self.response


class TestIterJsonValues(unittest.TestCase):
    def test_concatenated_objects_without_separator(self):
        data = b'{"a":1}{"b":2} {"c":3}\n'
        self.assertEqual(list(iter_json_values([data])), [{"a": 1}, {"b": 2}, {"c": 3}])

    def test_values_split_across_chunks(self):
        records = [_entry(NO_FILE, "bafkreiaaa"), _entry(0, "bafkreibbb")]
        data = "".join(json.dumps(r) + "\n" for r in records).encode()
        chunks = [data[i:i + 1] for i in range(len(data))]

        self.assertEqual(list(iter_json_values(chunks)), records)

    def test_multibyte_utf8_split_across_chunks(self):
        data = json.dumps({"Key": {"/": "café"}}, ensure_ascii=False).encode()
        split = data.index("é".encode()) + 1
        self.assertEqual(list(iter_json_values([data[:split], data[split:]])), [{"Key": {"/": "café"}}])

    def test_malformed_fragment_is_skipped(self):
        valid = [_entry(0, f"key{i}") for i in range(3)]
        data = b'{"Status": oops}\n' + "".join(json.dumps(r) + "\n" for r in valid).encode()
        errors = []

        values = list(iter_json_values([data], on_error=errors.append))

        self.assertEqual(values, valid)
        self.assertEqual(len(errors), 1)

    def test_truncated_tail_reported_at_eof(self):
        errors = []
        values = list(iter_json_values([b'{"a":1}\n{"Status": 11, "Ke'], on_error=errors.append))

        self.assertEqual(values, [{"a": 1}])
        self.assertEqual(len(errors), 1)

    def test_truncated_value_running_into_next_is_recovered(self):
        data = (
            b'{"Status": 11, "Ke'
            b'{"Status":11,"Key":{"/":"B"}}\n'
            b'{"Status":11,"Key":{"/":"C"}}\n'
        )
        errors = []

        values = list(iter_json_values([data], on_error=errors.append))

        self.assertEqual(values, [
            {"Status": 11, "Key": {"/": "B"}},
            {"Status": 11, "Key": {"/": "C"}},
        ])
        self.assertEqual(len(errors), 1)

    def test_many_values_in_one_chunk(self):
        records = [_entry(i % 12, f"key{i}") for i in range(500)]
        data = "".join(json.dumps(r) for r in records).encode()
        mid = len(data) // 2 + 3

        self.assertEqual(list(iter_json_values([data[:mid], data[mid:]])), records)

    def test_empty_stream(self):
        self.assertEqual(list(iter_json_values([])), [])
        self.assertEqual(list(iter_json_values([b"  \n"])), [])


class TestParseEntry(unittest.TestCase):
    def test_status_and_key(self):
        entry = parse_entry(_entry(NO_FILE, "bafkreiaaa"))
        self.assertEqual(entry, FileStoreEntry(status=NO_FILE, key="bafkreiaaa"))
        self.assertTrue(entry.is_orphan)

    def test_missing_fields_default(self):
        entry = parse_entry({})
        self.assertEqual(entry, FileStoreEntry(status=0, key=""))
        self.assertFalse(entry.is_orphan)

    def test_case_insensitive_fields(self):
        self.assertEqual(parse_entry({"status": 11, "key": {"/": "k"}}), FileStoreEntry(11, "k"))

    def test_wrong_shapes_rejected(self):
        for value in ([1, 2], "x", {"Status": "11"}, {"Status": True}, {"Key": "k"}, {"Key": {"/": 5}}):
            with self.assertRaises(ValueError, msg=repr(value)):
                parse_entry(value)


class TestStreamVerify(unittest.TestCase):
    def test_yields_entries_and_closes_response(self):
        data = b"".join(json.dumps(e).encode() for e in [_entry(11, "A"), _entry(0, "B")])
        response = _FakeResponse([data])
        client = _FakeStreamClient(response)

        entries = list(stream_verify(client))

        self.assertEqual(client.opened, [VERIFY_COMMAND])
        self.assertEqual([(e.status, e.key) for e in entries], [(11, "A"), (0, "B")])
        self.assertTrue(response.closed)

    def test_stream_is_opened_lazily(self):
        client = _FakeStreamClient(_FakeResponse([]))
        entries = stream_verify(client)
        self.assertEqual(client.opened, [])
        list(entries)
        self.assertEqual(client.opened, [VERIFY_COMMAND])

    def test_response_closed_when_consumer_stops_early(self):
        data = b"".join(json.dumps(_entry(0, str(i))).encode() for i in range(5))
        response = _FakeResponse([data])
        entries = stream_verify(_FakeStreamClient(response))

        next(entries)
        entries.close()

        self.assertTrue(response.closed)

    def test_bad_entry_reported_and_skipped(self):
        data = b'{"Status":"bad"}{"Status":11,"Key":{"/":"A"}}'
        errors = []

        entries = list(stream_verify(_FakeStreamClient(_FakeResponse([data])), on_error=errors.append))

        self.assertEqual(entries, [FileStoreEntry(11, "A")])
        self.assertEqual(len(errors), 1)

    def test_leading_error_object_raises(self):
        data = b'{"Message":"filestore is not enabled, see https://git.io/vNItf","Code":0,"Type":"error"}\n'
        response = _FakeResponse([data])

        with self.assertRaises(ApiError) as ctx:
            list(stream_verify(_FakeStreamClient(response)))

        self.assertIn("filestore is not enabled", ctx.exception.text)
        self.assertTrue(response.closed)

    def test_later_error_object_reported_and_skipped(self):
        data = (
            b'{"Status":11,"Key":{"/":"A"}}\n'
            b'{"Message":"some per-entry problem","Code":0,"Type":"error"}\n'
            b'{"Status":11,"Key":{"/":"C"}}\n'
        )
        response = _FakeResponse([data])
        errors = []

        entries = list(stream_verify(_FakeStreamClient(response), on_error=errors.append))

        self.assertEqual(entries, [FileStoreEntry(11, "A"), FileStoreEntry(11, "C")])
        self.assertEqual(len(errors), 1)
        self.assertIn("some per-entry problem", errors[0])
        self.assertTrue(response.closed)

    def test_connection_drop_mid_stream_raises_transport_error(self):
        response = _FakeResponse([json.dumps(_entry(0, "A")).encode(), b"{}"], fail_after=1)

        with pytest.raises(TransportError):
            list(stream_verify(_FakeStreamClient(response)))
        assert response.closed


if __name__ == "__main__":
    unittest.main()
