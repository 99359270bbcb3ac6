"""
HTTP API client for the node running the filestore.

All commands are POSTed to <endpoint>/api/v0/<command>. Errors come back as a
JSON envelope in the body, so every response is classified before it is
returned.
"""

from typing import Optional

import orjson
import requests

from filestore_cleanup.config import CleanupConfig
from filestore_cleanup.errors import ApiError, TransportError, classify_error

API_PREFIX = "/api/v0/"


class NodeClient:
    """
    Minimal client for the node's command API.

    Attributes:
        base_url: API base URL, e.g. http://127.0.0.1:5001
        session: Requests session shared by every call
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()

    def _url(self, cmd: str) -> str:
        return f"{self.base_url}{API_PREFIX}{cmd}"

    def request(self, cmd: str, timeout: Optional[float] = None) -> bytes:
        """
        POST a command and return the raw response body.

        Args:
            cmd: Command path including any already-encoded query string
                (e.g. "block/rm?arg=Qm...")
            timeout: Seconds before the call is abandoned; 0 or None waits forever

        Raises:
            TransportError: the request could not be completed
            ApiError: the node answered with an error envelope
        """
        try:
            response = self.session.post(self._url(cmd), timeout=timeout or None)
            body = response.content
        except requests.RequestException as e:
            raise TransportError(cmd, e) from e

        text = classify_error(body)
        if text:
            raise ApiError(text, body=body, command=cmd)
        return body

    def stream(self, cmd: str) -> requests.Response:
        """
        POST a command and return the open response for incremental reads.

        No timeout is applied. The caller owns the response and must close it.

        Raises:
            TransportError: the request could not be sent
        """
        try:
            return self.session.post(self._url(cmd), stream=True)
        except requests.RequestException as e:
            raise TransportError(cmd, e) from e

    def version(self, timeout: Optional[float] = None) -> str:
        """Connectivity probe. Returns the node's version string ("" if absent)."""
        body = self.request("version", timeout)
        try:
            data = orjson.loads(body)
        except orjson.JSONDecodeError:
            return ""
        if isinstance(data, dict) and isinstance(data.get("Version"), str):
            return data["Version"]
        return ""

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def get_node_client(config: CleanupConfig) -> NodeClient:
    """Factory used by the CLI; tests patch this to inject a fake node."""
    return NodeClient(config.endpoint)
