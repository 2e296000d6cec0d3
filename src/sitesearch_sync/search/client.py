"""
Search Service Client

Asynchronous REST client for the hosted search service. It exposes the
index-handle operations the indexer relies on and nothing more:

- ``upsert_objects`` / ``delete_objects`` (batch endpoint)
- ``browse_object_ids`` (cursor pagination, identifiers only)
- ``get_settings`` / ``set_settings``
- ``move_index`` / ``delete_index``
- ``wait_task``

Design Goals
------------
- Every transport or HTTP failure surfaces as ``RemoteTransportError``,
  wrapped once, with whatever structure could be parsed from the response
- No retries: a failed call fails the run
- Injectable transport for tests (``httpx.MockTransport``)
"""

from __future__ import annotations

import asyncio
import logging
import platform
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from urllib.parse import quote, unquote

import httpx

from .. import __version__
from ..core.errors import RemoteTransportError

logger = logging.getLogger("sitesearch.client")

BROWSE_PAGE_SIZE = 1000


def _user_agent() -> str:
    return "; ".join(
        [
            f"Site Search Sync ({__version__})",
            f"httpx ({httpx.__version__})",
            f"Python ({platform.python_version()})",
        ]
    )


class SearchClient:
    """
    Client bound to one application.

    Writes go to ``https://<app>.algolia.net``, reads (browse, settings,
    task status) to the ``-dsn`` replica host.
    """

    def __init__(
        self,
        application_id: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        poll_interval: float = 0.5,
    ) -> None:
        """
        Parameters
        ----------
        application_id : str
            Application identifier of the search service account.

        api_key : str
            Admin (write) API key.

        timeout : float
            HTTP timeout for each request.

        transport : Optional[httpx.AsyncBaseTransport]
            Transport override, mainly for tests.

        poll_interval : float
            Seconds between two task status checks in ``wait_task``.
        """
        self.application_id = application_id
        self.poll_interval = poll_interval
        self._write_host = f"https://{application_id}.algolia.net"
        self._read_host = f"https://{application_id}-dsn.algolia.net"
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "X-Algolia-Application-Id": application_id,
                "X-Algolia-API-Key": api_key,
                "User-Agent": _user_agent(),
                "Content-Type": "application/json",
            },
        )

    async def __aenter__(self) -> "SearchClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def init_index(self, name: str) -> "SearchIndex":
        return SearchIndex(self, name)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        read: bool = False,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        host = self._read_host if read else self._write_host
        url = f"{host}{path}"

        try:
            resp = await self._client.request(method, url, json=body, params=params)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if allow_not_found and exc.response.status_code == 404:
                return None
            details = self._error_details(method, url, params, exc.response)
            logger.debug("%s %s failed: %s", method, path, details)
            raise RemoteTransportError(
                f"Cannot {method} to {url}: {details.get('message', '')} "
                f"({exc.response.status_code})",
                details=details,
            ) from exc
        except httpx.TransportError as exc:
            details = self._error_details(method, url, params, None)
            details["network_error"] = True
            details["host"] = httpx.URL(url).host
            details["message"] = f"Cannot reach any host: {type(exc).__name__}"
            raise RemoteTransportError(details["message"], details=details) from exc

        if not resp.content:
            return {}
        return resp.json()

    def _error_details(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        response: Optional[httpx.Response],
    ) -> Dict[str, Any]:
        """
        Extract what we can from a failed call.

        Paths look like ``/1/indexes/<index_name>/<action>``.
        """
        parsed = httpx.URL(url)
        details: Dict[str, Any] = {
            "verb": method,
            "url": url,
            "application_id": self.application_id,
        }

        segments = [unquote(part) for part in parsed.path.split("/") if part]
        if len(segments) >= 3 and segments[1] == "indexes":
            details["api_version"] = int(segments[0]) if segments[0].isdigit() else segments[0]
            details["index_name"] = segments[2]
            if len(segments) >= 4:
                details["api_action"] = segments[3]

        for key, value in parsed.params.multi_items():
            details[key] = value
        for key, value in (params or {}).items():
            details[key] = value

        if response is not None:
            details["http_error"] = response.status_code
            try:
                payload = response.json()
            except ValueError:
                payload = {"message": response.text}
            if isinstance(payload, dict):
                details.update(payload)

        return details

    @staticmethod
    def _index_path(index_name: str, *parts: str) -> str:
        suffix = "".join(f"/{part}" for part in parts)
        return f"/1/indexes/{quote(index_name, safe='')}{suffix}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def batch(self, index_name: str, requests: List[Dict[str, Any]]) -> Optional[int]:
        data = await self._request(
            "POST",
            self._index_path(index_name, "batch"),
            body={"requests": requests},
        )
        return (data or {}).get("taskID")

    async def browse_object_ids(self, index_name: str) -> AsyncIterator[str]:
        """
        Yield the ``objectID`` of every record in the index.

        A missing index yields nothing.
        """
        cursor: Optional[str] = None
        while True:
            body: Dict[str, Any] = {
                "attributesToRetrieve": ["objectID"],
                "hitsPerPage": BROWSE_PAGE_SIZE,
            }
            if cursor:
                body["cursor"] = cursor

            page = await self._request(
                "POST",
                self._index_path(index_name, "browse"),
                body=body,
                read=True,
                allow_not_found=True,
            )
            if page is None:
                return

            for hit in page.get("hits", []):
                object_id = hit.get("objectID")
                if object_id is not None:
                    yield object_id

            cursor = page.get("cursor")
            if not cursor:
                return

    async def get_settings(self, index_name: str) -> Optional[Dict[str, Any]]:
        """Return the index settings, or ``None`` if the index does not exist."""
        return await self._request(
            "GET",
            self._index_path(index_name, "settings"),
            params={"getVersion": 2},
            read=True,
            allow_not_found=True,
        )

    async def set_settings(self, index_name: str, settings: Dict[str, Any]) -> Optional[int]:
        data = await self._request(
            "PUT",
            self._index_path(index_name, "settings"),
            body=settings,
        )
        return (data or {}).get("taskID")

    async def move_index(self, source: str, destination: str) -> Optional[int]:
        """Atomically rename ``source`` over ``destination``."""
        data = await self._request(
            "POST",
            self._index_path(source, "operation"),
            body={"operation": "move", "destination": destination},
        )
        return (data or {}).get("taskID")

    async def delete_index(self, index_name: str) -> Optional[int]:
        data = await self._request(
            "DELETE",
            self._index_path(index_name),
            allow_not_found=True,
        )
        return (data or {}).get("taskID")

    async def wait_task(self, index_name: str, task_id: Optional[int]) -> None:
        """Block until the given task is published."""
        if task_id is None:
            return
        path = self._index_path(index_name, "task", str(task_id))
        while True:
            data = await self._request("GET", path, read=True) or {}
            if data.get("status") == "published":
                return
            await asyncio.sleep(self.poll_interval)


class SearchIndex:
    """
    Handle on a single index.

    Thin wrapper around ``SearchClient`` so callers never repeat the index name.
    """

    def __init__(self, client: SearchClient, name: str) -> None:
        self.client = client
        self.name = name

    async def upsert_objects(self, objects: Sequence[Dict[str, Any]]) -> Optional[int]:
        requests = [{"action": "updateObject", "body": obj} for obj in objects]
        return await self.client.batch(self.name, requests)

    async def delete_objects(self, object_ids: Sequence[str]) -> Optional[int]:
        requests = [
            {"action": "deleteObject", "body": {"objectID": object_id}}
            for object_id in object_ids
        ]
        return await self.client.batch(self.name, requests)

    def browse_object_ids(self) -> AsyncIterator[str]:
        return self.client.browse_object_ids(self.name)

    async def get_settings(self) -> Optional[Dict[str, Any]]:
        return await self.client.get_settings(self.name)

    async def set_settings(self, settings: Dict[str, Any]) -> Optional[int]:
        return await self.client.set_settings(self.name, settings)

    async def delete_index(self) -> Optional[int]:
        return await self.client.delete_index(self.name)

    async def wait_task(self, task_id: Optional[int]) -> None:
        await self.client.wait_task(self.name, task_id)

    async def exists(self) -> bool:
        return await self.get_settings() is not None
