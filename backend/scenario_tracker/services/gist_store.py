"""GitHub Gist as the remote document store (file name → JSON document)."""

from __future__ import annotations

import json
from typing import Any

import httpx

from scenario_tracker.config import settings
from scenario_tracker.errors import RemoteStoreError
from scenario_tracker.logging import get_logger

logger = get_logger("services.gist_store")


def serialize_documents(documents: dict[str, Any]) -> dict[str, dict[str, str]]:
    return {
        name: {"content": document if isinstance(document, str) else json.dumps(document, indent=2, ensure_ascii=False)}
        for name, document in documents.items()
    }


def _parse_content(content: str | None) -> Any:
    if content is None:
        return ""
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        return content


class GistDocumentStore:
    """Fetch, patch and create gists. Failures raise RemoteStoreError."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token if token is not None else settings.GIST_TOKEN
        self.base_url = (base_url or settings.GIST_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GIST_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self, operation: str) -> dict[str, str]:
        if not self.token:
            raise RemoteStoreError(operation, "no GitHub token set")
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    @staticmethod
    def _check(operation: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        raise RemoteStoreError(
            operation,
            response.reason_phrase or "request failed",
            status_code=response.status_code,
            body=response.text,
        )

    async def fetch_all(self, gist_id: str) -> dict[str, Any]:
        """
        Fetch every file of a gist, parsed as JSON where possible.

        :param gist_id: Gist identifier
        :type gist_id: str
        :return: Mapping of file name to parsed document (raw text if not JSON)
        :rtype: dict[str, Any]
        """
        headers = self._headers("Gist fetch")
        async with self._client() as client:
            try:
                response = await client.get(f"{self.base_url}/gists/{gist_id}", headers=headers)
            except httpx.HTTPError as e:
                raise RemoteStoreError("Gist fetch", str(e)) from e
            self._check("Gist fetch", response)

            documents: dict[str, Any] = {}
            files = (response.json() or {}).get("files") or {}
            for name, entry in files.items():
                content = entry.get("content")
                if entry.get("truncated") and entry.get("raw_url"):
                    try:
                        raw = await client.get(entry["raw_url"])
                    except httpx.HTTPError as e:
                        raise RemoteStoreError("Gist fetch", str(e)) from e
                    self._check("Gist fetch", raw)
                    content = raw.text
                documents[name] = _parse_content(content)

        logger.info(f"Fetched {len(documents)} file(s) from gist {gist_id}")
        return documents

    async def patch(self, gist_id: str, documents: dict[str, Any]) -> None:
        headers = self._headers("Gist update")
        async with self._client() as client:
            try:
                response = await client.patch(
                    f"{self.base_url}/gists/{gist_id}",
                    headers=headers,
                    json={"files": serialize_documents(documents)},
                )
            except httpx.HTTPError as e:
                raise RemoteStoreError("Gist update", str(e)) from e
            self._check("Gist update", response)
        logger.info(f"Pushed {len(documents)} file(s) to gist {gist_id}")

    async def create(self, description: str, documents: dict[str, Any]) -> str:
        headers = self._headers("Gist create")
        async with self._client() as client:
            try:
                response = await client.post(
                    f"{self.base_url}/gists",
                    headers=headers,
                    json={
                        "description": description,
                        "public": False,
                        "files": serialize_documents(documents),
                    },
                )
            except httpx.HTTPError as e:
                raise RemoteStoreError("Gist create", str(e)) from e
            self._check("Gist create", response)
            gist_id = str(response.json()["id"])
        logger.info(f"Created gist {gist_id}")
        return gist_id
