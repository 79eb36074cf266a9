"""
Alfresco Content Repository Client

This module talks to the Alfresco public REST API over httpx.
It searches and lists nodes, creates folders and moves documents.

Usage:
    client = AlfrescoClient(base_url, username, password)
    page = await client.search('TYPE:"cm:folder"', skip=0, take=100)
    folder_id = await client.create_folder(parent_id, "DOSSIERS-PI")
    await client.close()
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from dossier_migration.clients.content_repository import (
    ContentReader,
    ContentWriter,
    NodeEntry,
    SearchResult,
)
from dossier_migration.clients.http_retry import request_with_retries
from dossier_migration.core.exceptions import (
    ContentRepositoryError,
    ContentRepositoryRetryExhaustedError,
    ContentRepositoryTimeoutError,
)

logger = logging.getLogger(__name__)

_OFFSET_WITHOUT_COLON = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_alfresco_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse timestamps such as 2023-05-01T10:00:00.000+0000."""
    if not value:
        return None
    text = value.replace("Z", "+00:00")
    text = _OFFSET_WITHOUT_COLON.sub(r"\1:\2", text)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable repository timestamp: {value}")
        return None


def node_from_entry(entry: Dict[str, Any]) -> NodeEntry:
    """Convert a REST API `entry` object into a NodeEntry."""
    path = entry.get("path") or {}
    return NodeEntry(
        id=entry["id"],
        name=entry.get("name", ""),
        is_folder=bool(entry.get("isFolder", False)),
        node_type=entry.get("nodeType"),
        parent_id=entry.get("parentId"),
        path=path.get("name") if isinstance(path, dict) else path,
        created_at=parse_alfresco_datetime(entry.get("createdAt")),
        properties=entry.get("properties") or {},
    )


def _page_from_response(data: Dict[str, Any]) -> SearchResult:
    listing = data.get("list") or {}
    entries = [node_from_entry(item["entry"]) for item in listing.get("entries", [])]
    pagination = listing.get("pagination") or {}
    return SearchResult(entries=entries, has_more=bool(pagination.get("hasMoreItems", False)))


class AlfrescoClient(ContentReader, ContentWriter):
    """
    Content repository reader and writer over the Alfresco REST API.

    Timeouts raise ContentRepositoryTimeoutError immediately. Transport
    errors and 5xx responses are retried `retry_count` times before
    ContentRepositoryRetryExhaustedError is raised.
    """

    NODES_API = "/alfresco/api/-default-/public/alfresco/versions/1/nodes"
    SEARCH_API = "/alfresco/api/-default-/public/search/versions/1/search"

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 60.0,
        retry_count: int = 3,
        retry_backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Repository base URL, e.g. http://alfresco:8080
            username: Basic auth user
            password: Basic auth password
            timeout: Per-request timeout in seconds
            retry_count: Retries for transient failures
            retry_backoff_seconds: Base delay between retries (doubled per attempt)
            transport: Optional httpx transport (used by tests)
        """
        self.timeout = timeout
        self.retry_count = retry_count
        self.retry_backoff_seconds = retry_backoff_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=httpx.BasicAuth(username, password),
            timeout=timeout,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AlfrescoClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, url: str, operation: str, **kwargs) -> httpx.Response:
        """Send a request with timeout classification and retries.

        Args:
            method: HTTP method
            url: Path relative to the base URL
            operation: Operation name used in errors and logs
            **kwargs: Passed through to httpx

        Returns:
            Response with a status below 500

        Raises:
            ContentRepositoryTimeoutError: If the request timed out
            ContentRepositoryRetryExhaustedError: If every attempt failed
        """
        return await request_with_retries(
            self._client,
            method,
            url,
            operation=operation,
            timeout=self.timeout,
            retry_count=self.retry_count,
            backoff_seconds=self.retry_backoff_seconds,
            timeout_error=ContentRepositoryTimeoutError,
            retry_error=ContentRepositoryRetryExhaustedError,
            **kwargs,
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return
        raise ContentRepositoryError(
            f"{operation} failed with status {response.status_code}",
            status_code=response.status_code,
            response_body=response.text,
        )

    async def search(
        self,
        query: str,
        skip: int,
        take: int,
        sort: Optional[List[Dict[str, Any]]] = None,
    ) -> SearchResult:
        """
        Run an AFTS query.

        Args:
            query: AFTS query text
            skip: Number of results to skip
            take: Page size
            sort: Optional sort clauses, e.g. [{"type": "FIELD", "field": "cm:created", "ascending": True}]

        Returns:
            One page of matching nodes
        """
        body: Dict[str, Any] = {
            "query": {"query": query, "language": "afts"},
            "paging": {"maxItems": take, "skipCount": skip},
            "include": ["properties", "path"],
        }
        if sort:
            body["sort"] = sort

        logger.debug(f"Searching (skip={skip}, take={take}): {query}")
        response = await self._request("POST", self.SEARCH_API, "search", json=body)
        self._raise_for_status(response, "search")
        return _page_from_response(response.json())

    async def get_children(self, folder_id: str, skip: int = 0, take: int = 100) -> SearchResult:
        response = await self._request(
            "GET",
            f"{self.NODES_API}/{folder_id}/children",
            "get_children",
            params={"skipCount": skip, "maxItems": take, "include": "properties,path"},
        )
        self._raise_for_status(response, "get_children")
        return _page_from_response(response.json())

    async def get_folder_by_relative(self, parent_id: str, name: str) -> Optional[str]:
        """
        Look up a child folder by name.

        Args:
            parent_id: Parent folder id
            name: Child folder name

        Returns:
            Folder id, or None when no such folder exists
        """
        response = await self._request(
            "GET",
            f"{self.NODES_API}/{parent_id}",
            "get_folder_by_relative",
            params={"relativePath": name},
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "get_folder_by_relative")
        entry = response.json().get("entry") or {}
        if not entry.get("isFolder", False):
            return None
        return entry.get("id")

    async def get_node(self, node_id: str) -> Optional[NodeEntry]:
        response = await self._request(
            "GET",
            f"{self.NODES_API}/{node_id}",
            "get_node",
            params={"include": "properties,path"},
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "get_node")
        return node_from_entry(response.json()["entry"])

    async def move_document(
        self,
        node_id: str,
        destination_folder_id: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Move a node under a new parent folder.

        Args:
            node_id: Node to move
            destination_folder_id: Target parent folder
            options: Extra body fields, e.g. {"name": "renamed.pdf"}

        Returns:
            True on success, False when the destination already holds a node with that name
        """
        body = {"targetParentId": destination_folder_id}
        if options:
            body.update(options)

        response = await self._request("POST", f"{self.NODES_API}/{node_id}/move", "move_document", json=body)
        if response.status_code == 409:
            logger.warning(f"Move of {node_id} to {destination_folder_id} refused: name conflict")
            return False
        self._raise_for_status(response, "move_document")
        return True

    async def create_folder(
        self,
        parent_id: str,
        name: str,
        properties: Optional[Dict[str, Any]] = None,
        node_type: Optional[str] = None,
    ) -> str:
        """
        Create a folder, or return the existing one on a name conflict.

        Args:
            parent_id: Parent folder id
            name: Folder name
            properties: Optional metadata for the new folder
            node_type: Content model type (defaults to cm:folder)

        Returns:
            Id of the created or existing folder
        """
        body: Dict[str, Any] = {"name": name, "nodeType": node_type or "cm:folder"}
        if properties:
            body["properties"] = properties

        response = await self._request(
            "POST", f"{self.NODES_API}/{parent_id}/children", "create_folder", json=body
        )
        if response.status_code == 409:
            existing = await self.get_folder_by_relative(parent_id, name)
            if existing:
                logger.debug(f"Folder '{name}' already exists under {parent_id}: {existing}")
                return existing
        self._raise_for_status(response, "create_folder")
        folder_id = response.json()["entry"]["id"]
        logger.info(f"Created folder '{name}' under {parent_id}: {folder_id}")
        return folder_id

    async def update_node_properties(self, node_id: str, properties: Dict[str, Any]) -> bool:
        response = await self._request(
            "PUT", f"{self.NODES_API}/{node_id}", "update_node_properties", json={"properties": properties}
        )
        if response.status_code == 404:
            return False
        self._raise_for_status(response, "update_node_properties")
        return True
