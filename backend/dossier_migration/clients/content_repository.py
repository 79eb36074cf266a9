"""Content repository abstractions.

Readers list and look up nodes, writers create folders and move documents.
Pipeline services only depend on these interfaces; the HTTP implementation
lives in alfresco_client.py.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class NodeEntry:
    """A folder or document node as returned by the repository."""

    id: str
    name: str
    is_folder: bool = False
    node_type: Optional[str] = None
    parent_id: Optional[str] = None
    path: Optional[str] = None
    created_at: Optional[datetime] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    def prop(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """String value of a property, or default when missing or blank."""
        value = self.properties.get(key)
        if value is None:
            return default
        if isinstance(value, list):
            value = ",".join(str(v) for v in value)
        value = str(value).strip()
        return value or default


@dataclass
class SearchResult:
    """One page of search or listing results."""

    entries: List[NodeEntry] = field(default_factory=list)
    has_more: bool = False


class ContentReader(ABC):
    """Read side of the content repository."""

    @abstractmethod
    async def search(
        self,
        query: str,
        skip: int,
        take: int,
        sort: Optional[List[Dict[str, Any]]] = None,
    ) -> SearchResult:
        """Run a full-text (AFTS) query and return one page."""

    @abstractmethod
    async def get_children(self, folder_id: str, skip: int = 0, take: int = 100) -> SearchResult:
        """List direct children of a folder."""

    @abstractmethod
    async def get_folder_by_relative(self, parent_id: str, name: str) -> Optional[str]:
        """Id of the child folder `name` under `parent_id`, or None."""

    @abstractmethod
    async def get_node(self, node_id: str) -> Optional[NodeEntry]:
        """Fetch a single node, or None when it does not exist."""


class ContentWriter(ABC):
    """Write side of the content repository."""

    @abstractmethod
    async def move_document(
        self,
        node_id: str,
        destination_folder_id: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Move a node under a new parent. False means the repository refused."""

    @abstractmethod
    async def create_folder(
        self,
        parent_id: str,
        name: str,
        properties: Optional[Dict[str, Any]] = None,
        node_type: Optional[str] = None,
    ) -> str:
        """Create a folder and return its id.

        If a folder with the same name already exists under the parent, its
        id is returned instead.
        """

    @abstractmethod
    async def update_node_properties(self, node_id: str, properties: Dict[str, Any]) -> bool:
        """Update metadata of a node."""
