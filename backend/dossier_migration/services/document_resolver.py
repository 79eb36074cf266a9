"""
Idempotent create-or-get of destination folders.

Concurrent resolves of the same (parent, name) are serialized through a
striped lock keyed by that pair; different pairs proceed in parallel.
"""

import asyncio
import logging
import zlib
from typing import Any, Dict, Optional, Tuple

from dossier_migration.clients.content_repository import ContentReader, ContentWriter

logger = logging.getLogger(__name__)


class LockStriping:
    """Fixed set of asyncio locks selected by key hash."""

    def __init__(self, stripe_count: int = 1024):
        count = 1
        while count < max(1, stripe_count):
            count <<= 1
        self.stripe_count = count
        self._mask = count - 1
        self._locks = [asyncio.Lock() for _ in range(count)]

    def index(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) & self._mask

    def get(self, key: str) -> asyncio.Lock:
        return self._locks[self.index(key)]


class DocumentResolver:
    """
    Resolves destination folders by (parent id, name), creating them on demand.

    Resolved ids are cached for the lifetime of the resolver.
    """

    def __init__(self, reader: ContentReader, writer: ContentWriter, stripe_count: int = 1024):
        """
        Args:
            reader: Content repository read side
            writer: Content repository write side
            stripe_count: Number of lock stripes, rounded up to a power of two
        """
        self.reader = reader
        self.writer = writer
        self.locks = LockStriping(stripe_count)
        self._cache: Dict[str, str] = {}

    @staticmethod
    def cache_key(parent_id: str, name: str) -> str:
        return f"{parent_id}_{name}"

    async def resolve(
        self,
        parent_id: str,
        name: str,
        properties: Optional[Dict[str, Any]] = None,
        node_type: Optional[str] = None,
        create_if_missing: bool = True,
    ) -> Optional[str]:
        """
        Id of folder `name` under `parent_id`.

        Args:
            parent_id: Parent folder id
            name: Folder name
            properties: Metadata for a newly created folder
            node_type: Content model type for a newly created folder
            create_if_missing: Create the folder when it does not exist

        Returns:
            Folder id, or None when missing and `create_if_missing` is False
        """
        folder_id, _ = await self.resolve_with_status(parent_id, name, properties, node_type, create_if_missing)
        return folder_id

    async def resolve_with_status(
        self,
        parent_id: str,
        name: str,
        properties: Optional[Dict[str, Any]] = None,
        node_type: Optional[str] = None,
        create_if_missing: bool = True,
    ) -> Tuple[Optional[str], bool]:
        """
        Like `resolve`, also reporting whether this call created the folder.

        Returns:
            (folder id, created)
        """
        if not parent_id or not name:
            raise ValueError("parent_id and name are required to resolve a folder")

        key = self.cache_key(parent_id, name)
        cached = self._cache.get(key)
        if cached:
            return cached, False

        async with self.locks.get(key):
            cached = self._cache.get(key)
            if cached:
                return cached, False

            existing = await self.reader.get_folder_by_relative(parent_id, name)
            if existing:
                self._cache[key] = existing
                return existing, False

            if not create_if_missing:
                return None, False

            folder_id = await self._create(parent_id, name, properties, node_type)
            self._cache[key] = folder_id
            return folder_id, True

    async def _create(
        self,
        parent_id: str,
        name: str,
        properties: Optional[Dict[str, Any]],
        node_type: Optional[str],
    ) -> str:
        try:
            folder_id = await self.writer.create_folder(parent_id, name, properties, node_type)
            logger.debug(f"Created folder '{name}' under {parent_id}: {folder_id}")
            return folder_id
        except Exception as e:
            logger.warning(f"Creating folder '{name}' under {parent_id} failed: {e}")
            first_error = e

        # Another process may have created it in the meantime
        existing = await self.reader.get_folder_by_relative(parent_id, name)
        if existing:
            logger.info(f"Folder '{name}' under {parent_id} was created concurrently: {existing}")
            return existing

        if not properties:
            raise first_error

        logger.warning(f"Retrying creation of folder '{name}' under {parent_id} without properties")
        try:
            return await self.writer.create_folder(parent_id, name, None, node_type)
        except Exception as e:
            logger.error(f"Failed to create folder '{name}' under {parent_id}: {e}")
            raise

    def clear_cache(self) -> None:
        self._cache.clear()
