"""
Document Type Transformation

Versioned document types are migrated under a temporary "migration" code
(e.g. 00824) and inactive. After the move, only the newest document of each
(client, type) pair is switched to the final code (e.g. 00099) and activated.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.clients.content_repository import ContentWriter
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository
from dossier_migration.services.document_status_detector import alfresco_status

logger = logging.getLogger(__name__)

# Migration type -> final type
TYPE_MAPPINGS: Dict[str, str] = {
    "00824": "00099",  # KDP, natural persons
    "00825": "00101",  # KDP, authorized persons
    "00827": "00100",  # KDP, legal entities
    "00841": "00130",  # KYC questionnaire
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def has_versioning_policy(document_type: Optional[str]) -> bool:
    return bool(document_type) and document_type in TYPE_MAPPINGS


def get_final_document_type(migration_document_type: Optional[str]) -> Optional[str]:
    if not migration_document_type:
        return None
    return TYPE_MAPPINGS.get(migration_document_type)


def determine_document_types(document: DocStaging) -> DocStaging:
    """
    Set the migration type, final type and transformation flag of a document.

    The three fields are always assigned together.

    Args:
        document: Staged document with `document_type` set

    Returns:
        The same document
    """
    if not document.document_type:
        logger.warning(f"Document {document.node_id} has no document type, cannot determine migration types")
        return document

    if has_versioning_policy(document.document_type):
        document.document_type_migration = f"{document.document_type}-migracija"
        document.final_document_type = get_final_document_type(document.document_type)
        document.requires_type_transformation = True
        document.is_active = False
        logger.debug(
            f"Document {document.node_id} type {document.document_type} is versioned, "
            f"final type {document.final_document_type}"
        )
    else:
        document.document_type_migration = document.document_type
        document.final_document_type = document.document_type
        document.requires_type_transformation = False
    return document


def _created_sort_key(document: DocStaging) -> datetime:
    created = document.original_created_at or document.created_at
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


class DocumentTypeTransformationService:
    """Applies final document types to the newest migrated documents."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        writer: Optional[ContentWriter] = None,
    ):
        """
        Args:
            session_factory: Staging session factory
            writer: When set, transformed documents are also updated in the repository
        """
        self.session_factory = session_factory
        self.writer = writer

    async def transform_active_documents(self) -> int:
        """
        Transform the newest document of every (core id, document type) group.

        Returns:
            Number of documents transformed
        """
        logger.info("Starting transformation of migration types to final types")
        transformed: List[DocStaging] = []

        async with unit_of_work(self.session_factory) as session:
            repo = DocStagingRepository(session)
            documents = await repo.get_documents_requiring_transformation()
            if not documents:
                logger.info("No documents require type transformation")
                return 0

            groups: Dict[Tuple[Optional[str], Optional[str]], List[DocStaging]] = defaultdict(list)
            for document in documents:
                # Keyed by the migration type, which survives the transformation
                groups[(document.core_id, document.document_type_migration or document.document_type)].append(document)

            for (core_id, migration_type), group in groups.items():
                latest = max(group, key=_created_sort_key)
                if not latest.final_document_type:
                    logger.warning(f"Document {latest.id} has no final document type, skipping")
                    continue

                latest.document_type = latest.final_document_type
                latest.is_active = True
                latest.new_alfresco_status = alfresco_status(True)
                await repo.save(latest)
                transformed.append(latest)
                logger.info(
                    f"Transformed document {latest.id} from {migration_type} to {latest.document_type} (core id {core_id})"
                )

        if self.writer is not None:
            for document in transformed:
                await self.writer.update_node_properties(
                    document.node_id,
                    {"ecm:docType": document.document_type, "ecm:docStatus": document.new_alfresco_status},
                )

        logger.info(f"Transformed {len(transformed)} documents to their final types")
        return len(transformed)
