"""Repository exports."""
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository, UniqueFolderInfo
from dossier_migration.repositories.document_mapping_repository import DocumentMappingRepository
from dossier_migration.repositories.folder_staging_repository import FolderStagingRepository
from dossier_migration.repositories.kdp_document_repository import KdpDocumentRepository
from dossier_migration.repositories.phase_checkpoint_repository import PhaseCheckpointRepository

__all__ = [
    "FolderStagingRepository",
    "DocStagingRepository",
    "UniqueFolderInfo",
    "PhaseCheckpointRepository",
    "DocumentMappingRepository",
    "KdpDocumentRepository",
]
