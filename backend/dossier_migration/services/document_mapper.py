"""
Document metadata mapping.

Turns a source repository document plus its staged folder into a DocStaging
row: mapped type and name, active status, destination dossier, source tag,
version and type transformation fields.
"""

import logging
from datetime import datetime
from typing import Optional

from dossier_migration.clients.alfresco_client import parse_alfresco_datetime
from dossier_migration.clients.content_repository import NodeEntry
from dossier_migration.clients.offer_api import OfferApi
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.enums import DossierType, MigrationStatus
from dossier_migration.db.models.folder_staging import FolderStaging
from dossier_migration.services.destination_resolver import SOURCE_HEIMDALL, determine_and_resolve, determine_source
from dossier_migration.services.document_mapping_service import DocumentMappingService
from dossier_migration.services.document_name_mapper import has_migration_suffix
from dossier_migration.services.document_status_detector import (
    STATUS_INACTIVE_ALFRESCO,
    DocumentStatusDetector,
    alfresco_status,
)
from dossier_migration.services.document_type_transformation import determine_document_types
from dossier_migration.services.dossier_id_formatter import convert_for_target_type
from dossier_migration.services.dossier_type_detector import detect_from_folder_prefix

logger = logging.getLogger(__name__)

VERSION_UNSIGNED = "1.1"
VERSION_SIGNED = "1.2"
SIGNED_MARKERS = ("signed", "potpisano", "potpisan")


def is_signed_name(name: Optional[str]) -> bool:
    lowered = (name or "").lower()
    return any(marker in lowered for marker in SIGNED_MARKERS)


def document_created_at(entry: NodeEntry) -> Optional[datetime]:
    """Original creation date: ecm:docCreationDate, else the node's creation date."""
    return parse_alfresco_datetime(entry.prop("ecm:docCreationDate")) or entry.created_at


class DocumentMetadataMapper:
    """Maps source documents to staged documents."""

    def __init__(
        self,
        mapping_service: DocumentMappingService,
        status_detector: DocumentStatusDetector,
        offer_api: Optional[OfferApi] = None,
    ):
        """
        Args:
            mapping_service: Document mapping lookups
            status_detector: Active/inactive rules
            offer_api: Optional deposit offer API for contract number matching
        """
        self.mapping_service = mapping_service
        self.status_detector = status_detector
        self.offer_api = offer_api

    async def map_document(self, entry: NodeEntry, folder: FolderStaging) -> DocStaging:
        """
        Build a READY DocStaging row for a source document.

        Mapping failures never propagate; the document gets inactive,
        UNKNOWN-destination defaults instead.

        Args:
            entry: Source document node
            folder: Staged source folder holding the document

        Returns:
            Transient DocStaging
        """
        await self.mapping_service.load()
        document = DocStaging(
            node_id=entry.id,
            name=entry.name,
            parent_id=entry.parent_id or folder.node_id,
            node_type=entry.node_type,
            from_path=entry.path,
            status=MigrationStatus.READY.value,
            retry_count=0,
            original_document_name=entry.prop("cm:title", entry.name),
            original_created_at=document_created_at(entry),
        )
        try:
            await self._apply_mapping(document, entry, folder)
        except Exception as e:
            logger.error(f"Error mapping document {entry.name} in folder {folder.name}: {e}")
            document.doc_description = None
            document.document_type = None
            document.is_active = False
            document.new_alfresco_status = STATUS_INACTIVE_ALFRESCO
            document.source = SOURCE_HEIMDALL
            document.tip_dosijea = folder.tip_dosijea
            document.target_dossier_type = DossierType.UNKNOWN.value
            document.client_segment = folder.client_segment or folder.segment
            document.core_id = folder.core_id
            document.dossier_dest_folder_id = (folder.name or "").replace("-", "")
        return document

    async def _apply_mapping(self, document: DocStaging, entry: NodeEntry, folder: FolderStaging) -> None:
        description = entry.prop("ecm:docDesc")
        existing_code = entry.prop("ecm:docType")
        existing_status = entry.prop("ecm:docStatus") or entry.prop("ecm:status")

        document.doc_description = description
        document.original_document_code = existing_code
        document.old_alfresco_status = existing_status
        document.contract_number = entry.prop("ecm:bnkNumberOfContract") or folder.contract_number
        document.product_type = entry.prop("ecm:bnkTypeOfProduct") or folder.product_type
        document.account_numbers = entry.prop("ecm:bnkAccountNumber")
        document.core_id = entry.prop("ecm:coreId") or folder.core_id
        document.client_segment = entry.prop("ecm:docClientType") or folder.client_segment or folder.segment

        mapping = self.mapping_service.find(description, existing_code)
        if mapping is not None:
            document.document_type = (mapping.sifra_dokumenta_migracija or "").strip() or existing_code
            document.new_document_name = mapping.naziv_dokumenta_migracija or description
        else:
            logger.debug(f"No mapping for description '{description}' / code '{existing_code}', keeping original")
            document.document_type = existing_code
            document.new_document_name = description
        document.new_document_code = document.document_type
        document.will_receive_migration_suffix = has_migration_suffix(document.new_document_name)
        document.code_will_change = bool(existing_code) and document.document_type != existing_code
        document.tip_dosijea = (
            (mapping.tip_dosijea if mapping is not None else None)
            or entry.prop("ecm:docDossierType")
            or folder.tip_dosijea
            or ""
        )

        status = self.status_detector.determine_status(mapping, existing_status)
        document.is_active = status.is_active
        logger.debug(
            f"Status for '{description}': {status.reason} (priority {status.priority}, active={status.is_active})"
        )

        dossier_type = determine_and_resolve(document.document_type, document.tip_dosijea, document.client_segment)
        if dossier_type == DossierType.UNKNOWN and folder.name:
            fallback = detect_from_folder_prefix(folder.name)
            if fallback != DossierType.UNKNOWN:
                logger.debug(f"Destination for {entry.name} taken from folder prefix: {fallback.name}")
                dossier_type = fallback
        document.target_dossier_type = dossier_type.value
        document.source = entry.prop("ecm:source") or determine_source(dossier_type)

        if dossier_type == DossierType.DEPOSIT and not document.contract_number:
            await self._match_deposit_offer(document)

        if folder.name:
            document.dossier_dest_folder_id = convert_for_target_type(
                folder.name,
                dossier_type.value,
                contract_number=document.contract_number,
                product_type=document.product_type,
                core_id=folder.core_id,
                created=document.original_created_at,
            )

        signed = is_signed_name(entry.name)
        document.is_signed = signed
        document.version = VERSION_SIGNED if signed else VERSION_UNSIGNED

        determine_document_types(document)
        document.new_alfresco_status = alfresco_status(document.is_active)

    async def _match_deposit_offer(self, document: DocStaging) -> None:
        """Fill the contract number of a deposit document from its single booked offer."""
        if self.offer_api is None or not document.core_id or document.original_created_at is None:
            return
        try:
            match = await self.offer_api.match_offer_by_date(document.core_id, document.original_created_at)
        except Exception as e:
            logger.error(f"Offer lookup failed for document {document.node_id} (core id {document.core_id}): {e}")
            return

        if match.can_auto_match:
            offer = match.offers[0]
            document.contract_number = offer.contract_number or None
            document.dut_offer_id = offer.offer_id or None
            if offer.product_type and not document.product_type:
                document.product_type = offer.product_type
            logger.debug(f"Document {document.node_id} matched to offer {offer.offer_id}")
        elif match.is_ambiguous:
            logger.warning(
                f"Document {document.node_id}: {len(match.offers)} offers for core id {document.core_id} on "
                f"{match.deposit_date}, manual matching required"
            )
