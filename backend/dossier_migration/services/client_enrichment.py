"""
Client enrichment stage.

Enrichment is optional. `build_enrichment` returns a ClientEnrichmentService
when a client API is configured and a DisabledEnrichment otherwise, so callers
never check for a missing client themselves.
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Union

from dossier_migration.clients.client_api import ClientApi, ClientData
from dossier_migration.core.exceptions import OperationTimeoutError, RetryExhaustedError
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.folder_staging import FolderStaging

logger = logging.getLogger(__name__)

KDP_DOCUMENT_TYPES = {"00099", "00824"}


def is_kdp_document(document_type: Optional[str]) -> bool:
    return bool(document_type) and document_type.strip() in KDP_DOCUMENT_TYPES


def base_folder_properties(
    core_id: Optional[str],
    product_type: Optional[str] = None,
    contract_number: Optional[str] = None,
    source: Optional[str] = None,
    tip_dosijea: Optional[str] = None,
    creation_date: Optional[datetime] = None,
) -> Dict[str, str]:
    """Dossier folder properties that do not depend on client data."""
    properties = {"ecm:coreId": core_id or ""}
    if product_type:
        properties["ecm:bnkTypeOfProduct"] = product_type
        properties["ecm:productType"] = product_type
    if contract_number:
        properties["ecm:bnkNumberOfContract"] = contract_number
        properties["ecm:contractNumber"] = contract_number
    if source:
        properties["ecm:bnkSource"] = source
        properties["ecm:source"] = source
    if tip_dosijea:
        properties["ecm:bnkDossierType"] = tip_dosijea
    if creation_date:
        properties["ecm:datumKreiranja"] = creation_date.isoformat()
    return properties


def client_folder_properties(client: ClientData) -> Dict[str, str]:
    """Dossier folder properties taken from client data; empty values are left out."""
    values = {
        "ecm:jmbg": client.mbr_jmbg,
        "ecm:mbrJmbg": client.mbr_jmbg,
        "ecm:clientName": client.client_name,
        "ecm:bnkClientType": client.segment,
        "ecm:clientType": client.client_type,
        "ecm:clientSubtype": client.client_subtype,
        "ecm:segment": client.segment,
        "ecm:residency": client.residency,
        "ecm:bnkResidence": client.residency,
        "ecm:staff": client.staff,
        "ecm:docStaff": client.staff,
        "ecm:opuRealization": client.opu_realization,
        "ecm:barclex": client.barclex,
        "ecm:collaborator": client.collaborator,
    }
    return {key: value for key, value in values.items() if value}


def populate_folder(folder: FolderStaging, client: ClientData) -> FolderStaging:
    folder.client_name = client.client_name or folder.client_name
    folder.mbr_jmbg = client.mbr_jmbg or folder.mbr_jmbg
    folder.client_type = client.client_type or folder.client_type
    folder.client_subtype = client.client_subtype or folder.client_subtype
    folder.residency = client.residency or folder.residency
    folder.segment = client.segment or folder.segment
    folder.staff = client.staff or folder.staff
    folder.opu_user = client.opu_user or folder.opu_user
    folder.opu_realization = client.opu_realization or folder.opu_realization
    folder.barclex = client.barclex or folder.barclex
    folder.collaborator = client.collaborator or folder.collaborator
    return folder


class DisabledEnrichment:
    """No-op enrichment used when no client API is configured."""

    enabled = False

    async def enrich_folder(self, folder: FolderStaging) -> FolderStaging:
        return folder

    async def enrich_document_accounts(self, document: DocStaging) -> DocStaging:
        return document

    async def validate_client(self, core_id: str) -> bool:
        return False

    async def build_folder_properties(self, core_id: Optional[str], **folder_fields) -> Dict[str, str]:
        return base_folder_properties(core_id, **folder_fields)


class ClientEnrichmentService:
    """
    Enriches staged folders and documents with client API data.

    Lookup failures are logged and the item continues unenriched. Timeouts and
    exhausted retries are re-raised so the caller can record them.
    """

    enabled = True

    def __init__(self, client_api: ClientApi):
        self.client_api = client_api

    async def enrich_folder(self, folder: FolderStaging) -> FolderStaging:
        """
        Copy client attributes onto a staged folder.

        Args:
            folder: Folder with `core_id` set

        Returns:
            The same folder
        """
        if not folder.core_id or not folder.core_id.strip():
            logger.warning(f"Cannot enrich folder {folder.node_id} ({folder.name}): core id is missing")
            return folder

        try:
            client = await self.client_api.get_client_data(folder.core_id)
        except (OperationTimeoutError, RetryExhaustedError):
            raise
        except Exception as e:
            logger.error(
                f"Failed to enrich folder {folder.node_id} ({folder.name}) for core id {folder.core_id}, "
                f"continuing without client data: {type(e).__name__} - {e}"
            )
            return folder

        if client.has_error:
            logger.warning(f"No client data for core id {folder.core_id}: {client.error_message}")
            return folder

        populate_folder(folder, client)
        logger.debug(
            f"Enriched folder {folder.node_id}: client={folder.client_name}, type={folder.client_type}, "
            f"segment={folder.segment}"
        )
        return folder

    async def enrich_document_accounts(self, document: DocStaging) -> DocStaging:
        """
        Attach the client's active accounts to a KDP document.

        Accounts are taken as of the document's original creation date and
        stored comma joined. Other document types are returned untouched.

        Args:
            document: Staged document

        Returns:
            The same document
        """
        if not is_kdp_document(document.document_type):
            return document
        if not document.core_id or not document.core_id.strip():
            logger.warning(f"Cannot enrich document {document.node_id} with accounts: core id is missing")
            return document
        if document.original_created_at is None:
            logger.warning(f"Cannot enrich document {document.node_id} with accounts: creation date is missing")
            return document

        try:
            accounts = await self.client_api.get_active_accounts(document.core_id, document.original_created_at)
        except (OperationTimeoutError, RetryExhaustedError):
            raise
        except Exception as e:
            logger.error(
                f"Failed to load active accounts for document {document.node_id} (core id {document.core_id}), "
                f"continuing without account numbers: {type(e).__name__} - {e}"
            )
            document.account_numbers = ""
            return document

        if not accounts:
            logger.warning(
                f"No active accounts for document {document.node_id}, core id {document.core_id}, "
                f"date {document.original_created_at:%Y-%m-%d}"
            )
            document.account_numbers = ""
            return document

        document.account_numbers = ",".join(accounts)
        logger.debug(f"Document {document.node_id} enriched with {len(accounts)} active accounts")
        return document

    async def validate_client(self, core_id: str) -> bool:
        if not core_id or not core_id.strip():
            logger.warning("Cannot validate client: core id is empty")
            return False
        try:
            return await self.client_api.validate_client_exists(core_id)
        except (OperationTimeoutError, RetryExhaustedError):
            raise
        except Exception as e:
            logger.error(f"Failed to validate client {core_id}, assuming it does not exist: {e}")
            return False

    async def build_folder_properties(
        self,
        core_id: Optional[str],
        product_type: Optional[str] = None,
        contract_number: Optional[str] = None,
        source: Optional[str] = None,
        tip_dosijea: Optional[str] = None,
        creation_date: Optional[datetime] = None,
    ) -> Dict[str, str]:
        """
        Properties for a newly created dossier folder.

        Args:
            core_id: Client core id
            product_type: Product type code
            contract_number: Deposit contract number
            source: Source system tag
            tip_dosijea: Dossier type description
            creation_date: Earliest document creation date in the dossier

        Returns:
            Property map; client fields are included when the lookup succeeds
        """
        properties = base_folder_properties(
            core_id,
            product_type=product_type,
            contract_number=contract_number,
            source=source,
            tip_dosijea=tip_dosijea,
            creation_date=creation_date,
        )
        if not core_id or not core_id.strip():
            return properties

        try:
            client = await self.client_api.get_client_data(core_id)
        except (OperationTimeoutError, RetryExhaustedError):
            raise
        except Exception as e:
            logger.error(f"Failed to load client data for folder properties (core id {core_id}): {e}")
            return properties

        if not client.has_error:
            properties.update(client_folder_properties(client))
        return properties


def build_enrichment(client_api: Optional[ClientApi]) -> Union[ClientEnrichmentService, DisabledEnrichment]:
    """Enrichment stage for the configured client API, or a no-op stage."""
    if client_api is None:
        logger.info("Client API not configured, client enrichment disabled")
        return DisabledEnrichment()
    return ClientEnrichmentService(client_api)
