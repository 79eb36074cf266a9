"""Tests for DocumentMetadataMapper."""
from datetime import datetime, timezone

import pytest

from dossier_migration.clients.content_repository import NodeEntry
from dossier_migration.clients.offer_api import Offer
from dossier_migration.db.models.enums import DossierType, MigrationStatus
from dossier_migration.services.document_mapper import DocumentMetadataMapper, document_created_at, is_signed_name
from dossier_migration.services.document_mapping_service import DocumentMappingService
from dossier_migration.services.document_status_detector import (
    STATUS_ACTIVE_ALFRESCO,
    STATUS_INACTIVE_ALFRESCO,
    DocumentStatusDetector,
)
from dossier_migration.services.folder_discovery import build_folder_staging
from fakes import FakeOfferApi


@pytest.fixture
def mapper() -> DocumentMetadataMapper:
    return DocumentMetadataMapper(DocumentMappingService(), DocumentStatusDetector(active_codes=["00099"]))


@pytest.fixture
def folder():
    return build_folder_staging("folder-1", "PI102206", parent_id="root")


def entry(name: str = "document.pdf", **properties) -> NodeEntry:
    return NodeEntry(
        id=f"node-{name}",
        name=name,
        parent_id="folder-1",
        path="/Company Home/DOSSIERS-PI/PI102206",
        created_at=datetime(2023, 5, 1, 10, tzinfo=timezone.utc),
        properties=properties,
    )


def test_signed_names_and_creation_date() -> None:
    """Test version markers and creation date precedence."""
    assert is_signed_name("Ugovor_potpisan.pdf")
    assert is_signed_name("contract-SIGNED.pdf")
    assert not is_signed_name("contract.pdf")
    node = entry(**{"ecm:docCreationDate": "2020-02-03T04:05:06.000+0000"})
    assert document_created_at(node) == datetime(2020, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
    assert document_created_at(entry()) == datetime(2023, 5, 1, 10, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_maps_gdpr_consent(mapper, folder) -> None:
    """Test a mapped client document with the migration suffix."""
    document = await mapper.map_document(
        entry("gdpr.pdf", **{"ecm:docDesc": "GDPR saglasnost", "ecm:docType": "00253"}), folder
    )

    assert document.status == MigrationStatus.READY.value
    assert document.document_type == "00849"
    assert document.new_document_name == "GDPR saglasnost - migracija"
    assert document.will_receive_migration_suffix is True
    assert document.code_will_change is True
    assert document.is_active is False
    assert document.new_alfresco_status == STATUS_INACTIVE_ALFRESCO
    assert document.target_dossier_type == DossierType.CLIENT_FL.value
    assert document.dossier_dest_folder_id == "PI-102206"
    assert document.source == "Heimdall"
    assert document.version == "1.1"
    assert document.requires_type_transformation is False
    assert document.final_document_type == "00849"
    assert document.from_path == "/Company Home/DOSSIERS-PI/PI102206"


@pytest.mark.asyncio
async def test_account_package_document_changes_dossier(mapper, folder) -> None:
    """Test that an account package document of a PI folder goes to ACC."""
    document = await mapper.map_document(
        entry(**{"ecm:docDesc": "Account Package", "ecm:docType": "00102"}), folder
    )

    assert document.document_type == "00834"
    assert document.target_dossier_type == DossierType.ACCOUNT_PACKAGE.value
    assert document.dossier_dest_folder_id == "ACC-102206"


@pytest.mark.asyncio
async def test_versioned_type_needs_transformation(mapper, folder) -> None:
    """Test that KDP documents are migrated inactive under a temporary type."""
    document = await mapper.map_document(
        entry("kdp_signed.pdf", **{"ecm:docDesc": "Specimen card", "ecm:docType": "00099"}), folder
    )

    assert document.document_type == "00824"
    assert document.document_type_migration == "00824-migracija"
    assert document.final_document_type == "00099"
    assert document.requires_type_transformation is True
    assert document.is_active is False
    assert document.is_signed is True
    assert document.version == "1.2"


@pytest.mark.asyncio
async def test_unmapped_document_keeps_type(mapper, folder) -> None:
    """Test documents without a mapping."""
    document = await mapper.map_document(
        entry(**{"ecm:docDesc": "Unknown paper", "ecm:docType": "00777"}), folder
    )

    assert document.document_type == "00777"
    assert document.new_document_name == "Unknown paper"
    assert document.code_will_change is False
    assert document.is_active is True
    assert document.new_alfresco_status == STATUS_ACTIVE_ALFRESCO
    assert document.target_dossier_type == DossierType.CLIENT_FL.value


@pytest.mark.asyncio
async def test_deposit_document_matches_single_offer(folder) -> None:
    """Test that the contract number comes from the only booked offer on the date."""
    offers = FakeOfferApi({"102206": [Offer(offerId="o-1", contractNumber="C-77", productType="00008")]})
    mapper = DocumentMetadataMapper(DocumentMappingService(), DocumentStatusDetector(), offer_api=offers)

    document = await mapper.map_document(entry(**{"ecm:docDesc": "PiAnuitetniPlan"}), folder)

    assert document.target_dossier_type == DossierType.DEPOSIT.value
    assert document.contract_number == "C-77"
    assert document.dut_offer_id == "o-1"
    assert document.source == "DUT"
    assert document.dossier_dest_folder_id == "DE-102206-00008_C-77"


@pytest.mark.asyncio
async def test_deposit_document_with_ambiguous_offers(folder) -> None:
    """Test that ambiguous offers are left for manual matching."""
    offers = FakeOfferApi({"102206": [Offer(offerId="o-1", contractNumber="C-1"), Offer(offerId="o-2", contractNumber="C-2")]})
    mapper = DocumentMetadataMapper(DocumentMappingService(), DocumentStatusDetector(), offer_api=offers)

    document = await mapper.map_document(entry(**{"ecm:docDesc": "PiAnuitetniPlan"}), folder)

    assert document.contract_number is None
    assert document.dut_offer_id is None
    assert document.dossier_dest_folder_id == "DE-102206-00008_20230501"


@pytest.mark.asyncio
async def test_mapping_failure_uses_defaults(mapper) -> None:
    """Test that a failing mapping still yields a stageable document."""
    folder = build_folder_staging("folder-1", "PI-102206")

    def broken(*args, **kwargs):
        raise RuntimeError("mapping table broken")

    mapper.status_detector.determine_status = broken
    document = await mapper.map_document(entry(**{"ecm:docDesc": "GDPR saglasnost"}), folder)

    assert document.is_active is False
    assert document.new_alfresco_status == STATUS_INACTIVE_ALFRESCO
    assert document.target_dossier_type == DossierType.UNKNOWN.value
    assert document.dossier_dest_folder_id == "PI102206"
    assert document.core_id == "102206"
    assert document.source == "Heimdall"
