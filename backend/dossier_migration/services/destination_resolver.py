"""
Destination dossier resolution.

Decides which destination root (DOSSIERS-PI, DOSSIERS-LE, DOSSIERS-ACC,
DOSSIERS-D, DOSSIERS-UNKNOWN) a document belongs in, and which source
system tag it carries. Rules are evaluated in priority order, first match wins:

1. Deposit dossier description -> DEPOSIT
2. Account package document code or description -> ACCOUNT_PACKAGE
3. Client segment -> CLIENT_FL / CLIENT_PL
4. FL / PL wording in the dossier description -> CLIENT_FL, CLIENT_PL or CLIENT_FL_OR_PL
5. Otherwise UNKNOWN
"""

from typing import Optional

from dossier_migration.db.models.enums import ROOT_FOLDER_NAMES, DossierType
from dossier_migration.services.dossier_type_detector import FL_SEGMENTS, PL_SEGMENTS, resolve_fl_or_pl

ACCOUNT_PACKAGE_CODES = {"00834", "00102"}

SOURCE_DUT = "DUT"
SOURCE_HEIMDALL = "Heimdall"


def determine_destination_dossier_type(
    tip_dokumenta: Optional[str],
    tip_dosijea: Optional[str],
    client_segment: Optional[str],
) -> DossierType:
    """
    Raw destination dossier type of a document.

    Args:
        tip_dokumenta: Document type code
        tip_dosijea: Dossier type description from the mapping
        client_segment: Client segment (PI, LE, RETAIL, SME, ...)

    Returns:
        DossierType, possibly the unresolved CLIENT_FL_OR_PL
    """
    description = (tip_dosijea or "").strip().lower()

    if "dosije depozita" in description:
        return DossierType.DEPOSIT

    if tip_dokumenta in ACCOUNT_PACKAGE_CODES:
        return DossierType.ACCOUNT_PACKAGE
    if "dosije paket računa" in description or "dosije paket racuna" in description:
        return DossierType.ACCOUNT_PACKAGE

    segment = (client_segment or "").strip().upper()
    if segment in FL_SEGMENTS:
        return DossierType.CLIENT_FL
    if segment in PL_SEGMENTS:
        return DossierType.CLIENT_PL

    if description:
        if (
            "fizičkog lica" in description
            or "fizickog lica" in description
            or "klijenta fl" in description
            or "dosije klijenta fl / pl" in description
        ):
            if "fl / pl" in description or "fl/pl" in description:
                return DossierType.CLIENT_FL_OR_PL
            return DossierType.CLIENT_FL

        if "pravnog lica" in description or "klijenta pl" in description or "klijenta le" in description:
            return DossierType.CLIENT_PL

    return DossierType.UNKNOWN


def determine_and_resolve(
    tip_dokumenta: Optional[str],
    tip_dosijea: Optional[str],
    client_segment: Optional[str],
) -> DossierType:
    """Destination dossier type with FL-or-PL resolved; never returns CLIENT_FL_OR_PL or OTHER."""
    dossier_type = determine_destination_dossier_type(tip_dokumenta, tip_dosijea, client_segment)

    if dossier_type == DossierType.CLIENT_FL_OR_PL and client_segment and client_segment.strip():
        return resolve_fl_or_pl(client_segment)
    if dossier_type in (DossierType.CLIENT_FL_OR_PL, DossierType.OTHER):
        return DossierType.UNKNOWN
    return dossier_type


def get_root_folder_name(dossier_type: DossierType) -> str:
    return ROOT_FOLDER_NAMES.get(dossier_type, ROOT_FOLDER_NAMES[DossierType.UNKNOWN])


def get_prefix_from_root_folder(root_folder_name: Optional[str]) -> str:
    """"DOSSIERS-PI" -> "PI"."""
    if not root_folder_name or "-" not in root_folder_name:
        return ""
    return root_folder_name.split("-", 1)[1].upper()


def is_root_folder_changing(source_type: DossierType, destination_type: DossierType) -> bool:
    return get_root_folder_name(source_type) != get_root_folder_name(destination_type)


def determine_source(dossier_type: DossierType) -> str:
    """Source system tag: deposits come from DUT, everything else from Heimdall."""
    if dossier_type == DossierType.DEPOSIT:
        return SOURCE_DUT
    return SOURCE_HEIMDALL
