"""Dossier type classification from dossier descriptions, segments and folder prefixes."""
from typing import List, Optional

from dossier_migration.db.models.enums import DossierType
from dossier_migration.services.dossier_id_formatter import extract_prefix

_DESTINATION_FOLDER_NAMES = {
    DossierType.ACCOUNT_PACKAGE: "300 Dosije paket računa",
    DossierType.CLIENT_PL: "400 Dosije pravnog lica",
    DossierType.CLIENT_FL: "500 Dosije fizičkog lica",
    DossierType.DEPOSIT: "700 Dosije depozita",
}
_UNKNOWN_DESTINATION_FOLDER_NAME = "999 Dosije - Unknown"

_DOSSIER_FOLDER_NAMES = {
    DossierType.ACCOUNT_PACKAGE: "DOSSIER-ACC",
    DossierType.CLIENT_PL: "DOSSIER-LE",
    DossierType.CLIENT_FL: "DOSSIER-PI",
    DossierType.DEPOSIT: "DOSSIER-D",
}

FL_SEGMENTS = {"PI", "RETAIL", "FL"}
PL_SEGMENTS = {"LE", "SME", "CORPORATE", "PL"}


def detect_from_tip_dosijea(tip_dosijea: Optional[str]) -> DossierType:
    """Classify a dossier description such as "Dosije klijenta FL / PL".

    Args:
        tip_dosijea: Dossier type description

    Returns:
        DossierType; CLIENT_FL_OR_PL when the description covers both client kinds
    """
    if not tip_dosijea or not tip_dosijea.strip():
        return DossierType.UNKNOWN

    normalized = tip_dosijea.strip().lower()

    if "dosije paket racuna" in normalized or "dosije paket računa" in normalized:
        return DossierType.ACCOUNT_PACKAGE
    if "dosije klijenta fl / pl" in normalized or "dosije klijenta fl/pl" in normalized:
        return DossierType.CLIENT_FL_OR_PL
    if "dosije klijenta pl" in normalized and "fl" not in normalized:
        return DossierType.CLIENT_PL
    if "dosije depozita" in normalized:
        return DossierType.DEPOSIT
    if "dosije ostalo" in normalized:
        return DossierType.OTHER
    return DossierType.UNKNOWN


def resolve_fl_or_pl(client_segment: Optional[str]) -> DossierType:
    """Resolve an FL-or-PL dossier through the client segment."""
    normalized = (client_segment or "").strip().upper()
    if normalized in FL_SEGMENTS:
        return DossierType.CLIENT_FL
    if normalized in PL_SEGMENTS:
        return DossierType.CLIENT_PL
    return DossierType.UNKNOWN


def get_dossier_folder_name(dossier_type: DossierType) -> str:
    if dossier_type == DossierType.CLIENT_FL_OR_PL:
        raise ValueError("Cannot name a folder for an unresolved FL-or-PL dossier; resolve it first")
    return _DOSSIER_FOLDER_NAMES.get(dossier_type, "DOSSIER-UNKNOWN")


def get_destination_folder_name(dossier_type: DossierType) -> str:
    """Display name of the destination folder for a dossier type, e.g. "500 Dosije fizičkog lica"."""
    if dossier_type == DossierType.CLIENT_FL_OR_PL:
        raise ValueError("Cannot name a folder for an unresolved FL-or-PL dossier; resolve it first")
    return _DESTINATION_FOLDER_NAMES.get(dossier_type, _UNKNOWN_DESTINATION_FOLDER_NAME)


def map_dossier_folder_type(folder_type: Optional[str]) -> DossierType:
    """Map a DOSSIERS-{TYPE} suffix to a dossier type. FL folders may hold both client kinds."""
    return {
        "FL": DossierType.CLIENT_FL_OR_PL,
        "PL": DossierType.CLIENT_PL,
        "ACC": DossierType.ACCOUNT_PACKAGE,
        "D": DossierType.DEPOSIT,
    }.get((folder_type or "").strip().upper(), DossierType.UNKNOWN)


def get_possible_dossier_types(folder_type: Optional[str]) -> List[DossierType]:
    base_type = map_dossier_folder_type(folder_type)
    if base_type == DossierType.CLIENT_FL_OR_PL:
        return [DossierType.CLIENT_FL, DossierType.CLIENT_PL]
    if base_type == DossierType.OTHER:
        return []
    return [base_type]


def detect_from_folder_prefix(folder_name: Optional[str]) -> DossierType:
    """Dossier type implied by a source folder name prefix (PI102206 -> CLIENT_FL)."""
    prefix = extract_prefix(folder_name)
    if prefix in ("PI", "FL"):
        return DossierType.CLIENT_FL
    if prefix in ("LE", "PL"):
        return DossierType.CLIENT_PL
    if prefix == "ACC":
        return DossierType.ACCOUNT_PACKAGE
    if prefix in ("DE", "D"):
        return DossierType.DEPOSIT
    return DossierType.UNKNOWN
