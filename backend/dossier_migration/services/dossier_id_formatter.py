"""
Dossier id formatting.

Legacy dossier ids look like ``PI102206``; migrated ids are hyphenated,
``PI-102206``. Deposit dossiers use the extended form
``DE-{core_id}-{product_type}_{contract_number}``.
"""

from datetime import datetime
from typing import Optional, Tuple

DEPOSIT_PREFIX = "DE"

# Client segment / folder prefix -> deposit product type
_PRODUCT_TYPE_BY_SEGMENT = {
    "PI": "00008",  # Natural persons, deposit products
    "FL": "00008",
    "LE": "00010",  # Legal entities, deposit products
    "PL": "00010",
}
DEFAULT_PRODUCT_TYPE = "00008"

_PREFIX_BY_TARGET_TYPE = {
    300: "ACC",
    400: "LE",
    500: "PI",
    700: DEPOSIT_PREFIX,
}


def extract_core_id(dossier_id: Optional[str]) -> str:
    """Digits of a dossier id, starting at the first digit.

    Args:
        dossier_id: Dossier id in old or new format

    Returns:
        Core id, or empty string
    """
    if not dossier_id or not dossier_id.strip():
        return ""
    normalized = dossier_id.replace("-", "")
    for index, char in enumerate(normalized):
        if char.isdigit():
            return normalized[index:]
    return ""


def extract_prefix(dossier_id: Optional[str]) -> str:
    """Leading non-digit, non-hyphen part of a dossier id, upper-cased."""
    if not dossier_id or not dossier_id.strip():
        return ""
    prefix = []
    for char in dossier_id:
        if char.isdigit() or char == "-":
            break
        prefix.append(char)
    return "".join(prefix).upper()


def create_new_dossier_id(prefix: Optional[str], core_id: Optional[str]) -> str:
    if not prefix or not prefix.strip() or not core_id or not core_id.strip():
        return ""
    return f"{prefix.upper()}-{core_id}"


def convert_to_new_format(old_dossier_id: Optional[str]) -> str:
    """Convert ``PI102206`` into ``PI-102206``.

    Ids that already contain a hyphen are only upper-cased, so the
    conversion is idempotent.

    Args:
        old_dossier_id: Dossier id

    Returns:
        Hyphenated dossier id, or empty string for blank input
    """
    if not old_dossier_id or not old_dossier_id.strip():
        return ""
    if "-" in old_dossier_id:
        return old_dossier_id.upper()

    prefix = extract_prefix(old_dossier_id)
    core_id = extract_core_id(old_dossier_id)
    if not prefix or not core_id:
        return old_dossier_id.upper()
    return create_new_dossier_id(prefix, core_id)


def is_old_format(dossier_id: Optional[str]) -> bool:
    return bool(dossier_id and dossier_id.strip()) and "-" not in dossier_id


def is_new_format(dossier_id: Optional[str]) -> bool:
    return bool(dossier_id and dossier_id.strip()) and "-" in dossier_id


def map_client_segment_to_product_type(client_segment: Optional[str]) -> str:
    """Deposit product type for a client segment (PI/FL -> 00008, LE/PL -> 00010)."""
    if not client_segment or not client_segment.strip():
        return DEFAULT_PRODUCT_TYPE
    return _PRODUCT_TYPE_BY_SEGMENT.get(client_segment.strip().upper(), DEFAULT_PRODUCT_TYPE)


def create_deposit_dossier_id(
    core_id: str,
    product_type: Optional[str],
    contract_number: Optional[str],
    folder_name: Optional[str] = None,
    created: Optional[datetime] = None,
) -> str:
    """Build ``DE-{core_id}-{product_type}_{contract_number}``.

    Args:
        core_id: Client core id
        product_type: Deposit product type; derived from the folder prefix when missing
        contract_number: Contract number; the creation date (yyyyMMdd) when missing
        folder_name: Source folder name used to derive the product type
        created: Document creation date

    Returns:
        Deposit dossier id
    """
    if not product_type or not product_type.strip():
        product_type = map_client_segment_to_product_type(extract_prefix(folder_name))
    if not contract_number or not contract_number.strip():
        contract_number = created.strftime("%Y%m%d") if created else ""
    return f"{DEPOSIT_PREFIX}-{core_id}-{product_type}_{contract_number}"


def is_deposit_dossier(dossier_id: Optional[str]) -> bool:
    return bool(dossier_id) and dossier_id.upper().startswith(DEPOSIT_PREFIX)


def parse_deposit_dossier_id(deposit_dossier_id: Optional[str]) -> Optional[Tuple[str, str, str]]:
    """Split a deposit dossier id into (core_id, product_type, contract_number).

    Accepts ``DE-500342-00008_12345`` and the legacy ``DE500342-00008_12345``.

    Returns:
        The triple, or None when the id is malformed
    """
    if not deposit_dossier_id or not is_deposit_dossier(deposit_dossier_id):
        return None

    if deposit_dossier_id.upper().startswith(f"{DEPOSIT_PREFIX}-"):
        remainder = deposit_dossier_id[3:]
    else:
        remainder = deposit_dossier_id[2:]

    parts = remainder.split("-")
    if len(parts) != 2:
        return None
    core_id, rest = parts
    product_and_contract = rest.split("_")
    if len(product_and_contract) != 2:
        return None
    product_type, contract_number = product_and_contract
    return core_id, product_type, contract_number


def convert_for_target_type(
    folder_name: Optional[str],
    target_type: int,
    contract_number: Optional[str] = None,
    product_type: Optional[str] = None,
    core_id: Optional[str] = None,
    created: Optional[datetime] = None,
) -> str:
    """Destination dossier id for a folder moved into a dossier type.

    The prefix follows the destination (300 ACC, 400 LE, 500 PI, 700 DE);
    deposits use the extended deposit form. Unknown targets keep the
    folder's own prefix.

    Args:
        folder_name: Source dossier folder name, e.g. ``PI102206``
        target_type: Destination dossier type code
        contract_number: Deposit contract number
        product_type: Deposit product type
        core_id: Client core id; parsed from the folder name when missing
        created: Document creation date (deposit fallback)

    Returns:
        Destination dossier id
    """
    if not folder_name or not folder_name.strip():
        return ""

    if not core_id or not core_id.strip():
        core_id = extract_core_id(folder_name)
    if not core_id:
        return convert_to_new_format(folder_name)

    target_type = int(target_type)
    if target_type == 700:
        return create_deposit_dossier_id(core_id, product_type, contract_number, folder_name, created)

    prefix = _PREFIX_BY_TARGET_TYPE.get(target_type)
    if prefix is None:
        return convert_to_new_format(folder_name)
    return create_new_dossier_id(prefix, core_id)
