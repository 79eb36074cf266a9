"""Active/inactive status of a migrated document."""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from dossier_migration.services.document_name_mapper import has_migration_suffix

logger = logging.getLogger(__name__)

STATUS_ACTIVE_ALFRESCO = "validiran"
STATUS_INACTIVE_ALFRESCO = "poništen"

_INACTIVE_STATUS_VALUES = {"poništen", "ponisten", "inactive", "cancelled", "canceled"}
_NEW_VERSION_POLICIES = {"nova verzija", "novi dokument"}


@dataclass
class DocumentStatusInfo:
    """Outcome of status determination for one document."""

    is_active: bool
    status: str
    reason: str
    priority: int
    mapping_code: Optional[str] = None
    mapping_name: Optional[str] = None
    politika_cuvanja: Optional[str] = None
    original_code: Optional[str] = None
    has_migration_suffix: bool = False


def alfresco_status(is_active: bool) -> str:
    return STATUS_ACTIVE_ALFRESCO if is_active else STATUS_INACTIVE_ALFRESCO


def is_inactive_status(existing_status: Optional[str]) -> bool:
    """True for legacy status values that mean cancelled/inactive."""
    if not existing_status or not existing_status.strip():
        return False
    return existing_status.strip().lower() in _INACTIVE_STATUS_VALUES


class DocumentStatusDetector:
    """
    Decides whether a document is active after migration.

    Rules, first match wins:
        0. No mapping: active.
        1. Migrated code is one of the active sentinel codes: active.
        2. Retention policy "Nova verzija" / "Novi dokument": inactive.
           Only evaluated when the retention rule is enabled.
        3. Migrated name ends with "- migracija" / "– migracija": inactive,
           any other migrated name: active.
        4. Otherwise: active.
    """

    def __init__(self, active_codes: Iterable[str] = ("00099",), enable_retention_policy_rule: bool = False):
        """
        Args:
            active_codes: Migrated codes that are always active
            enable_retention_policy_rule: Evaluate the retention policy rule
        """
        self.active_codes = {code.strip() for code in active_codes if code}
        self.enable_retention_policy_rule = enable_retention_policy_rule

    def determine_status(self, mapping: Optional[Any], existing_status: Optional[str] = None) -> DocumentStatusInfo:
        """
        Determine status from a document mapping.

        Args:
            mapping: DocumentMapping row or MappingRecord, or None
            existing_status: Status in the legacy repository (informational)

        Returns:
            DocumentStatusInfo
        """
        if mapping is None:
            return DocumentStatusInfo(is_active=True, status="2", reason="No mapping, default active", priority=0)

        migrated_code = (mapping.sifra_dokumenta_migracija or "").strip()
        migrated_name = mapping.naziv_dokumenta_migracija
        common = {
            "mapping_code": mapping.sifra_dokumenta_migracija,
            "mapping_name": migrated_name,
            "original_code": mapping.sifra_dokumenta,
        }

        if migrated_code and migrated_code in self.active_codes:
            return DocumentStatusInfo(
                is_active=True,
                status="1",
                reason=f"Migrated code {migrated_code} is always active",
                priority=1,
                **common,
            )

        policy = (mapping.politika_cuvanja or "").strip()
        if self.enable_retention_policy_rule and policy.lower() in _NEW_VERSION_POLICIES:
            return DocumentStatusInfo(
                is_active=False,
                status="2",
                reason=f"Retention policy '{policy}'",
                priority=2,
                politika_cuvanja=policy,
                **common,
            )

        if migrated_name and migrated_name.strip():
            if has_migration_suffix(migrated_name):
                return DocumentStatusInfo(
                    is_active=False,
                    status="2",
                    reason="Migrated name has '- migracija' suffix",
                    priority=3,
                    has_migration_suffix=True,
                    **common,
                )
            return DocumentStatusInfo(
                is_active=True,
                status="1",
                reason="Migrated name has no '- migracija' suffix",
                priority=3,
                **common,
            )

        return DocumentStatusInfo(
            is_active=True,
            status="2",
            reason="Default active, no migrated name",
            priority=4,
            **common,
        )
