"""Status, phase and dossier type enumerations shared across the pipeline."""
from enum import Enum, IntEnum


class MigrationStatus(str, Enum):
    """Lifecycle status of a staged folder or document."""

    NEW = "NEW"
    READY = "READY"
    PREPARED = "PREPARED"
    IN_PROGRESS = "IN PROGRESS"
    PROCESSED = "PROCESSED"
    DONE = "DONE"
    ERROR = "ERROR"
    FAILED = "FAILED"


class MigrationPhase(IntEnum):
    """Pipeline phases in execution order."""

    FOLDER_DISCOVERY = 1
    DOCUMENT_DISCOVERY = 2
    FOLDER_PREPARATION = 3
    MOVE = 4

    @property
    def display_name(self) -> str:
        return self.name.replace("_", " ").title()


class KdpAction(IntEnum):
    """Property update decided for a KDP document."""

    NONE = 0
    ACTIVATE = 1
    DEACTIVATE = 2


class PhaseStatus(str, Enum):
    """Checkpoint status of a single phase."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DossierType(IntEnum):
    """Destination dossier classification.

    Positive values are the numeric codes used by the destination repository.
    Negative values are intermediate results that must be resolved further.
    """

    ACCOUNT_PACKAGE = 300
    CLIENT_PL = 400
    CLIENT_FL = 500
    DEPOSIT = 700
    UNKNOWN = 999
    CLIENT_FL_OR_PL = -1
    OTHER = -2

    @property
    def root_folder_name(self) -> str:
        """Name of the top-level destination folder holding dossiers of this type."""
        return ROOT_FOLDER_NAMES.get(self, "DOSSIERS-UNKNOWN")


ROOT_FOLDER_NAMES = {
    DossierType.ACCOUNT_PACKAGE: "DOSSIERS-ACC",
    DossierType.CLIENT_PL: "DOSSIERS-LE",
    DossierType.CLIENT_FL: "DOSSIERS-PI",
    DossierType.DEPOSIT: "DOSSIERS-D",
    DossierType.UNKNOWN: "DOSSIERS-UNKNOWN",
}
