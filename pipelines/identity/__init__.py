from .evidence import EvidenceKind, EvidenceRef, FieldValue, Region
from .record import CLAIM_SOURCE, FIELD_NAMES, EnrollmentPeriod, IdentityRecord

__all__ = [
    "CLAIM_SOURCE",
    "FIELD_NAMES",
    "EnrollmentPeriod",
    "EvidenceKind",
    "EvidenceRef",
    "FieldValue",
    "IdentityRecord",
    "Region",
]
