"""
CertChain — Primitives

Data types shared by the record store, the collaborator clients, and the
issuance engine.
"""

from certchain.primitives.certificate import (
    Certificate,
    CertificateContent,
    CertificateVersion,
    PublishedMetadata,
    Receipt,
    ReferralCredit,
)
from certchain.primitives.common import (
    ZERO_ADDRESS,
    CertBaseModel,
    is_address,
    new_id,
    normalize_address,
    utc_now,
)

__all__ = [
    "Certificate",
    "CertificateContent",
    "CertificateVersion",
    "CertBaseModel",
    "PublishedMetadata",
    "Receipt",
    "ReferralCredit",
    "ZERO_ADDRESS",
    "is_address",
    "new_id",
    "normalize_address",
    "utc_now",
]
