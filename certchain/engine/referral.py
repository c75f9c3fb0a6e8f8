"""
CertChain — Referral Credit Calculator

Free-mint eligibility is derived from the stored referral list every time
it is asked for. No "eligible" flag is persisted.
"""

from __future__ import annotations

from certchain.primitives.certificate import Certificate, ReferralCredit

FREE_MINT_REFERRAL_THRESHOLD = 3


def credit(certificate: Certificate | None) -> ReferralCredit:
    """Referral count and eligibility. No record counts as zero referrals."""
    count = len(certificate.referrals) if certificate is not None else 0
    return ReferralCredit(
        referral_count=count,
        eligible=count >= FREE_MINT_REFERRAL_THRESHOLD,
    )
