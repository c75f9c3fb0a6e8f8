"""
CertChain — Certificate Primitives

The persisted certificate record and the values that flow between the
engine's collaborators.

Persisted layout (camelCase, as the record store and API expose it):
  {owner, metadataUri, cid, content: {studentName, degree, institution,
   issueDate, imageUrl}, referrals: [...], versions: [{versionId, cid}],
   tokenId}

Referral eligibility is derived from `referrals` (see engine.referral) and
is never stored on the record.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any

from pydantic import AfterValidator, Field, HttpUrl, TypeAdapter, field_validator

from certchain.primitives.common import CertBaseModel, normalize_address

_HTTP_URL = TypeAdapter(HttpUrl)


def _check_http_url(v: str) -> str:
    _HTTP_URL.validate_python(v)
    return v


# Checked as an http(s) URL but kept exactly as the client sent it
ImageUrl = Annotated[str, AfterValidator(_check_http_url)]


class CertificateContent(CertBaseModel):
    """The mutable, current snapshot of a certificate."""

    model_config = {
        "populate_by_name": True,
        "from_attributes": True,
        "str_strip_whitespace": True,
    }

    student_name: str = Field(alias="studentName", min_length=1)
    degree: str = Field(min_length=1)
    institution: str = Field(min_length=1)
    issue_date: date = Field(alias="issueDate")
    image_url: ImageUrl | None = Field(default=None, alias="imageUrl")

    @field_validator("issue_date", mode="before")
    @classmethod
    def _date_from_iso_timestamp(cls, v: Any) -> Any:
        # Clients send either "2025-05-01" or a full ISO timestamp
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    @field_validator("image_url", mode="before")
    @classmethod
    def _blank_image_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_metadata(self, owner: str) -> dict[str, Any]:
        """The JSON blob pinned for this snapshot."""
        return {
            "studentName": self.student_name,
            "degree": self.degree,
            "institution": self.institution,
            "issueDate": self.issue_date.isoformat(),
            "owner": owner,
            "imageUrl": self.image_url,
        }


class CertificateVersion(CertBaseModel):
    """An appended, immutable snapshot pointer."""

    model_config = {"populate_by_name": True, "from_attributes": True, "frozen": True}

    version_id: str = Field(alias="versionId")
    cid: str


class Certificate(CertBaseModel):
    owner: str
    metadata_uri: str = Field(alias="metadataUri")
    cid: str
    content: CertificateContent
    referrals: list[str] = Field(default_factory=list)
    versions: list[CertificateVersion] = Field(default_factory=list)
    token_id: int | None = Field(default=None, alias="tokenId")

    @field_validator("owner")
    @classmethod
    def _lowercase_owner(cls, v: str) -> str:
        return normalize_address(v)

    @field_validator("referrals")
    @classmethod
    def _lowercase_referrals(cls, v: list[str]) -> list[str]:
        return [normalize_address(r) for r in v]

    @property
    def latest_version_id(self) -> int:
        return max((int(v.version_id) for v in self.versions), default=0)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, raw: dict[str, Any]) -> Certificate:
        return cls.model_validate(raw)


class ReferralCredit(CertBaseModel):
    referral_count: int = Field(alias="referralCount")
    eligible: bool


class PublishedMetadata(CertBaseModel):
    cid: str
    uri: str


class Receipt(CertBaseModel):
    """A mined ledger transaction."""

    tx_hash: str = Field(alias="txHash")
    status: int
    operation: str
    gas_used: int | None = Field(default=None, alias="gasUsed")
    block_number: int | None = Field(default=None, alias="blockNumber")
    # Populated for mints when the receipt carries a Transfer event
    token_id: int | None = Field(default=None, alias="tokenId")

    @property
    def succeeded(self) -> bool:
        return self.status == 1
