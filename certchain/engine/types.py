"""
CertChain — Engine Request & Result Types

One validated request model per inbound operation. Each is built before the
first side effect, so a malformed address or missing field becomes a
ValidationError at the VALIDATE stage and nothing else.
"""

from __future__ import annotations

from typing import Annotated, Any, TypeVar

from pydantic import AfterValidator, Field, ValidationError as PydanticValidationError, model_validator

from certchain.errors import ValidationError
from certchain.primitives.certificate import CertificateContent, Receipt
from certchain.primitives.common import ZERO_ADDRESS, CertBaseModel, normalize_address

Address = Annotated[str, AfterValidator(normalize_address)]

# ─── Requests ─────────────────────────────────────────────────────


class IssueRequest(CertBaseModel):
    owner: Address
    content: CertificateContent
    referrer: Address | None = None
    free: bool = False

    @model_validator(mode="after")
    def _no_self_referral(self) -> IssueRequest:
        if self.referrer is not None and self.referrer == self.owner:
            raise ValueError("An address cannot refer itself")
        return self


class VersionRequest(CertBaseModel):
    owner: Address
    content: CertificateContent
    mint_on_chain: bool = False


class AdminRequest(CertBaseModel):
    caller: Address


class AdminMintRequest(AdminRequest):
    owner: Address
    content: CertificateContent
    referrer: Address | None = None

    @model_validator(mode="after")
    def _no_self_referral(self) -> AdminMintRequest:
        if self.referrer is not None and self.referrer == self.owner:
            raise ValueError("An address cannot refer itself")
        return self


class RevokeRequest(AdminRequest):
    token_id: int = Field(ge=0)


class TransferOwnershipRequest(AdminRequest):
    new_owner: Address

    @model_validator(mode="after")
    def _not_zero(self) -> TransferOwnershipRequest:
        if self.new_owner == ZERO_ADDRESS:
            raise ValueError("Ownership cannot be transferred to the zero address")
        return self


class SetBaseURIRequest(AdminRequest):
    model_config = {"populate_by_name": True, "str_strip_whitespace": True}

    uri: str = Field(min_length=1)


class OwnerQuery(CertBaseModel):
    owner: Address


RequestT = TypeVar("RequestT", bound=CertBaseModel)


def validate_request(model: type[RequestT], **data: Any) -> RequestT:
    """Build a request model, translating pydantic errors to ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        field_errors = {
            ".".join(str(p) for p in err["loc"]) or "request": err["msg"]
            for err in exc.errors()
        }
        first = next(iter(field_errors.items()))
        raise ValidationError(f"Invalid {first[0]}: {first[1]}", field_errors=field_errors) from exc


# ─── Results ──────────────────────────────────────────────────────


class IssueResult(CertBaseModel):
    owner: str
    cid: str
    uri: str
    created: bool
    receipt: Receipt | None = None
    saga_id: str
    steps: list[dict[str, Any]] = Field(default_factory=list)


class VersionResult(CertBaseModel):
    owner: str
    version_id: str = Field(alias="versionId")
    cid: str
    uri: str
    receipt: Receipt | None = None
    saga_id: str
    steps: list[dict[str, Any]] = Field(default_factory=list)
