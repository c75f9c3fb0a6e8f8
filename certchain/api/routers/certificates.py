"""
CertChain — Certificate REST Router

Endpoints:
  POST /api/certificate/mint                  — Pin + record (paid or free mint)
  POST /api/certificate/mint-version          — Append a new version
  GET  /api/certificate/access/{address}      — Current record for an owner
  GET  /api/certificate/referrals/{address}   — Referral count and free-mint credit
  GET  /api/certificate/public                — Every certificate, with version links

Request bodies are passed through as plain dicts; the orchestrator's request
models are the only validation layer.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Request

from certchain.api.deps import content_from, get_orchestrator
from certchain.engine import referral
from certchain.errors import CertificateNotFound

logger = structlog.get_logger("certchain.api.certificates")

router = APIRouter(prefix="/api/certificate")


@router.post("/mint")
async def mint(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Pin metadata and record it; the caller mints with the returned CID."""
    result = await get_orchestrator(request).issue(
        owner=payload.get("userAddress"),
        content=content_from(payload),
        referrer=payload.get("referrerAddress") or None,
        free=bool(payload.get("isFreeMint", False)),
    )
    response: dict[str, Any] = {
        "cid": result.cid,
        "jsonLink": result.uri,
        "created": result.created,
    }
    if result.receipt is not None:
        response["txHash"] = result.receipt.tx_hash
    return response


@router.post("/mint-version")
async def mint_version(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    result = await get_orchestrator(request).issue_version(
        owner=payload.get("userAddress"),
        content=content_from(payload),
        mint_on_chain=bool(payload.get("mintOnChain", False)),
    )
    response: dict[str, Any] = {
        "versionId": result.version_id,
        "cid": result.cid,
        "jsonLink": result.uri,
    }
    if result.receipt is not None:
        response["txHash"] = result.receipt.tx_hash
    return response


@router.get("/access/{address}")
async def access(request: Request, address: str) -> dict[str, Any]:
    certificate = await get_orchestrator(request).get_by_owner(address)
    if certificate is None:
        logger.info("access_no_certificate", address=address.lower())
        raise CertificateNotFound(address.lower())
    return {
        "certificate": certificate.to_record(),
        "tokenId": certificate.token_id,
        "tokenURI": certificate.metadata_uri,
    }


@router.get("/referrals/{address}")
async def referrals(request: Request, address: str) -> dict[str, Any]:
    credit = await get_orchestrator(request).get_referral_credit(address)
    return {"referralCount": credit.referral_count, "freeMintCredit": credit.eligible}


@router.get("/public")
async def public(request: Request) -> dict[str, Any]:
    """All certificates with their referral counts and version links."""
    gateway = request.app.state.config.pinata.gateway_url
    certificates = await get_orchestrator(request).list_public()
    return {
        "certificates": [
            {
                "userAddress": cert.owner,
                "tokenURI": cert.metadata_uri,
                "userData": {"referralCount": referral.credit(cert).referral_count},
                "versions": [
                    {
                        "versionId": v.version_id,
                        "tokenURI": f"{gateway}/ipfs/{v.cid}",
                        "createdAt": cert.content.issue_date.isoformat(),
                    }
                    for v in cert.versions
                ],
            }
            for cert in certificates
        ]
    }
