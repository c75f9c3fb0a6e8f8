"""
CertChain — Admin REST Router

Privileged contract operations. The caller's claimed address is read from
the admin header (ServerConfig.admin_header); when the header is absent the
server's own signer is the caller. Either way the orchestrator checks it
against the contract's live owner before anything is sent.

Endpoints:
  POST /api/admin/mint-free
  POST /api/admin/revoke
  POST /api/admin/pause
  POST /api/admin/unpause
  POST /api/admin/transfer-ownership
  POST /api/admin/set-base-gateway-uri
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Request

from certchain.api.deps import content_from, get_orchestrator
from certchain.primitives.certificate import Receipt

router = APIRouter(prefix="/api/admin")


def _caller(request: Request) -> str:
    # The header is a claimed identity, not an authenticated one. Without it
    # the server signer is the caller, so any request passes the guard while
    # the signer owns the contract.
    header = request.app.state.config.server.admin_header
    return request.headers.get(header) or request.app.state.ledger.signer_address


def _tx(receipt: Receipt) -> dict[str, Any]:
    return {"success": True, "txHash": receipt.tx_hash}


@router.post("/mint-free")
async def mint_free(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    receipt = await get_orchestrator(request).admin_mint_free(
        caller=_caller(request),
        owner=payload.get("userAddress"),
        content=content_from(payload),
        referrer=payload.get("referrerAddress") or None,
    )
    response = _tx(receipt)
    if receipt.token_id is not None:
        response["tokenId"] = receipt.token_id
    return response


@router.post("/revoke")
async def revoke(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    receipt = await get_orchestrator(request).admin_revoke(
        caller=_caller(request),
        token_id=payload.get("tokenId"),
    )
    return _tx(receipt)


@router.post("/pause")
async def pause(request: Request) -> dict[str, Any]:
    return _tx(await get_orchestrator(request).admin_pause(caller=_caller(request)))


@router.post("/unpause")
async def unpause(request: Request) -> dict[str, Any]:
    return _tx(await get_orchestrator(request).admin_unpause(caller=_caller(request)))


@router.post("/transfer-ownership")
async def transfer_ownership(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    receipt = await get_orchestrator(request).admin_transfer_ownership(
        caller=_caller(request),
        new_owner=payload.get("newOwner"),
    )
    return _tx(receipt)


@router.post("/set-base-gateway-uri")
async def set_base_gateway_uri(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    receipt = await get_orchestrator(request).admin_set_base_uri(
        caller=_caller(request),
        uri=payload.get("baseGatewayURI"),
    )
    return _tx(receipt)
