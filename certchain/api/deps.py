"""
CertChain — Router helpers shared by the REST routers.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request

from certchain.engine.orchestrator import IssuanceOrchestrator

_CONTENT_FIELDS = ("studentName", "degree", "institution", "issueDate", "imageUrl")


def content_from(payload: dict[str, Any]) -> dict[str, Any]:
    """The certificate content fields of a request body, missing ones as None."""
    return {k: payload.get(k) for k in _CONTENT_FIELDS}


def get_orchestrator(request: Request) -> IssuanceOrchestrator:
    return request.app.state.issuance
