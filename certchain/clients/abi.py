"""
CertChain — CertificateNFT contract ABI

The subset of the deployed CertificateNFT interface the engine calls.
"""

from __future__ import annotations

from typing import Any


def _fn(
    name: str,
    inputs: list[tuple[str, str]],
    outputs: list[str] | None = None,
    mutability: str = "nonpayable",
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in (outputs or [])],
    }


CERTIFICATE_NFT_ABI: list[dict[str, Any]] = [
    # Views
    _fn("owner", [], ["address"], "view"),
    _fn("hasCertificate", [("user", "address")], ["bool"], "view"),
    _fn("ownerOf", [("tokenId", "uint256")], ["address"], "view"),
    _fn("paused", [], ["bool"], "view"),
    # State-changing
    _fn("mintFor", [("to", "address"), ("cid", "string"), ("referrer", "address")]),
    _fn("mintVersion", [("user", "address"), ("cid", "string")]),
    _fn("revoke", [("tokenId", "uint256")]),
    _fn("pause", []),
    _fn("unpause", []),
    _fn("transferOwnership", [("newOwner", "address")]),
    _fn("setBaseGatewayURI", [("baseGatewayURI", "string")]),
    # Events
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
        ],
    },
]
