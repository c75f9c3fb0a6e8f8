"""
CertChain — Common Primitives

Shared base model, address handling, and utilities used across the engine.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel
from ulid import ULID
from web3 import Web3

ZERO_ADDRESS = "0x" + "0" * 40


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def is_address(value: object) -> bool:
    return isinstance(value, str) and Web3.is_address(value)


def normalize_address(value: str) -> str:
    """
    Lowercase a 0x address after validating it.

    Every address crossing into the engine goes through here; stored and
    compared forms are always lowercase.
    """
    value = value.strip() if isinstance(value, str) else value
    if not is_address(value):
        raise ValueError(f"Invalid Ethereum address: {value!r}")
    return value.lower()


def to_checksum(value: str) -> str:
    return Web3.to_checksum_address(value)


# ─── Base Models ──────────────────────────────────────────────────


class CertBaseModel(BaseModel):
    """Base model for all CertChain primitives."""

    model_config = {"populate_by_name": True, "from_attributes": True}
