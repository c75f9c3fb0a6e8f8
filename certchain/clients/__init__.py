"""
CertChain — External Service Clients

Connection management for Redis (record store backend), Pinata (metadata
publishing), and the CertificateNFT contract (ledger).
"""

from certchain.clients.ledger import LedgerClient, LedgerOperation
from certchain.clients.publisher import PinataPublisher
from certchain.clients.redis import RedisClient

__all__ = [
    "LedgerClient",
    "LedgerOperation",
    "PinataPublisher",
    "RedisClient",
]
