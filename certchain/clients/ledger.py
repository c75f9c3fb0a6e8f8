"""
CertChain — Certificate Ledger Client (web3.py)

On-chain side of the certificate: the CertificateNFT contract. Wraps every
state-changing call in the same pipeline:

  1. Simulate via eth_estimateGas. A revert here is a *known* failure
     (EstimationError carries the revert reason, e.g. "already holds
     certificate") and nothing is broadcast.
  2. Buffer the estimate by the configured multiplier (>= 1.1x) so the
     transaction is never under-provisioned.
  3. Allocate a nonce, sign locally, broadcast. Nonce allocation and
     broadcast are serialised per signer; waiting is not.
  4. Block until mined, bounded by confirmation_timeout_s. A timeout is an
     *unknown* outcome (ConfirmationError carries tx_hash). Callers may
     poll(tx_hash) again; they must never resubmit.

The client is constructed by the process entry point and injected into the
orchestrator. There is no module-level provider or wallet.

Environment variables consumed (via LedgerConfig):
  ALCHEMY_API_URL    — JSON-RPC endpoint
  CONTRACT_ADDRESS   — CertificateNFT address
  PRIVATE_KEY        — Signer key for admin / free-mint transactions
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

from certchain.clients.abi import CERTIFICATE_NFT_ABI
from certchain.errors import (
    ConfirmationError,
    EstimationError,
    LedgerReadError,
    SubmissionError,
)
from certchain.primitives.certificate import Receipt
from certchain.primitives.common import ZERO_ADDRESS, to_checksum

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount
    from web3.contract import AsyncContract

    from certchain.config import LedgerConfig

logger = structlog.get_logger()

# Gas multiplier is applied in integer per-mille to keep limits exact
_MULTIPLIER_SCALE = 1000
_REVERT_PREFIX = "execution reverted:"


class LedgerOperation(enum.StrEnum):
    MINT_FOR = "mint_for"
    MINT_VERSION = "mint_version"
    REVOKE = "revoke"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    TRANSFER_OWNERSHIP = "transfer_ownership"
    SET_BASE_URI = "set_base_uri"


_CONTRACT_FUNCTIONS: dict[LedgerOperation, str] = {
    LedgerOperation.MINT_FOR: "mintFor",
    LedgerOperation.MINT_VERSION: "mintVersion",
    LedgerOperation.REVOKE: "revoke",
    LedgerOperation.PAUSE: "pause",
    LedgerOperation.UNPAUSE: "unpause",
    LedgerOperation.TRANSFER_OWNERSHIP: "transferOwnership",
    LedgerOperation.SET_BASE_URI: "setBaseGatewayURI",
}

_ARITY: dict[LedgerOperation, int] = {
    LedgerOperation.MINT_FOR: 3,
    LedgerOperation.MINT_VERSION: 2,
    LedgerOperation.REVOKE: 1,
    LedgerOperation.PAUSE: 0,
    LedgerOperation.UNPAUSE: 0,
    LedgerOperation.TRANSFER_OWNERSHIP: 1,
    LedgerOperation.SET_BASE_URI: 1,
}

# Positional args that are addresses; None at these positions means zero address
_ADDRESS_ARGS: dict[LedgerOperation, tuple[int, ...]] = {
    LedgerOperation.MINT_FOR: (0, 2),
    LedgerOperation.MINT_VERSION: (0,),
    LedgerOperation.TRANSFER_OWNERSHIP: (0,),
}

_MINTING_OPERATIONS = frozenset({LedgerOperation.MINT_FOR})


def _revert_reason(exc: ContractLogicError) -> str:
    reason = str(exc.args[0]) if exc.args else str(exc)
    if reason.startswith(_REVERT_PREFIX):
        reason = reason[len(_REVERT_PREFIX):]
    return reason.strip() or "execution reverted"


def buffered_gas_limit(estimate: int, multiplier: float) -> int:
    """estimate x multiplier, rounded up."""
    scaled = round(multiplier * _MULTIPLIER_SCALE)
    return -(-estimate * scaled // _MULTIPLIER_SCALE)


class LedgerClient:
    """
    Async CertificateNFT client.

    Lifecycle: construct → connect() → use → close().
    Mirrors the pattern of RedisClient and PinataPublisher. A web3 instance
    and signer may be injected (tests, shared providers); the client then
    does not own the provider.
    """

    def __init__(
        self,
        config: LedgerConfig,
        web3: AsyncWeb3 | None = None,
        account: LocalAccount | None = None,
    ) -> None:
        self._config = config
        self._w3 = web3
        self._owns_provider = web3 is None
        self._account = account
        self._contract: AsyncContract | None = None
        self._nonce_lock = asyncio.Lock()
        self._logger = logger.bind(component="clients.ledger")

    # ── Lifecycle ─────────────────────────────────────────────

    async def connect(self) -> None:
        """Create the provider, signer, and contract binding."""
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncHTTPProvider(self._config.rpc_url))
            if not await self._w3.is_connected():
                self._w3 = None
                raise LedgerReadError(
                    "Ledger RPC endpoint unreachable",
                    rpc_url=self._config.rpc_url,
                )

        if self._account is None:
            if not self._config.private_key:
                raise RuntimeError("LedgerConfig.private_key is required for a signing client")
            self._account = Account.from_key(self._config.private_key)

        self._contract = self._w3.eth.contract(
            address=to_checksum(self._config.contract_address),
            abi=CERTIFICATE_NFT_ABI,
        )
        self._logger.info(
            "ledger_connected",
            contract=self._config.contract_address,
            signer=self._account.address,
        )

    async def close(self) -> None:
        if self._w3 is not None and self._owns_provider:
            try:
                await self._w3.provider.disconnect()
            except Exception as e:
                self._logger.warning("ledger_close_error", error=str(e))
        self._w3 = None
        self._contract = None
        self._logger.info("ledger_disconnected")

    # ── Reads ─────────────────────────────────────────────────

    async def read_owner(self) -> str:
        """The contract's current owner, lowercase. Never cached."""
        owner = await self._call("owner")
        return str(owner).lower()

    async def has_certificate(self, address: str) -> bool:
        return bool(await self._call("hasCertificate", to_checksum(address)))

    async def owner_of(self, token_id: int) -> str:
        owner = await self._call("ownerOf", int(token_id))
        return str(owner).lower()

    async def _call(self, function_name: str, *args: Any) -> Any:
        contract = self._require_contract()
        try:
            return await getattr(contract.functions, function_name)(*args).call()
        except Exception as exc:
            self._logger.error("ledger_read_failed", function=function_name, error=str(exc))
            raise LedgerReadError(
                f"Ledger read {function_name} failed: {exc}",
                function=function_name,
            ) from exc

    # ── Writes ────────────────────────────────────────────────

    async def submit(
        self,
        operation: LedgerOperation,
        args: Sequence[Any] = (),
    ) -> Receipt:
        """
        Estimate, buffer, broadcast, and wait for a state-changing call.

        Raises:
            EstimationError: simulation reverted (nothing broadcast).
            SubmissionError: broadcast failed, or mined with status 0.
            ConfirmationError: broadcast but not mined within the wait.
        """
        contract = self._require_contract()
        account = self._require_account()
        w3 = self._require_web3()

        call_args = self._encode_args(operation, args)
        fn = getattr(contract.functions, _CONTRACT_FUNCTIONS[operation])(*call_args)

        try:
            estimate = int(await fn.estimate_gas({"from": account.address}))
        except ContractLogicError as exc:
            reason = _revert_reason(exc)
            self._logger.warning("ledger_estimation_reverted", operation=operation.value, reason=reason)
            raise EstimationError(operation.value, reason) from exc
        except Exception as exc:
            # Simulation never ran; nothing reached the chain
            self._logger.error("ledger_estimation_failed", operation=operation.value, error=str(exc))
            raise SubmissionError(operation.value, f"gas estimation unavailable: {exc}") from exc

        gas_limit = buffered_gas_limit(estimate, self._config.gas_multiplier)

        async with self._nonce_lock:
            try:
                nonce = await w3.eth.get_transaction_count(account.address, "pending")
                tx_params: dict[str, Any] = {
                    "from": account.address,
                    "nonce": nonce,
                    "gas": gas_limit,
                }
                if self._config.chain_id is not None:
                    tx_params["chainId"] = self._config.chain_id
                tx = await fn.build_transaction(tx_params)
                signed = account.sign_transaction(tx)
                raw_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as exc:
                self._logger.error("ledger_broadcast_failed", operation=operation.value, error=str(exc))
                raise SubmissionError(operation.value, str(exc)) from exc

        tx_hash = Web3.to_hex(raw_hash)
        self._logger.info(
            "ledger_tx_broadcast",
            operation=operation.value,
            tx_hash=tx_hash,
            gas_estimate=estimate,
            gas_limit=gas_limit,
            nonce=nonce,
        )
        return await self.poll(tx_hash, operation=operation)

    async def poll(
        self,
        tx_hash: str,
        operation: LedgerOperation | None = None,
        timeout: float | None = None,
    ) -> Receipt:
        """
        Wait for an already-broadcast transaction. Safe to call repeatedly.
        """
        w3 = self._require_web3()
        op_name = operation.value if operation else "transaction"
        wait_s = timeout if timeout is not None else self._config.confirmation_timeout_s

        try:
            raw = await w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=wait_s,
                poll_latency=self._config.poll_interval_s,
            )
        except TimeExhausted as exc:
            self._logger.warning("ledger_confirmation_timeout", operation=op_name, tx_hash=tx_hash)
            raise ConfirmationError(op_name, tx_hash, wait_s) from exc
        except Exception as exc:
            # Lost contact while waiting: the transaction may still land
            self._logger.warning(
                "ledger_confirmation_interrupted",
                operation=op_name,
                tx_hash=tx_hash,
                error=str(exc),
            )
            raise ConfirmationError(op_name, tx_hash, wait_s) from exc

        receipt = Receipt(
            tx_hash=tx_hash,
            status=int(raw["status"]),
            operation=op_name,
            gas_used=raw.get("gasUsed"),
            block_number=raw.get("blockNumber"),
            token_id=self._minted_token_id(raw) if operation in _MINTING_OPERATIONS else None,
        )
        if not receipt.succeeded:
            self._logger.error("ledger_tx_reverted", operation=op_name, tx_hash=tx_hash)
            raise SubmissionError(op_name, "transaction reverted on chain", tx_hash=tx_hash)

        self._logger.info(
            "ledger_tx_confirmed",
            operation=op_name,
            tx_hash=tx_hash,
            gas_used=receipt.gas_used,
            token_id=receipt.token_id,
        )
        return receipt

    # ── Properties ────────────────────────────────────────────

    @property
    def signer_address(self) -> str:
        return self._require_account().address.lower()

    # ── Internal helpers ──────────────────────────────────────

    def _encode_args(self, operation: LedgerOperation, args: Sequence[Any]) -> list[Any]:
        expected = _ARITY[operation]
        if len(args) != expected:
            raise ValueError(f"{operation.value} takes {expected} argument(s), got {len(args)}")
        encoded = list(args)
        for i in _ADDRESS_ARGS.get(operation, ()):
            encoded[i] = to_checksum(encoded[i] or ZERO_ADDRESS)
        if operation is LedgerOperation.REVOKE:
            encoded[0] = int(encoded[0])
        return encoded

    def _minted_token_id(self, raw_receipt: Any) -> int | None:
        contract = self._require_contract()
        events = contract.events.Transfer().process_receipt(raw_receipt, errors=DISCARD)
        token_id: int | None = None
        for event in events:
            token_id = int(event["args"]["tokenId"])
        return token_id

    def _require_web3(self) -> AsyncWeb3:
        if self._w3 is None:
            raise RuntimeError("LedgerClient not connected. Call connect() first.")
        return self._w3

    def _require_contract(self) -> AsyncContract:
        if self._contract is None:
            raise RuntimeError("LedgerClient not connected. Call connect() first.")
        return self._contract

    def _require_account(self) -> LocalAccount:
        if self._account is None:
            raise RuntimeError("No signer loaded. Call connect() first.")
        return self._account
