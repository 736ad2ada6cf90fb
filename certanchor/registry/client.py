"""
Async client for the on-chain document registry.

issue() writes a record and waits for its confirmation; lookup() reads
one back. Every failure is raised as a RegistryError whose kind tells the
caller what went wrong (no contract, no funds, duplicate id, timeout...).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp
from eth_abi.exceptions import InsufficientDataBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3Exception,
)

from certanchor.config import Settings, get_settings
from certanchor.document.hashing import is_bytes32_hex
from certanchor.exceptions import InputError, RegistryError, RegistryErrorKind
from certanchor.models import DocumentRecord
from certanchor.registry.abi import ISSUE_FUNCTION, REGISTRY_ABI, VERIFY_FUNCTION, decode_record
from certanchor.registry.session import LocalAccountSession, SigningSession
from certanchor.utils.logging import fingerprint

logger = logging.getLogger(__name__)

RPC_REQUEST_TIMEOUT = 30


@dataclass
class IssuanceRequest:
    """Arguments of one issueDocument call."""
    document_id: str
    doc_hash: str  # 0x + 64 hex
    doc_type: str
    issuer: str
    subject: str = ""
    metadata_uri: str = ""
    valid_until: int = 0
    title: str = ""
    role_or_program: str = ""
    id_number: str = ""

    def as_args(self) -> tuple:
        return (
            self.document_id,
            self.doc_hash,
            self.doc_type,
            self.issuer,
            self.subject,
            self.metadata_uri,
            self.valid_until,
            self.title,
            self.role_or_program,
            self.id_number,
        )


@dataclass
class TransactionReceipt:
    tx_hash: str
    block_number: Optional[int]
    gas_used: Optional[int]
    status: int


def _error_text(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message if isinstance(message, str) else str(message)


def classify_registry_failure(exc: BaseException, context: str = "") -> RegistryError:
    """
    Map a web3 / transport exception to a RegistryError.

    Wallet-style messages ("user rejected", "insufficient funds",
    "nonce too high") are recognised regardless of the exception type.
    """
    if isinstance(exc, RegistryError):
        return exc

    text = _error_text(exc)
    lowered = text.lower()
    prefix = f"{context}: " if context else ""

    if isinstance(exc, PermissionError) or "user rejected" in lowered or "user denied" in lowered:
        return RegistryError("Transaction was rejected by user", kind=RegistryErrorKind.USER_DECLINED)
    if "insufficient funds" in lowered:
        return RegistryError(
            "Insufficient balance for transaction fees",
            kind=RegistryErrorKind.INSUFFICIENT_FUNDS,
        )
    if "nonce too high" in lowered or "nonce too low" in lowered:
        return RegistryError(
            f"Transaction nonce error: {text}",
            kind=RegistryErrorKind.NONCE,
        )
    if isinstance(exc, ContractLogicError):
        return RegistryError(f"{prefix}{text}", kind=RegistryErrorKind.REJECTED)
    if isinstance(exc, (BadFunctionCallOutput, InsufficientDataBytes)):
        return RegistryError(f"{prefix}{text}", kind=RegistryErrorKind.MALFORMED_RESPONSE)
    if isinstance(exc, (TimeExhausted, asyncio.TimeoutError)):
        return RegistryError(f"{prefix}registry request timed out", kind=RegistryErrorKind.TIMEOUT)
    if isinstance(exc, (ProviderConnectionError, aiohttp.ClientError, ConnectionError, OSError)):
        return RegistryError(f"{prefix}cannot reach registry node: {text}", kind=RegistryErrorKind.CONNECTIVITY)
    if isinstance(exc, Web3Exception):
        return RegistryError(f"{prefix}{text}", kind=RegistryErrorKind.REJECTED)
    return RegistryError(f"{prefix}{text}", kind=RegistryErrorKind.CONNECTIVITY)


class RegistryClient:
    """
    Registry access over an AsyncWeb3 connection.

    Args:
        w3: Connected AsyncWeb3 instance
        contract_address: Registry contract address
        session: Signer for issue(); lookups work without one
        tx_timeout: Seconds to wait for a transaction to be mined
        gas_limit: Gas limit attached to issueDocument transactions
        chain_id: Chain id stamped into transactions (replay protection)
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        session: Optional[SigningSession] = None,
        tx_timeout: float = 60.0,
        gas_limit: int = 300_000,
        chain_id: Optional[int] = None,
    ):
        self.w3 = w3
        self.session = session
        self.tx_timeout = tx_timeout
        self.gas_limit = gas_limit
        self.chain_id = chain_id
        self._raw_address = contract_address or ""
        self._contract = None

    @property
    def contract_address(self) -> str:
        return self._raw_address

    def _get_contract(self):
        if self._contract is None:
            if not self._raw_address:
                raise RegistryError(
                    "Contract address not configured. Set CONTRACT_ADDRESS.",
                    kind=RegistryErrorKind.CONTRACT_NOT_DEPLOYED,
                )
            try:
                address = AsyncWeb3.to_checksum_address(self._raw_address)
            except ValueError as e:
                raise RegistryError(
                    f"Invalid contract address '{self._raw_address}'",
                    kind=RegistryErrorKind.CONTRACT_NOT_DEPLOYED,
                ) from e
            self._contract = self.w3.eth.contract(address=address, abi=REGISTRY_ABI)
        return self._contract

    async def _ensure_deployed(self, contract) -> None:
        try:
            code = await self.w3.eth.get_code(contract.address)
        except Exception as e:
            raise classify_registry_failure(e, "eth_getCode") from e
        if not code or bytes(code) == b"":
            raise RegistryError(
                f"No contract found at address {contract.address}. Please verify the contract is deployed.",
                kind=RegistryErrorKind.CONTRACT_NOT_DEPLOYED,
            )

    async def issue(self, request: IssuanceRequest) -> TransactionReceipt:
        """
        Anchor one document.

        Not idempotent: calling twice with the same id is rejected by the
        contract (surfaced here as kind=rejected from the gas pre-flight).
        On timeout the transaction may still be mined later.
        """
        if not is_bytes32_hex(request.doc_hash):
            raise RegistryError(
                "Invalid file hash format. Expected 32-byte hex string.",
                kind=RegistryErrorKind.INVALID_HASH,
            )
        if not request.document_id or not request.issuer:
            raise InputError("Missing required contract parameters: id, fileHash, or issuer")

        if self.session is None:
            raise RegistryError(
                "No signing session available for registry writes",
                kind=RegistryErrorKind.UNAUTHORIZED,
            )
        sender = self.session.address

        contract = self._get_contract()

        try:
            balance = await self.w3.eth.get_balance(sender)
        except Exception as e:
            raise classify_registry_failure(e, "eth_getBalance") from e
        if balance == 0:
            raise RegistryError(
                "Insufficient balance for transaction fees",
                kind=RegistryErrorKind.INSUFFICIENT_FUNDS,
            )

        await self._ensure_deployed(contract)

        call = getattr(contract.functions, ISSUE_FUNCTION)(*request.as_args())

        try:
            gas_estimate = await call.estimate_gas({"from": sender})
        except Exception as e:
            failure = classify_registry_failure(e, "Transaction would fail")
            logger.warning(f"Gas pre-flight failed for {request.document_id}: {failure.message}")
            raise failure from e
        logger.debug(f"Gas estimate for {request.document_id}: {gas_estimate}")

        try:
            nonce = await self.w3.eth.get_transaction_count(sender, "pending")
            tx_params = {"from": sender, "nonce": nonce, "gas": self.gas_limit}
            if self.chain_id is not None:
                tx_params["chainId"] = self.chain_id
            tx = await call.build_transaction(tx_params)
        except Exception as e:
            raise classify_registry_failure(e, "build transaction") from e

        try:
            raw_tx = self.session.sign_transaction(tx)
        except Exception as e:
            raise classify_registry_failure(e, "sign transaction") from e

        try:
            tx_hash_bytes = await self.w3.eth.send_raw_transaction(raw_tx)
        except Exception as e:
            raise classify_registry_failure(e, "send transaction") from e
        tx_hash = AsyncWeb3.to_hex(tx_hash_bytes)
        logger.info(f"Registry transaction sent for {request.document_id}: {tx_hash} (from fp={fingerprint(sender)})")

        try:
            receipt = await asyncio.wait_for(
                self.w3.eth.wait_for_transaction_receipt(tx_hash_bytes, timeout=self.tx_timeout + 1),
                timeout=self.tx_timeout,
            )
        except (asyncio.TimeoutError, TimeExhausted) as e:
            raise RegistryError(
                f"Transaction timeout after {self.tx_timeout:.0f} seconds",
                kind=RegistryErrorKind.TIMEOUT,
                tx_hash=tx_hash,
            ) from e
        except Exception as e:
            failure = classify_registry_failure(e, "wait for receipt")
            raise RegistryError(failure.message, kind=failure.registry_kind, tx_hash=tx_hash) from e

        status = int(receipt.get("status", 0))
        if status != 1:
            raise RegistryError(
                f"Transaction {tx_hash} reverted",
                kind=RegistryErrorKind.REVERTED,
                tx_hash=tx_hash,
            )

        logger.info(f"Registry transaction confirmed for {request.document_id} in block {receipt.get('blockNumber')}")
        return TransactionReceipt(
            tx_hash=tx_hash,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
            status=status,
        )

    async def lookup(self, document_id: str) -> DocumentRecord:
        """
        Read a record. Unknown ids come back as the all-zero sentinel record,
        which the classifier reports as not_found.
        """
        contract = self._get_contract()
        try:
            raw = await getattr(contract.functions, VERIFY_FUNCTION)(document_id).call()
        except Exception as e:
            raise classify_registry_failure(e, f"lookup '{document_id}'") from e
        return decode_record(document_id, raw)

    async def ping(self) -> dict:
        """Connectivity diagnostics for health checks."""
        try:
            chain_id = await self.w3.eth.chain_id
            block = await self.w3.eth.block_number
        except Exception as e:
            raise classify_registry_failure(e, "health check") from e

        contract = self._get_contract()
        await self._ensure_deployed(contract)
        return {
            "chain_id": chain_id,
            "block_number": block,
            "contract_address": contract.address,
            "signer_configured": self.session is not None,
        }


def create_registry_client(settings: Settings) -> RegistryClient:
    """Build a client from settings; issuance needs REGISTRY_PRIVATE_KEY."""
    provider = AsyncHTTPProvider(
        settings.rpc_url,
        request_kwargs={"timeout": aiohttp.ClientTimeout(total=RPC_REQUEST_TIMEOUT)},
    )
    w3 = AsyncWeb3(provider)
    session = LocalAccountSession(settings.registry_private_key) if settings.registry_private_key else None
    if session is None:
        logger.warning("REGISTRY_PRIVATE_KEY not set: registry client is read-only")
    return RegistryClient(
        w3=w3,
        contract_address=settings.contract_address,
        session=session,
        tx_timeout=settings.tx_timeout_seconds,
        gas_limit=settings.gas_limit,
        chain_id=settings.chain_id,
    )


# Singleton instance
_registry_client: Optional[RegistryClient] = None


def get_registry_client() -> RegistryClient:
    """Get the registry client singleton."""
    global _registry_client
    if _registry_client is None:
        _registry_client = create_registry_client(get_settings())
    return _registry_client
