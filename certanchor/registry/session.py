"""
Signing sessions for registry transactions.

The registry client never holds key material itself; a session is handed
to it explicitly. Any object with an `address` and a
`sign_transaction(tx) -> bytes` method works (hardware wallets, KMS
signers, test doubles).
"""
import logging
from typing import Protocol, runtime_checkable

from eth_account import Account

from certanchor.exceptions import RegistryError, RegistryErrorKind
from certanchor.utils.logging import fingerprint

logger = logging.getLogger(__name__)


@runtime_checkable
class SigningSession(Protocol):
    """An authorised signer for registry transactions."""

    @property
    def address(self) -> str:
        ...

    def sign_transaction(self, tx: dict) -> bytes:
        """Return the raw signed transaction. Raise PermissionError to decline."""
        ...


class LocalAccountSession:
    """Signs with a private key held in process memory."""

    def __init__(self, private_key: str):
        if not private_key:
            raise RegistryError(
                "No signing key configured for the registry",
                kind=RegistryErrorKind.UNAUTHORIZED,
            )
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:  # eth_keys raises its own ValidationError
            raise RegistryError(
                f"Invalid registry signing key: {type(e).__name__}",
                kind=RegistryErrorKind.UNAUTHORIZED,
            ) from e
        logger.info(f"Registry signer loaded (address fp={fingerprint(self._account.address)})")

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: dict) -> bytes:
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)

    def __repr__(self) -> str:
        return f"LocalAccountSession(address={self.address})"
