"""
Error taxonomy for Cosmos wallet, signing and LCD broadcast operations.

Three families let callers tell failures apart:
- InputError: the caller's mnemonic, path or arguments are malformed.
- RemoteError: the LCD node (or remote signer) was unreachable or
  answered with something we could not make sense of.
- TransactionRejected: the node understood the transaction and refused it.

Causes are chained with ``raise ... from exc``; nothing here retries.
"""

from __future__ import annotations


class CosmosWalletError(Exception):
    """Base class for every error raised by the Cosmos wallet modules."""

    pass


class CosmosConfigError(CosmosWalletError):
    """Configuration or key-material error read from the environment."""

    pass


# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------


class InputError(CosmosWalletError):
    """The caller supplied malformed input."""

    pass


class InvalidMnemonic(InputError):
    def __init__(self) -> None:
        super().__init__("invalid mnemonic")


class DerivationPathTooShort(InputError):
    def __init__(self) -> None:
        super().__init__("derivation path string too short")


class DerivationPathMustStartWithM(InputError):
    def __init__(self) -> None:
        super().__init__("derivation path invalid, first character isn't 'm'")


class DerivationComponentNotANumber(InputError):
    def __init__(self, component: str, cause: Exception | None = None) -> None:
        self.component = component
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f'derivation component "{component}" not a number{detail}')


class ArgumentLengthInvalid(InputError):
    def __init__(self, length: int, expected: int) -> None:
        self.length = length
        self.expected = expected
        super().__init__(f"argument length is {length} bytes, must be {expected} bytes")


class HRPEmpty(InputError):
    def __init__(self) -> None:
        super().__init__("hrp is empty")


# ---------------------------------------------------------------------------
# Key material errors
# ---------------------------------------------------------------------------


class KeyGenerationFailed(CosmosWalletError):
    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"cannot derive key: {cause}")


class CouldNotDeriveNeuteredKey(CosmosWalletError):
    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"could not derive neutered public key: {cause}")


class SigningFailed(CosmosWalletError):
    def __init__(self, cause: Exception | str) -> None:
        self.cause = cause
        super().__init__(f"could not sign digest: {cause}")


class PublicKeyUnavailable(CosmosWalletError):
    def __init__(self, cause: Exception | str = "no public key available") -> None:
        self.cause = cause
        super().__init__(f"public key unavailable: {cause}")


# ---------------------------------------------------------------------------
# Remote errors
# ---------------------------------------------------------------------------


class RemoteError(CosmosWalletError):
    """The LCD node was unreachable or malfunctioning."""

    pass


class NodeInfoUnavailable(RemoteError):
    def __init__(self, cause: Exception | str) -> None:
        self.cause = cause
        super().__init__(f"could not get LCD node information: {cause}")


class AccountLookupFailed(RemoteError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"error during get account data: {message}")


class AccountNotOnChain(RemoteError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"account with address {address} is not online")


class ResponseDecodeFailed(RemoteError):
    def __init__(self, cause: Exception | str) -> None:
        self.cause = cause
        super().__init__(f"could not decode LCD response: {cause}")


class BroadcastRejected(RemoteError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"error while processing tx send request: {message}")


# ---------------------------------------------------------------------------
# Transaction rejection
# ---------------------------------------------------------------------------


class TransactionRejected(CosmosWalletError):
    """The node accepted the request but rejected the transaction itself."""

    def __init__(self, codespace: str, code: int, message: str) -> None:
        self.codespace = codespace
        self.code = code
        self.message = message
        super().__init__(f"codespace {codespace}: {message}, code {code}")
