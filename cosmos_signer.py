"""
Pluggable secp256k1 signers (crypto providers) for Cosmos transactions.

Implements:
- CryptoProvider: abstract interface over digest signing and key identity
- SoftwareCryptoProvider: key material derived in-process from a mnemonic
- RemoteCryptoProvider: signing delegated to an HTTP signer service

A provider is a throw-away object mapped to exactly one keypair: create a
new instance for every key you need.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import coincurve
import requests
from coincurve.ecdsa import cdata_to_der, deserialize_compact

from cosmos_address import EC_PUBKEY_LEN, bech32_address, bech32_amino_pubkey
from cosmos_derivation import (
    COSMOS_DERIVATION_PATH,
    ExtendedKey,
    compressed_public_key,
    derive_from_mnemonic,
    generate_mnemonic,
    neuter,
)
from cosmos_errors import (
    ArgumentLengthInvalid,
    PublicKeyUnavailable,
    SigningFailed,
)

logger = logging.getLogger("cosmos_signer")

DIGEST_LEN = 32


@dataclass(frozen=True)
class ProviderSignature:
    """Raw secp256k1 ECDSA signature components, big-endian."""

    r: bytes
    s: bytes

    def compact(self) -> bytes:
        """r || s, each left-padded to 32 bytes."""
        return self.r.rjust(32, b"\x00") + self.s.rjust(32, b"\x00")


def verify_digest_signature(public_key: bytes, digest: bytes, signature: bytes) -> bool:
    """Check a 64-byte compact r || s signature over a 32-byte digest."""
    if len(signature) != 64 or len(digest) != DIGEST_LEN:
        return False
    try:
        der = cdata_to_der(deserialize_compact(signature))
        return coincurve.PublicKey(public_key).verify(der, digest, hasher=None)
    except ValueError:
        return False


class CryptoProvider(ABC):
    """
    Capability set every signing backend must offer.

    Concurrency: an instance may be shared between threads for signing only
    if its sign_digest is reentrant (a pure function of the digest and the
    fixed key). Otherwise callers must serialize access to the instance,
    e.g. with a threading.Lock.
    """

    @abstractmethod
    def sign_digest(self, digest: bytes) -> ProviderSignature:
        """Sign a 32-byte digest; raise SigningFailed on failure."""

    @abstractmethod
    def public_key(self) -> bytes:
        """33-byte compressed public key; raise PublicKeyUnavailable on failure."""

    @abstractmethod
    def address(self) -> bytes:
        """Bech32 account address for the provider's key, as bytes."""

    @abstractmethod
    def bech32_public_key(self) -> str:
        """Amino Bech32 public key string for the provider's hrp."""


# ---------------------------------------------------------------------------
# Software provider
# ---------------------------------------------------------------------------


class SoftwareCryptoProvider(CryptoProvider):
    """
    In-process signer holding one BIP-32 derived keypair.

    Signing is RFC 6979 deterministic and stateless, so one instance can
    sign from several threads at once.
    """

    def __init__(self, key: ExtendedKey, path: str, hrp: str, address: str) -> None:
        self._key = key
        self._public = neuter(key)
        self.path = path
        self.hrp = hrp
        self._address = address
        self.generated_mnemonic: str | None = None

    @classmethod
    def derive(
        cls,
        mnemonic: str = "",
        path: str = COSMOS_DERIVATION_PATH,
        hrp: str = "cosmos",
    ) -> SoftwareCryptoProvider:
        """
        Derive a provider from mnemonic, path and hrp.

        When mnemonic is empty a fresh 12-word mnemonic is generated and
        made available once through the generated_mnemonic attribute.
        """
        generated = None
        if not mnemonic:
            generated = generate_mnemonic()
            mnemonic = generated

        key, address = derive_from_mnemonic(hrp, mnemonic, path)
        provider = cls(key, path, hrp, address)
        provider.generated_mnemonic = generated
        logger.debug("Derived software provider for %s at %s", address, path)
        return provider

    def sign_digest(self, digest: bytes) -> ProviderSignature:
        if len(digest) != DIGEST_LEN:
            raise ArgumentLengthInvalid(len(digest), DIGEST_LEN)
        try:
            privkey = coincurve.PrivateKey(self._key.PrivateKey().Raw().ToBytes())
            # coincurve returns 65 bytes: [r(32) || s(32) || recovery_id(1)]
            sig = privkey.sign_recoverable(digest, hasher=None)
        except Exception as exc:
            raise SigningFailed(exc) from exc
        return ProviderSignature(r=sig[:32], s=sig[32:64])

    def public_key(self) -> bytes:
        try:
            return compressed_public_key(self._public)
        except Exception as exc:
            raise PublicKeyUnavailable(exc) from exc

    def address(self) -> bytes:
        return self._address.encode("ascii")

    def bech32_public_key(self) -> str:
        return bech32_amino_pubkey(self.public_key(), self.hrp)

    def extended_public_key(self) -> str:
        """Serialized (xpub) neutered extended key."""
        return self._public.PublicKey().ToExtended()

    def extended_private_key(self) -> str:
        """Serialized (xprv) extended private key. Handle with care."""
        return self._key.PrivateKey().ToExtended()


# ---------------------------------------------------------------------------
# Remote signer provider
# ---------------------------------------------------------------------------


class RemoteCryptoProvider(CryptoProvider):
    """
    Signer that keeps the private key in a separate HTTP service.

    Service contract:
      GET  {url}/public_key          -> {"public_key": base64(33 bytes)}
      POST {url}/sign {"digest": b64} -> {"signature": base64(r || s)}

    Every returned signature is verified against the service's public key
    before it is handed back. Each call is an independent request.
    """

    def __init__(self, url: str, hrp: str = "cosmos", timeout: float = 10) -> None:
        self.url = url.rstrip("/")
        self.hrp = hrp
        self.timeout = timeout
        self._public_key: bytes | None = None

    def _get(self, path: str) -> Any:
        resp = requests.get(f"{self.url}{path}", timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def _post(self, path: str, data: Any) -> Any:
        resp = requests.post(f"{self.url}{path}", json=data, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def public_key(self) -> bytes:
        if self._public_key is not None:
            return self._public_key
        try:
            data = self._get("/public_key")
            pubkey = base64.b64decode(data["public_key"], validate=True)
        except Exception as exc:
            raise PublicKeyUnavailable(exc) from exc
        if len(pubkey) != EC_PUBKEY_LEN:
            raise PublicKeyUnavailable(
                f"remote signer returned a {len(pubkey)}-byte public key"
            )
        self._public_key = pubkey
        return pubkey

    def sign_digest(self, digest: bytes) -> ProviderSignature:
        if len(digest) != DIGEST_LEN:
            raise ArgumentLengthInvalid(len(digest), DIGEST_LEN)
        try:
            data = self._post("/sign", {"digest": base64.b64encode(digest).decode("ascii")})
            signature = base64.b64decode(data["signature"], validate=True)
        except Exception as exc:
            raise SigningFailed(exc) from exc

        if len(signature) != 64:
            raise SigningFailed(f"remote signer returned a {len(signature)}-byte signature")
        try:
            pubkey = self.public_key()
        except PublicKeyUnavailable as exc:
            raise SigningFailed(exc) from exc
        if not verify_digest_signature(pubkey, digest, signature):
            raise SigningFailed("remote signature does not verify against the signer's key")

        return ProviderSignature(r=signature[:32], s=signature[32:])

    def address(self) -> bytes:
        return bech32_address(self.public_key(), self.hrp).encode("ascii")

    def bech32_public_key(self) -> str:
        return bech32_amino_pubkey(self.public_key(), self.hrp)
