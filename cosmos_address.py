"""
Bech32 encoding of Cosmos account addresses and public keys.

Implements:
- Account address: bech32(hrp, RIPEMD160(SHA256(compressed_pubkey)))
- Amino public key: bech32(hrp + "pub", amino_prefix || len || compressed_pubkey)

Both are pure functions of their inputs.
"""

from __future__ import annotations

from bip_utils import Bech32Decoder, Bech32Encoder
from bip_utils.utils.crypto import Hash160

from cosmos_errors import ArgumentLengthInvalid, HRPEmpty

EC_PUBKEY_LEN = 33

# Amino registered name for secp256k1 public keys, and its 4-byte prefix
# (sha256 of the name, skipping leading zero bytes, bytes 3..7).
AMINO_PUBKEY_TYPE = "tendermint/PubKeySecp256k1"
AMINO_PUBKEY_PREFIX = bytes.fromhex("eb5ae987")


def _check_args(pubkey: bytes, hrp: str) -> None:
    if len(pubkey) != EC_PUBKEY_LEN:
        raise ArgumentLengthInvalid(len(pubkey), EC_PUBKEY_LEN)
    if not hrp or not hrp.strip():
        raise HRPEmpty()


def _hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    return Hash160.QuickDigest(data)


def amino_pubkey_bytes(pubkey: bytes) -> bytes:
    """Wrap a compressed public key in its binary-bare amino envelope."""
    return AMINO_PUBKEY_PREFIX + bytes([len(pubkey)]) + pubkey


def bech32_address(pubkey: bytes, hrp: str) -> str:
    """
    Return the Bech32 account address for a compressed public key.

    pubkey must be exactly 33 bytes and hrp must not be blank.
    """
    _check_args(pubkey, hrp)
    return Bech32Encoder.Encode(hrp, _hash160(pubkey))


def bech32_amino_pubkey(pubkey: bytes, hrp: str) -> str:
    """
    Return the Bech32 representation of an amino-wrapped public key.

    The human-readable part is hrp + "pub", e.g. "cosmospub1addwnpep...".
    """
    _check_args(pubkey, hrp)
    return Bech32Encoder.Encode(hrp + "pub", amino_pubkey_bytes(pubkey))


def decode_bech32_address(address: str) -> tuple[str, bytes]:
    """
    Split a Bech32 address into its human-readable part and payload.

    Raises ValueError if the separator is missing or the checksum is wrong.
    """
    address = address.strip()
    sep = address.rfind("1")
    if sep < 1:
        raise ValueError(f"Invalid bech32 address: {address!r}")
    hrp = address[:sep]
    try:
        payload = Bech32Decoder.Decode(hrp, address)
    except Exception as exc:
        raise ValueError(f"Invalid bech32 address {address!r}: {exc}") from exc
    return hrp, bytes(payload)
