"""
Cosmos SDK (amino JSON) transaction payloads, sign bytes and signature assembly.

Implements:
- TransactionPayload / SignedTransactionPayload and their wire (dict) form
- Canonical sign bytes: sorted-key, compact JSON of the StdSignDoc
- Signature assembly from a CryptoProvider's raw r || s signature
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from cosmos_address import AMINO_PUBKEY_TYPE
from cosmos_errors import ArgumentLengthInvalid, SigningFailed
from cosmos_signer import CryptoProvider

logger = logging.getLogger("cosmos_tx")

SIGNATURE_COMPONENT_LEN = 32

# Characters the Cosmos SDK escapes in its canonical JSON.
_JSON_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


# ---------------------------------------------------------------------------
# Payload types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Coin:
    denom: str
    amount: str

    def to_dict(self) -> dict[str, str]:
        return {"denom": self.denom, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Coin:
        return cls(denom=str(data.get("denom", "")), amount=str(data.get("amount", "")))


@dataclass(frozen=True)
class Fee:
    """Fee for a transaction; amount=None is encoded as null."""

    amount: list[Coin] | None = None
    gas: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": None if self.amount is None else [c.to_dict() for c in self.amount],
            "gas": self.gas,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Fee:
        data = data or {}
        raw_amount = data.get("amount")
        amount = None if raw_amount is None else [Coin.from_dict(c) for c in raw_amount]
        return cls(amount=amount, gas=str(data.get("gas", "")))


@dataclass(frozen=True)
class SigPubKey:
    type: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "value": self.value}


@dataclass(frozen=True)
class Signature:
    """A signature and the public key it verifies against."""

    pub_key: SigPubKey
    signature: str

    def to_dict(self) -> dict[str, Any]:
        return {"pub_key": self.pub_key.to_dict(), "signature": self.signature}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Signature:
        pk = data.get("pub_key") or {}
        return cls(
            pub_key=SigPubKey(type=str(pk.get("type", "")), value=str(pk.get("value", ""))),
            signature=str(data.get("signature", "")),
        )


@dataclass(frozen=True)
class TransactionPayload:
    """
    Body of a Cosmos transaction.

    msg holds the messages as already-decoded JSON values; on the wire
    they live under the "msg" key. None (not an empty list) encodes as null.
    """

    msg: list[Any] | None = None
    fee: Fee = field(default_factory=Fee)
    signatures: list[Signature] | None = None
    memo: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "msg": None if self.msg is None else list(self.msg),
            "fee": self.fee.to_dict(),
            "signatures": (
                None if self.signatures is None else [s.to_dict() for s in self.signatures]
            ),
            "memo": self.memo,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionPayload:
        raw_msgs = data.get("msg", data.get("msgs"))
        msgs = None
        if raw_msgs is not None:
            msgs = [json.loads(m) if isinstance(m, (str, bytes)) else m for m in raw_msgs]
        raw_sigs = data.get("signatures")
        sigs = None if raw_sigs is None else [Signature.from_dict(s) for s in raw_sigs]
        return cls(
            msg=msgs,
            fee=Fee.from_dict(data.get("fee")),
            signatures=sigs,
            memo=str(data.get("memo", "")),
        )


@dataclass(frozen=True)
class SignedTransactionPayload(TransactionPayload):
    """A TransactionPayload carrying exactly one signature; the only broadcastable type."""

    def __post_init__(self) -> None:
        if not self.signatures or len(self.signatures) != 1:
            raise ValueError("A signed transaction must carry exactly one signature.")


# ---------------------------------------------------------------------------
# Sign bytes
# ---------------------------------------------------------------------------


def _normalize_numbers(obj: Any) -> Any:
    """Write integral floats as integers, the way the Cosmos SDK re-encodes JSON numbers."""
    if isinstance(obj, float) and obj.is_integer() and abs(obj) < 1e21:
        return int(obj)
    if isinstance(obj, dict):
        return {key: _normalize_numbers(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize_numbers(value) for value in obj]
    return obj


def canonical_json(obj: Any) -> bytes:
    """
    Serialize obj with object keys sorted at every level and no whitespace.

    Arrays keep their order. HTML-sensitive characters are escaped the way
    the Cosmos SDK escapes them in its canonical JSON. Integral floats are
    written as integers; other non-integral numbers keep Python's shortest
    repr, so amino messages should carry amounts as strings.

    Raises ValueError for NaN, infinities and text that is not valid UTF-8
    (lone surrogates).
    """
    text = json.dumps(
        _normalize_numbers(obj),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    for char, escaped in _JSON_HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValueError(f"sign bytes are not valid UTF-8: {exc.reason}") from exc


def sign_bytes(
    tx: TransactionPayload,
    chain_id: str,
    account_number: str,
    sequence: str,
) -> bytes:
    """
    Build the canonical bytes to sign for tx in the given account context.

    The messages move from the payload's "msg" key to the sign doc's "msgs".
    """
    sign_doc = {
        "account_number": account_number,
        "chain_id": chain_id,
        "fee": tx.fee.to_dict(),
        "memo": tx.memo,
        "msgs": None if tx.msg is None else list(tx.msg),
        "sequence": sequence,
    }
    return canonical_json(sign_doc)


def sign_digest(data: bytes) -> bytes:
    """SHA-256 of the sign bytes; the value actually signed."""
    return hashlib.sha256(data).digest()


# ---------------------------------------------------------------------------
# Signature assembly
# ---------------------------------------------------------------------------


def _fixed_width(component: bytes, name: str) -> bytes:
    if len(component) > SIGNATURE_COMPONENT_LEN:
        raise SigningFailed(
            f"signature component {name} is {len(component)} bytes, "
            f"expected at most {SIGNATURE_COMPONENT_LEN}"
        )
    return component.rjust(SIGNATURE_COMPONENT_LEN, b"\x00")


def assemble_signed_transaction(
    tx: TransactionPayload,
    digest: bytes,
    provider: CryptoProvider,
) -> SignedTransactionPayload:
    """
    Sign digest with provider and attach the result to a copy of tx.

    The signature is base64(r || s) with no DER wrapping; the public key is
    the base64 of the provider's compressed key. tx is left untouched.
    """
    if len(digest) != 32:
        raise ArgumentLengthInvalid(len(digest), 32)

    raw = provider.sign_digest(digest)
    rs = _fixed_width(raw.r, "r") + _fixed_width(raw.s, "s")
    pubkey = provider.public_key()

    signature = Signature(
        pub_key=SigPubKey(
            type=AMINO_PUBKEY_TYPE,
            value=base64.b64encode(pubkey).decode("ascii"),
        ),
        signature=base64.b64encode(rs).decode("ascii"),
    )

    return SignedTransactionPayload(
        msg=None if tx.msg is None else list(tx.msg),
        fee=tx.fee,
        signatures=[signature],
        memo=tx.memo,
    )


def sign_transaction(
    tx: TransactionPayload,
    chain_id: str,
    account_number: str,
    sequence: str,
    provider: CryptoProvider,
) -> SignedTransactionPayload:
    """Sign tx for (chain_id, account_number, sequence) with provider."""
    data = sign_bytes(tx, chain_id, account_number, sequence)
    logger.debug(
        "Signing %d sign bytes for chain %s account %s sequence %s",
        len(data), chain_id, account_number, sequence,
    )
    return assemble_signed_transaction(tx, sign_digest(data), provider)
