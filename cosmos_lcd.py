"""
Cosmos LCD (REST) client: node info, account lookup and transaction broadcast.

Implements:
- GET  /node_info               -> chain id
- GET  /auth/accounts/{address} -> account number and sequence
- POST /txs                     -> broadcast a signed transaction
- Interpretation of the broadcast response, including recovery of a
  readable error message from the several log formats nodes emit.

Account number and sequence are fetched on every broadcast and never
cached: the sequence moves after each accepted transaction.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import requests

from cosmos_errors import (
    AccountLookupFailed,
    AccountNotOnChain,
    BroadcastRejected,
    NodeInfoUnavailable,
    ResponseDecodeFailed,
    TransactionRejected,
)
from cosmos_signer import CryptoProvider
from cosmos_tx import SignedTransactionPayload, TransactionPayload, sign_transaction

logger = logging.getLogger("cosmos_lcd")

DEFAULT_TIMEOUT = 10


class TxMode(str, Enum):
    """When the LCD replies to a broadcast."""

    # Return immediately, without waiting for CheckTx.
    ASYNC = "async"
    # Wait for CheckTx (mempool admission), not for block inclusion.
    SYNC = "sync"
    # Wait for the tx to be committed in a block. Slow; not recommended.
    BLOCK = "block"

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeInfo:
    network: str


@dataclass(frozen=True)
class AccountData:
    address: str
    account_number: str
    sequence: str


@dataclass(frozen=True)
class RawLog:
    """Structured error object some nodes put in raw_log or per-message logs."""

    codespace: str
    code: int
    message: str


@dataclass(frozen=True)
class MessageLog:
    msg_index: int
    success: bool
    log: str
    events: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class TxResponse:
    height: str = ""
    txhash: str = ""
    code: int = 0
    data: str = ""
    raw_log: str = ""
    logs: list[MessageLog] = field(default_factory=list)
    info: str = ""
    gas_wanted: str = ""
    gas_used: str = ""
    codespace: str = ""
    tx: Any = None
    timestamp: str = ""
    events: list[Any] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Zero result code and every per-message log reports success."""
        return self.code == 0 and all(entry.success for entry in self.logs)

    @classmethod
    def from_dict(cls, data: Any) -> TxResponse:
        """Build a TxResponse, raising ValueError on shape or type mismatches."""
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")

        code = data.get("code") or 0
        if isinstance(code, bool) or not isinstance(code, int) or code < 0:
            raise ValueError(f"invalid result code: {code!r}")

        raw_logs = data.get("logs") or []
        if not isinstance(raw_logs, list):
            raise ValueError("logs must be a list")
        logs = []
        for entry in raw_logs:
            if not isinstance(entry, dict):
                raise ValueError("log entries must be objects")
            success = entry.get("success", False)
            if not isinstance(success, bool):
                raise ValueError(f"invalid success flag: {success!r}")
            logs.append(
                MessageLog(
                    msg_index=int(entry.get("msg_index") or 0),
                    success=success,
                    log=_as_str(entry.get("log")),
                    events=list(entry.get("events") or []),
                )
            )

        return cls(
            height=_as_str(data.get("height")),
            txhash=_as_str(data.get("txhash")),
            code=code,
            data=_as_str(data.get("data")),
            raw_log=_as_str(data.get("raw_log")),
            logs=logs,
            info=_as_str(data.get("info")),
            gas_wanted=_as_str(data.get("gas_wanted")),
            gas_used=_as_str(data.get("gas_used")),
            codespace=_as_str(data.get("codespace")),
            tx=data.get("tx"),
            timestamp=_as_str(data.get("timestamp")),
            events=list(data.get("events") or []),
        )


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ValueError(f"expected a scalar, got {type(value).__name__}")
    return str(value)


# ---------------------------------------------------------------------------
# Error log interpretation
# ---------------------------------------------------------------------------


def parse_raw_log(text: str) -> RawLog | None:
    """
    Decode text as a {codespace, code, message} object.

    Returns None when text is not such an object.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    message = data.get("message")
    codespace = data.get("codespace", "")
    code = data.get("code", 0)
    if not isinstance(message, str) or not isinstance(codespace, str):
        return None
    if isinstance(code, bool) or not isinstance(code, int):
        return None
    return RawLog(codespace=codespace, code=code, message=message)


def _message_from_raw_log(resp: TxResponse) -> str | None:
    parsed = parse_raw_log(resp.raw_log)
    return parsed.message if parsed is not None else None


def _message_from_entry_logs(resp: TxResponse) -> str | None:
    if not resp.logs:
        return None
    messages = []
    for entry in resp.logs:
        parsed = parse_raw_log(entry.log)
        if parsed is None:
            return None
        messages.append(parsed.message)
    return ", ".join(messages)


def _message_from_raw_text(resp: TxResponse) -> str | None:
    return resp.raw_log


# Tried in order; the first attempt that returns a message wins.
REJECTION_MESSAGE_ATTEMPTS: tuple[Callable[[TxResponse], str | None], ...] = (
    _message_from_raw_log,
    _message_from_entry_logs,
    _message_from_raw_text,
)


def rejection_message(resp: TxResponse) -> str:
    """Best human-readable reason for a rejected transaction."""
    for attempt in REJECTION_MESSAGE_ATTEMPTS:
        message = attempt(resp)
        if message is not None:
            return message
    return resp.raw_log


def check_tx_response(resp: TxResponse) -> str:
    """Return the tx hash if resp reports success, else raise TransactionRejected."""
    if resp.succeeded:
        return resp.txhash

    codespace = resp.codespace
    if not codespace:
        parsed = parse_raw_log(resp.raw_log)
        if parsed is not None:
            codespace = parsed.codespace

    raise TransactionRejected(codespace=codespace, code=resp.code, message=rejection_message(resp))


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _is_success(resp: requests.Response) -> bool:
    return 200 <= resp.status_code < 300


def _decode_json(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise ResponseDecodeFailed(exc) from exc


def _decode_error_body(resp: requests.Response) -> str:
    """Extract the message of an LCD {"error": "..."} body."""
    body = _decode_json(resp)
    if not isinstance(body, dict):
        raise ResponseDecodeFailed(f"HTTP {resp.status_code}: unexpected error body {body!r}")
    return _as_error_text(body.get("error") or body.get("message") or "")


def _as_error_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LCDClient:
    """Synchronous client for one LCD endpoint."""

    def __init__(self, endpoint: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout

    def get_node_info(self) -> NodeInfo:
        """Return the node's network (chain id)."""
        url = f"{self.endpoint}/node_info"
        try:
            resp = requests.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NodeInfoUnavailable(exc) from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise NodeInfoUnavailable(exc) from exc

        if not _is_success(resp):
            error = data.get("error") if isinstance(data, dict) else None
            raise NodeInfoUnavailable(f"HTTP {resp.status_code}: {error or resp.text}")

        info = data.get("node_info") if isinstance(data, dict) else None
        network = info.get("network") if isinstance(info, dict) else None
        if not isinstance(network, str) or not network:
            raise NodeInfoUnavailable("response carries no node_info.network")

        return NodeInfo(network=network)

    def get_account_data(self, address: str) -> AccountData:
        """Return account number and sequence for address."""
        url = f"{self.endpoint}/auth/accounts/{address}"
        try:
            resp = requests.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise AccountLookupFailed(str(exc)) from exc

        if not _is_success(resp):
            raise AccountLookupFailed(_decode_error_body(resp))

        data = _decode_json(resp)
        try:
            if not isinstance(data, dict):
                raise TypeError(f"unexpected account body {data!r}")
            # A null or missing result/value decodes to an empty account.
            result = data.get("result") or {}
            value = result.get("value") or {}
            account = AccountData(
                address=_as_str(value.get("address")),
                account_number=_as_str(value.get("account_number")),
                sequence=_as_str(value.get("sequence")),
            )
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ResponseDecodeFailed(exc) from exc

        # The LCD answers 200 with an empty account for addresses it has never seen.
        if not account.address:
            raise AccountNotOnChain(address)

        return account

    def broadcast_tx(self, tx: SignedTransactionPayload, mode: TxMode | str = TxMode.SYNC) -> str:
        """
        Submit a signed transaction and return its hash.

        Resubmitting a transaction that was already accepted fails with a
        sequence mismatch, surfaced as TransactionRejected.
        """
        if not isinstance(tx, SignedTransactionPayload):
            raise TypeError("Only a SignedTransactionPayload can be broadcast.")
        mode = TxMode(mode)

        url = f"{self.endpoint}/txs"
        body = {"tx": tx.to_dict(), "mode": mode.value}
        try:
            resp = requests.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise BroadcastRejected(str(exc)) from exc

        if not _is_success(resp):
            raise BroadcastRejected(_decode_error_body(resp))

        data = _decode_json(resp)
        try:
            tx_response = TxResponse.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise ResponseDecodeFailed(exc) from exc

        try:
            return check_tx_response(tx_response)
        except TransactionRejected as exc:
            logger.warning(
                "Transaction rejected (codespace=%s code=%s): %s",
                exc.codespace, exc.code, exc.message,
            )
            raise

    def sign_and_broadcast(
        self,
        provider: CryptoProvider,
        tx: TransactionPayload,
        mode: TxMode | str = TxMode.SYNC,
    ) -> str:
        """
        Fetch chain id and account context, sign tx with provider and submit it.

        Steps run strictly in order; nothing is retried.
        """
        address = provider.address().decode("ascii")

        node_info = self.get_node_info()
        account = self.get_account_data(address)
        logger.info(
            "Signing for %s on %s (account %s, sequence %s)",
            address, node_info.network, account.account_number, account.sequence,
        )

        signed = sign_transaction(
            tx,
            node_info.network,
            account.account_number,
            account.sequence,
            provider,
        )

        txhash = self.broadcast_tx(signed, mode)
        logger.info("Broadcast %s accepted in %s mode", txhash, TxMode(mode).value)
        return txhash
