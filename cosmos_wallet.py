"""
Cosmos HD wallet facade and environment configuration.

Ties derivation, signing and broadcasting together around one keypair:
- Wallet.from_mnemonic / Wallet.from_provider
- JSON export, with the private key only on explicit request
- sign / sign_and_broadcast
- CosmosConfig.from_env and build_wallet for the MCP server
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from dotenv import load_dotenv

from cosmos_derivation import (
    COSMOS_DERIVATION_PATH,
    derive_from_mnemonic,
    is_valid_mnemonic,
    parse_derivation_path,
)
from cosmos_errors import CosmosConfigError, CosmosWalletError, InputError
from cosmos_lcd import DEFAULT_TIMEOUT, LCDClient, TxMode
from cosmos_signer import CryptoProvider, RemoteCryptoProvider, SoftwareCryptoProvider
from cosmos_tx import SignedTransactionPayload, TransactionPayload, sign_transaction

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parent
load_dotenv(PROJECT_ROOT / ".env")

logger = logging.getLogger("cosmos_wallet")

DEFAULT_HRP = "cosmos"
DEFAULT_LCD_URL = "http://localhost:1317"


# ---------------------------------------------------------------------------
# Secret handling
# ---------------------------------------------------------------------------


@contextmanager
def ephemeral_buffer(data: bytes) -> Iterator[bytearray]:
    """
    Hold secret bytes in a mutable buffer that is zeroed on exit.

    The wipe runs on every exit path, including exceptions raised inside
    the with-block.
    """
    buf = bytearray(data)
    try:
        yield buf
    finally:
        for i in range(len(buf)):
            buf[i] = 0


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


@dataclass
class Wallet:
    """
    One HD keypair and the identifiers derived from it.

    public_key is the serialized neutered extended key (xpub); it is empty
    for providers that do not expose extended keys, such as remote signers.
    """

    provider: CryptoProvider = field(repr=False, compare=False)
    public_key: str = ""
    public_key_bech32: str = ""
    path: str = ""
    hrp: str = ""
    address: str = ""

    @classmethod
    def from_mnemonic(
        cls,
        hrp: str,
        mnemonic: str,
        path: str = COSMOS_DERIVATION_PATH,
    ) -> Wallet:
        """Derive the wallet for mnemonic at path, encoding addresses with hrp."""
        key, address = derive_from_mnemonic(hrp, mnemonic, path)
        provider = SoftwareCryptoProvider(key, path, hrp, address)
        return cls.from_provider(provider, hrp, path)

    @classmethod
    def from_provider(cls, provider: CryptoProvider, hrp: str, path: str = "") -> Wallet:
        public_key = ""
        if isinstance(provider, SoftwareCryptoProvider):
            public_key = provider.extended_public_key()
            path = path or provider.path

        return cls(
            provider=provider,
            public_key=public_key,
            public_key_bech32=provider.bech32_public_key(),
            path=path,
            hrp=hrp,
            address=provider.address().decode("ascii"),
        )

    def _export_fields(self, private_key: str = "") -> dict[str, str]:
        fields = {
            "public_key": self.public_key,
            "public_key_bech_32": self.public_key_bech32,
            "private_key": private_key,
            "path": self.path,
            "hrp": self.hrp,
            "address": self.address,
        }
        return {k: v for k, v in fields.items() if v}

    def export(self) -> str:
        """JSON description of the wallet; never includes the private key."""
        return json.dumps(self._export_fields(), separators=(",", ":"))

    def export_with_private_key(self) -> str:
        """
        JSON description of the wallet including the extended private key (xprv).

        The caller owns the returned string and is responsible for handling it.
        """
        if not isinstance(self.provider, SoftwareCryptoProvider):
            raise CosmosWalletError(
                f"{type(self.provider).__name__} does not expose private key material"
            )

        with ephemeral_buffer(self.provider.extended_private_key().encode("ascii")) as secret:
            return json.dumps(
                self._export_fields(private_key=secret.decode("ascii")),
                separators=(",", ":"),
            )

    def sign(
        self,
        tx: TransactionPayload,
        chain_id: str,
        account_number: str,
        sequence: str,
    ) -> SignedTransactionPayload:
        """Sign tx offline for an explicit chain and account context."""
        return sign_transaction(tx, chain_id, account_number, sequence, self.provider)

    def sign_and_broadcast(
        self,
        tx: TransactionPayload,
        lcd_endpoint: str,
        mode: TxMode | str = TxMode.SYNC,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> str:
        """Sign tx with the chain context read from lcd_endpoint and broadcast it."""
        client = LCDClient(lcd_endpoint, timeout=timeout)
        return client.sign_and_broadcast(self.provider, tx, mode)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class CosmosConfig:
    """
    Configuration for the Cosmos wallet tools.

    Values are sourced from environment variables or a .env file.

    Key material:
    - COSMOS_MNEMONIC: BIP-39 seed phrase. Required unless a remote signer
      is configured.
    - COSMOS_REMOTE_SIGNER_URL: base URL of a remote signer service; when set,
      signing is delegated to it and no mnemonic is read.
    - COSMOS_HRP: Bech32 human-readable part (default "cosmos").
    - COSMOS_DERIVATION_PATH: BIP-32 path (default m/44'/118'/0'/0/0).

    Network and safety:
    - COSMOS_LCD_URL: LCD REST endpoint (default http://localhost:1317).
    - COSMOS_BROADCAST_MODE: async, sync or block (default sync).
    - COSMOS_REQUEST_TIMEOUT: HTTP timeout in seconds (default 10).
    - COSMOS_DRY_RUN: if true, broadcasts only sign unless explicitly overridden.
    """

    mnemonic: str = field(default="", repr=False)
    hrp: str = DEFAULT_HRP
    derivation_path: str = COSMOS_DERIVATION_PATH
    lcd_url: str = DEFAULT_LCD_URL
    broadcast_mode: TxMode = TxMode.SYNC
    request_timeout: float = DEFAULT_TIMEOUT
    dry_run_default: bool = True
    remote_signer_url: str | None = None

    @classmethod
    def from_env(cls) -> CosmosConfig:
        remote_signer_url = os.getenv("COSMOS_REMOTE_SIGNER_URL", "").strip() or None

        mnemonic = " ".join(os.getenv("COSMOS_MNEMONIC", "").split())
        if not remote_signer_url:
            if not mnemonic:
                raise CosmosConfigError(
                    "No key material configured. Set COSMOS_MNEMONIC (BIP-39 seed phrase) "
                    "or COSMOS_REMOTE_SIGNER_URL in your environment or .env file."
                )
            if not is_valid_mnemonic(mnemonic):
                raise CosmosConfigError(
                    "COSMOS_MNEMONIC is not a valid BIP-39 seed phrase. "
                    "Double-check words and spacing."
                )

        hrp = os.getenv("COSMOS_HRP", DEFAULT_HRP).strip()
        if not hrp:
            raise CosmosConfigError("COSMOS_HRP must not be empty.")

        derivation_path = os.getenv("COSMOS_DERIVATION_PATH", COSMOS_DERIVATION_PATH).strip()
        try:
            parse_derivation_path(derivation_path)
        except InputError as exc:
            raise CosmosConfigError(f"Invalid COSMOS_DERIVATION_PATH: {exc}") from exc

        lcd_url = os.getenv("COSMOS_LCD_URL", DEFAULT_LCD_URL).strip().rstrip("/")
        if not lcd_url.startswith(("http://", "https://")):
            raise CosmosConfigError(
                f"Invalid COSMOS_LCD_URL {lcd_url!r}. Must start with http:// or https://."
            )

        raw_mode = os.getenv("COSMOS_BROADCAST_MODE", TxMode.SYNC.value).strip().lower()
        try:
            broadcast_mode = TxMode(raw_mode)
        except ValueError as exc:
            raise CosmosConfigError(
                f"Invalid COSMOS_BROADCAST_MODE {raw_mode!r}. Use async, sync or block."
            ) from exc

        raw_timeout = os.getenv("COSMOS_REQUEST_TIMEOUT", str(DEFAULT_TIMEOUT)).strip()
        try:
            request_timeout = float(raw_timeout)
        except ValueError as exc:
            raise CosmosConfigError(
                f"Invalid COSMOS_REQUEST_TIMEOUT {raw_timeout!r}. Must be a number of seconds."
            ) from exc
        if request_timeout <= 0:
            raise CosmosConfigError("COSMOS_REQUEST_TIMEOUT must be greater than zero.")

        # Check COSMOS_DRY_RUN environment variable (defaults to True for safety)
        dry_run_env = os.getenv("COSMOS_DRY_RUN", "true").lower()
        dry_run_default = dry_run_env not in ("false", "0", "no", "off")

        return cls(
            mnemonic=mnemonic,
            hrp=hrp,
            derivation_path=derivation_path,
            lcd_url=lcd_url,
            broadcast_mode=broadcast_mode,
            request_timeout=request_timeout,
            dry_run_default=dry_run_default,
            remote_signer_url=remote_signer_url,
        )


def build_provider(cfg: CosmosConfig) -> CryptoProvider:
    """Remote signer when configured, otherwise a software provider from the mnemonic."""
    if cfg.remote_signer_url:
        logger.debug("Using remote signer at %s", cfg.remote_signer_url)
        return RemoteCryptoProvider(cfg.remote_signer_url, hrp=cfg.hrp, timeout=cfg.request_timeout)

    key, address = derive_from_mnemonic(cfg.hrp, cfg.mnemonic, cfg.derivation_path)
    return SoftwareCryptoProvider(key, cfg.derivation_path, cfg.hrp, address)


def build_wallet(cfg: CosmosConfig) -> Wallet:
    provider = build_provider(cfg)
    path = "" if cfg.remote_signer_url else cfg.derivation_path
    return Wallet.from_provider(provider, cfg.hrp, path)
