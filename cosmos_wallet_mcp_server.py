#!/usr/bin/env python3
"""
MCP server for Cosmos SDK wallet operations.

Wraps cosmos_wallet.py and cosmos_lcd.py as MCP tools.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List

from dotenv import load_dotenv
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

REPO_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(REPO_ROOT))
load_dotenv(REPO_ROOT / ".env")

from cosmos_address import decode_bech32_address  # noqa: E402
from cosmos_derivation import COSMOS_DERIVATION_PATH, generate_mnemonic  # noqa: E402
from cosmos_errors import (  # noqa: E402
    CosmosConfigError,
    CosmosWalletError,
    InputError,
    RemoteError,
    TransactionRejected,
)
from cosmos_lcd import LCDClient, TxMode  # noqa: E402
from cosmos_tx import TransactionPayload  # noqa: E402
from cosmos_wallet import CosmosConfig, Wallet, build_wallet  # noqa: E402
from logging_config import setup_logging  # noqa: E402

logger = logging.getLogger("cosmos_wallet_mcp_server")

app = Server("cosmos_wallet")


def _ok_response(data: dict[str, Any]) -> List[TextContent]:
    result = {"success": True, **data}
    return [TextContent(type="text", text=json.dumps(result, default=str))]


def _error_kind(exc: Exception) -> str:
    if isinstance(exc, CosmosConfigError):
        return "config"
    if isinstance(exc, TransactionRejected):
        return "rejected"
    if isinstance(exc, RemoteError):
        return "remote"
    if isinstance(exc, (InputError, ValueError, TypeError)):
        return "input"
    if isinstance(exc, CosmosWalletError):
        return "wallet"
    return "internal"


def _error_response(message: str, kind: str = "input", **extra: Any) -> List[TextContent]:
    result = {"success": False, "error": message, "error_kind": kind, **extra}
    return [TextContent(type="text", text=json.dumps(result, default=str))]


def _exception_response(exc: Exception) -> List[TextContent]:
    kind = _error_kind(exc)
    if kind == "internal":
        logger.exception("Unexpected error in tool handler")
    if isinstance(exc, TransactionRejected):
        return _error_response(str(exc), kind, codespace=exc.codespace, code=exc.code)
    return _error_response(str(exc), kind)


def _parse_tx(raw: Any) -> TransactionPayload:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ValueError("Invalid tx. Must be a JSON object.") from exc
    if not isinstance(raw, dict):
        raise ValueError("Invalid tx. Must be a JSON object.")
    return TransactionPayload.from_dict(raw)


def _require_str(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing {key}.")
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"Invalid {key}. Must be a string.")
    return str(value).strip()


def _load_wallet() -> tuple[CosmosConfig, Wallet]:
    cfg = CosmosConfig.from_env()
    return cfg, build_wallet(cfg)


_TX_SCHEMA = {
    "type": "object",
    "description": (
        "Unsigned transaction: {msg: [...], fee: {amount: [{denom, amount}], gas}, memo}"
    ),
}


@app.list_tools()
async def list_tools() -> List[Tool]:
    return [
        Tool(
            name="cosmos_get_address",
            description="Return the configured wallet's address, bech32 public key and path.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="cosmos_export_wallet",
            description=(
                "Export the configured wallet as JSON. The extended private key is "
                "only included when include_private_key is true."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "include_private_key": {
                        "type": "boolean",
                        "description": "Include the xprv in the export (default false)",
                    },
                },
            },
        ),
        Tool(
            name="cosmos_generate_mnemonic",
            description="Generate a fresh 12-word BIP-39 mnemonic and its first address.",
            inputSchema={
                "type": "object",
                "properties": {
                    "hrp": {"type": "string", "description": "Bech32 prefix (default cosmos)"},
                    "path": {"type": "string", "description": "Derivation path"},
                },
            },
        ),
        Tool(
            name="cosmos_get_node_info",
            description="Return the chain id reported by the LCD node.",
            inputSchema={
                "type": "object",
                "properties": {
                    "lcd_url": {"type": "string", "description": "Override COSMOS_LCD_URL"},
                },
            },
        ),
        Tool(
            name="cosmos_get_account",
            description=(
                "Return account number and sequence for an address "
                "(defaults to the configured wallet)."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "address": {"type": "string", "description": "Bech32 account address"},
                },
            },
        ),
        Tool(
            name="cosmos_sign_transaction",
            description="Sign a transaction offline for an explicit chain and account context.",
            inputSchema={
                "type": "object",
                "properties": {
                    "tx": _TX_SCHEMA,
                    "chain_id": {"type": "string", "description": "Chain id"},
                    "account_number": {"type": "string", "description": "Account number"},
                    "sequence": {"type": "string", "description": "Account sequence"},
                },
                "required": ["tx", "chain_id", "account_number", "sequence"],
            },
        ),
        Tool(
            name="cosmos_broadcast_transaction",
            description=(
                "Sign a transaction with the chain context read from the LCD node and "
                "broadcast it. Requires explicit user confirmation. Dry-run (sign only) "
                "unless dry_run is false or COSMOS_DRY_RUN is disabled."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "tx": _TX_SCHEMA,
                    "mode": {
                        "type": "string",
                        "enum": [m.value for m in TxMode],
                        "description": "Broadcast mode (default COSMOS_BROADCAST_MODE)",
                    },
                    "dry_run": {
                        "type": "boolean",
                        "description": "If true, sign but do not broadcast",
                    },
                },
                "required": ["tx"],
            },
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> List[TextContent]:
    if not isinstance(arguments, dict):
        return _error_response("Invalid arguments. Expected an object.")

    if name == "cosmos_get_address":
        return await _handle_get_address()
    if name == "cosmos_export_wallet":
        return await _handle_export_wallet(arguments)
    if name == "cosmos_generate_mnemonic":
        return await _handle_generate_mnemonic(arguments)
    if name == "cosmos_get_node_info":
        return await _handle_get_node_info(arguments)
    if name == "cosmos_get_account":
        return await _handle_get_account(arguments)
    if name == "cosmos_sign_transaction":
        return await _handle_sign_transaction(arguments)
    if name == "cosmos_broadcast_transaction":
        return await _handle_broadcast_transaction(arguments)

    return _error_response(f"Unknown tool: {name}")


async def _handle_get_address() -> List[TextContent]:
    try:
        cfg, wallet = await asyncio.to_thread(_load_wallet)
        return _ok_response(
            {
                "address": wallet.address,
                "public_key_bech32": wallet.public_key_bech32,
                "hrp": wallet.hrp,
                "path": wallet.path,
                "remote_signer": bool(cfg.remote_signer_url),
            }
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc)


async def _handle_export_wallet(arguments: dict[str, Any]) -> List[TextContent]:
    include_private_key = bool(arguments.get("include_private_key", False))
    try:
        _, wallet = await asyncio.to_thread(_load_wallet)
        if include_private_key:
            exported = await asyncio.to_thread(wallet.export_with_private_key)
        else:
            exported = wallet.export()
        return _ok_response({"wallet": json.loads(exported)})
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc)


async def _handle_generate_mnemonic(arguments: dict[str, Any]) -> List[TextContent]:
    hrp = (arguments.get("hrp") or "cosmos").strip()
    path = (arguments.get("path") or COSMOS_DERIVATION_PATH).strip()
    try:
        mnemonic = await asyncio.to_thread(generate_mnemonic)
        wallet = await asyncio.to_thread(Wallet.from_mnemonic, hrp, mnemonic, path)
        return _ok_response(
            {
                "mnemonic": mnemonic,
                "address": wallet.address,
                "public_key_bech32": wallet.public_key_bech32,
                "hrp": hrp,
                "path": path,
            }
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc)


async def _handle_get_node_info(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        cfg = await asyncio.to_thread(CosmosConfig.from_env)
        lcd_url = (arguments.get("lcd_url") or cfg.lcd_url).strip()
        client = LCDClient(lcd_url, timeout=cfg.request_timeout)
        info = await asyncio.to_thread(client.get_node_info)
        return _ok_response({"chain_id": info.network, "lcd_url": lcd_url})
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc)


async def _handle_get_account(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        cfg = await asyncio.to_thread(CosmosConfig.from_env)
        address = (arguments.get("address") or "").strip()
        if address:
            decode_bech32_address(address)
        else:
            wallet = await asyncio.to_thread(build_wallet, cfg)
            address = wallet.address
        client = LCDClient(cfg.lcd_url, timeout=cfg.request_timeout)
        account = await asyncio.to_thread(client.get_account_data, address)
        return _ok_response(
            {
                "address": account.address,
                "account_number": account.account_number,
                "sequence": account.sequence,
            }
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc)


async def _handle_sign_transaction(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        tx = _parse_tx(arguments.get("tx"))
        chain_id = _require_str(arguments, "chain_id")
        account_number = _require_str(arguments, "account_number")
        sequence = _require_str(arguments, "sequence")

        _, wallet = await asyncio.to_thread(_load_wallet)
        signed = await asyncio.to_thread(wallet.sign, tx, chain_id, account_number, sequence)
        return _ok_response({"signed_tx": signed.to_dict(), "address": wallet.address})
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc)


def _sign_with_chain_context(cfg: CosmosConfig, wallet: Wallet, tx: TransactionPayload) -> dict[str, Any]:
    client = LCDClient(cfg.lcd_url, timeout=cfg.request_timeout)
    node_info = client.get_node_info()
    account = client.get_account_data(wallet.address)
    signed = wallet.sign(tx, node_info.network, account.account_number, account.sequence)
    return {
        "signed_tx": signed.to_dict(),
        "chain_id": node_info.network,
        "account_number": account.account_number,
        "sequence": account.sequence,
    }


async def _handle_broadcast_transaction(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        tx = _parse_tx(arguments.get("tx"))
        cfg, wallet = await asyncio.to_thread(_load_wallet)

        mode = TxMode(arguments.get("mode") or cfg.broadcast_mode)
        dry_run = arguments.get("dry_run")
        if dry_run is None:
            dry_run = cfg.dry_run_default

        if dry_run:
            result = await asyncio.to_thread(_sign_with_chain_context, cfg, wallet, tx)
            return _ok_response({**result, "dry_run": True, "address": wallet.address})

        txhash = await asyncio.to_thread(
            wallet.sign_and_broadcast, tx, cfg.lcd_url, mode, cfg.request_timeout
        )
        return _ok_response(
            {"txhash": txhash, "mode": mode.value, "dry_run": False, "address": wallet.address}
        )
    except Exception as exc:  # noqa: BLE001
        return _exception_response(exc)


def _logging_options() -> dict[str, Any]:
    return {
        "level": os.getenv("COSMOS_LOG_LEVEL", "INFO"),
        "fmt": os.getenv("COSMOS_LOG_FORMAT", "human").strip().lower(),
        "log_file": os.getenv("COSMOS_LOG_FILE") or None,
    }


async def main() -> None:
    setup_logging(**_logging_options())
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
