"""Unit tests for the Cosmos wallet MCP tools."""

import asyncio
import json
import sys
from pathlib import Path

import requests

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import cosmos_lcd  # noqa: E402
import cosmos_wallet_mcp_server as server  # noqa: E402
from cosmos_derivation import is_valid_mnemonic  # noqa: E402
from cosmos_lcd import TxMode  # noqa: E402
from cosmos_wallet import CosmosConfig  # noqa: E402

REFERENCE_MNEMONIC = (
    "final random flame cinnamon grunt hazard easily mutual resist pond solution "
    "define knife female tongue crime atom jaguar alert library best forum lesson rigid"
)
REFERENCE_ADDRESS = "cosmos1huydeevpz37sd9snkgul6070mstupukw00xkw9"

UNSIGNED_TX = {
    "msg": [
        {
            "type": "cosmos-sdk/MsgSend",
            "value": {
                "from_address": REFERENCE_ADDRESS,
                "to_address": "cosmos1kulfxlg33x9lmxa00gmmaq6j3nshtpnr0wfmdh",
                "amount": [{"denom": "uatom", "amount": "10"}],
            },
        }
    ],
    "fee": {"amount": [{"denom": "uatom", "amount": "500"}], "gas": "200000"},
    "memo": "",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_cfg(**overrides):
    values = {
        "mnemonic": REFERENCE_MNEMONIC,
        "lcd_url": "http://lcd.local:1317",
        "dry_run_default": True,
    }
    values.update(overrides)
    cfg = CosmosConfig(**values)
    return lambda cls: cfg


def _use_cfg(monkeypatch, **overrides):
    monkeypatch.setattr(
        server,
        "CosmosConfig",
        type("CosmosConfig", (), {"from_env": classmethod(_make_cfg(**overrides))}),
    )


def _parse(response):
    return json.loads(response[0].text)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload)

    def json(self):
        return self._payload


class FakeLCD:
    def __init__(self, broadcast=None):
        self.broadcast = broadcast or {"height": "0", "txhash": "C0FFEE", "code": 0}
        self.posted = []

    def get(self, url, timeout=None):
        if url.endswith("/node_info"):
            return FakeResponse({"node_info": {"network": "cosmoshub-4"}})
        address = url.rsplit("/", 1)[-1]
        return FakeResponse(
            {"result": {"value": {"address": address, "account_number": "42", "sequence": "7"}}}
        )

    def post(self, url, json=None, timeout=None):
        self.posted.append(json)
        return FakeResponse(self.broadcast)


def _install_lcd(monkeypatch, lcd=None):
    lcd = lcd or FakeLCD()
    monkeypatch.setattr(cosmos_lcd.requests, "get", lcd.get)
    monkeypatch.setattr(cosmos_lcd.requests, "post", lcd.post)
    return lcd


# ---------------------------------------------------------------------------
# Tool listing and dispatch
# ---------------------------------------------------------------------------


def test_list_tools_includes_all_tools():
    tools = asyncio.run(server.list_tools())
    names = {tool.name for tool in tools}
    assert names == {
        "cosmos_get_address",
        "cosmos_export_wallet",
        "cosmos_generate_mnemonic",
        "cosmos_get_node_info",
        "cosmos_get_account",
        "cosmos_sign_transaction",
        "cosmos_broadcast_transaction",
    }


def test_unknown_tool():
    payload = _parse(asyncio.run(server.call_tool("cosmos_nope", {})))
    assert payload["success"] is False
    assert "Unknown tool" in payload["error"]


def test_non_object_arguments():
    payload = _parse(asyncio.run(server.call_tool("cosmos_get_address", [])))
    assert payload["success"] is False


# ---------------------------------------------------------------------------
# Wallet tools
# ---------------------------------------------------------------------------


def test_get_address(monkeypatch):
    _use_cfg(monkeypatch)
    payload = _parse(asyncio.run(server.call_tool("cosmos_get_address", {})))
    assert payload["success"] is True
    assert payload["address"] == REFERENCE_ADDRESS
    assert payload["path"] == "m/44'/118'/0'/0/0"
    assert payload["remote_signer"] is False


def test_get_address_config_error(monkeypatch):
    for var in ("COSMOS_MNEMONIC", "COSMOS_REMOTE_SIGNER_URL"):
        monkeypatch.delenv(var, raising=False)
    payload = _parse(asyncio.run(server.call_tool("cosmos_get_address", {})))
    assert payload["success"] is False
    assert payload["error_kind"] == "config"


def test_export_wallet_without_private_key(monkeypatch):
    _use_cfg(monkeypatch)
    payload = _parse(asyncio.run(server.call_tool("cosmos_export_wallet", {})))
    assert payload["success"] is True
    assert payload["wallet"]["address"] == REFERENCE_ADDRESS
    assert "private_key" not in payload["wallet"]


def test_export_wallet_with_private_key(monkeypatch):
    _use_cfg(monkeypatch)
    payload = _parse(
        asyncio.run(server.call_tool("cosmos_export_wallet", {"include_private_key": True}))
    )
    assert payload["wallet"]["private_key"].startswith("xprv")


def test_generate_mnemonic():
    payload = _parse(asyncio.run(server.call_tool("cosmos_generate_mnemonic", {"hrp": "did:com:"})))
    assert payload["success"] is True
    assert is_valid_mnemonic(payload["mnemonic"])
    assert payload["address"].startswith("did:com:1")


def test_generate_mnemonic_bad_path():
    payload = _parse(asyncio.run(server.call_tool("cosmos_generate_mnemonic", {"path": "x/1"})))
    assert payload["success"] is False
    assert payload["error_kind"] == "input"


# ---------------------------------------------------------------------------
# LCD tools
# ---------------------------------------------------------------------------


def test_get_node_info(monkeypatch):
    _use_cfg(monkeypatch)
    _install_lcd(monkeypatch)
    payload = _parse(asyncio.run(server.call_tool("cosmos_get_node_info", {})))
    assert payload == {"success": True, "chain_id": "cosmoshub-4", "lcd_url": "http://lcd.local:1317"}


def test_get_node_info_unreachable(monkeypatch):
    _use_cfg(monkeypatch)

    def boom(url, timeout=None):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(cosmos_lcd.requests, "get", boom)
    payload = _parse(asyncio.run(server.call_tool("cosmos_get_node_info", {})))
    assert payload["success"] is False
    assert payload["error_kind"] == "remote"


def test_get_account_defaults_to_wallet_address(monkeypatch):
    _use_cfg(monkeypatch)
    _install_lcd(monkeypatch)
    payload = _parse(asyncio.run(server.call_tool("cosmos_get_account", {})))
    assert payload["address"] == REFERENCE_ADDRESS
    assert payload["account_number"] == "42"
    assert payload["sequence"] == "7"


def test_get_account_rejects_malformed_address(monkeypatch):
    _use_cfg(monkeypatch)
    _install_lcd(monkeypatch)
    payload = _parse(
        asyncio.run(server.call_tool("cosmos_get_account", {"address": "cosmos1notvalid"}))
    )
    assert payload["success"] is False
    assert payload["error_kind"] == "input"


# ---------------------------------------------------------------------------
# Signing and broadcast
# ---------------------------------------------------------------------------


def test_sign_transaction(monkeypatch):
    _use_cfg(monkeypatch)
    payload = _parse(
        asyncio.run(
            server.call_tool(
                "cosmos_sign_transaction",
                {"tx": UNSIGNED_TX, "chain_id": "cosmoshub-4", "account_number": 42, "sequence": "7"},
            )
        )
    )
    assert payload["success"] is True
    signed = payload["signed_tx"]
    assert signed["msg"] == UNSIGNED_TX["msg"]
    assert len(signed["signatures"]) == 1
    assert signed["signatures"][0]["pub_key"]["type"] == "tendermint/PubKeySecp256k1"


def test_sign_transaction_accepts_json_string(monkeypatch):
    _use_cfg(monkeypatch)
    payload = _parse(
        asyncio.run(
            server.call_tool(
                "cosmos_sign_transaction",
                {"tx": json.dumps(UNSIGNED_TX), "chain_id": "c", "account_number": "1", "sequence": "0"},
            )
        )
    )
    assert payload["success"] is True


def test_sign_transaction_missing_chain_id(monkeypatch):
    _use_cfg(monkeypatch)
    payload = _parse(
        asyncio.run(
            server.call_tool(
                "cosmos_sign_transaction",
                {"tx": UNSIGNED_TX, "account_number": "1", "sequence": "0"},
            )
        )
    )
    assert payload["success"] is False
    assert "chain_id" in payload["error"]


def test_broadcast_dry_run_by_default(monkeypatch):
    _use_cfg(monkeypatch)
    lcd = _install_lcd(monkeypatch)
    payload = _parse(asyncio.run(server.call_tool("cosmos_broadcast_transaction", {"tx": UNSIGNED_TX})))
    assert payload["success"] is True
    assert payload["dry_run"] is True
    assert payload["chain_id"] == "cosmoshub-4"
    assert payload["account_number"] == "42"
    assert payload["sequence"] == "7"
    assert len(payload["signed_tx"]["signatures"]) == 1
    assert lcd.posted == []


def test_broadcast_live(monkeypatch):
    _use_cfg(monkeypatch, broadcast_mode=TxMode.SYNC)
    lcd = _install_lcd(monkeypatch)
    payload = _parse(
        asyncio.run(
            server.call_tool(
                "cosmos_broadcast_transaction",
                {"tx": UNSIGNED_TX, "dry_run": False, "mode": "block"},
            )
        )
    )
    assert payload["success"] is True
    assert payload["txhash"] == "C0FFEE"
    assert payload["mode"] == "block"
    assert lcd.posted[0]["mode"] == "block"


def test_broadcast_rejected(monkeypatch):
    _use_cfg(monkeypatch, dry_run_default=False)
    rejected = {
        "height": "0",
        "txhash": "DEAD",
        "code": 5,
        "raw_log": '{"codespace":"sdk","code":5,"message":"insufficient funds"}',
    }
    _install_lcd(monkeypatch, FakeLCD(broadcast=rejected))
    payload = _parse(asyncio.run(server.call_tool("cosmos_broadcast_transaction", {"tx": UNSIGNED_TX})))
    assert payload["success"] is False
    assert payload["error_kind"] == "rejected"
    assert payload["codespace"] == "sdk"
    assert payload["code"] == 5
    assert "insufficient funds" in payload["error"]


def test_broadcast_invalid_tx():
    payload = _parse(asyncio.run(server.call_tool("cosmos_broadcast_transaction", {"tx": "not json"})))
    assert payload["success"] is False
    assert payload["error_kind"] == "input"


def test_sign_transaction_lone_surrogate_memo_is_input_error(monkeypatch):
    _use_cfg(monkeypatch)
    tx = {**UNSIGNED_TX, "memo": json.loads('"\\ud800"')}
    payload = _parse(
        asyncio.run(
            server.call_tool(
                "cosmos_sign_transaction",
                {"tx": tx, "chain_id": "c", "account_number": "1", "sequence": "0"},
            )
        )
    )
    assert payload["success"] is False
    assert payload["error_kind"] == "input"
    assert "UTF-8" in payload["error"]


def test_logging_options_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("COSMOS_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("COSMOS_LOG_FORMAT", " JSON ")
    monkeypatch.setenv("COSMOS_LOG_FILE", str(tmp_path / "server.log"))
    assert server._logging_options() == {
        "level": "DEBUG",
        "fmt": "json",
        "log_file": str(tmp_path / "server.log"),
    }


def test_logging_options_defaults(monkeypatch):
    for var in ("COSMOS_LOG_LEVEL", "COSMOS_LOG_FORMAT", "COSMOS_LOG_FILE"):
        monkeypatch.delenv(var, raising=False)
    assert server._logging_options() == {"level": "INFO", "fmt": "human", "log_file": None}
