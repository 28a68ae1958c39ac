"""
Tests for the Blockfrost (IPFS + chain) and wallet bridge clients.
"""

import json

import httpx
import pytest

from core.blockfrost_client import BlockfrostClient
from core.exceptions import (
    ChainServiceError,
    ConfigurationError,
    ConfirmationTimeoutError,
    ContentStorageError,
    WalletNotConnectedError,
    WalletServiceError,
)
from core.wallet_client import WalletClient


def _http(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestBlockfrostIpfs:

    def test_upload_then_pin(self):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path, request.headers.get("project_id")))
            if request.url.path.endswith("/ipfs/add"):
                return httpx.Response(200, json={"ipfs_hash": "QmHash", "name": "a.png", "size": "3"})
            return httpx.Response(200, json={"ipfs_hash": "QmHash", "state": "queued"})

        client = BlockfrostClient("preprodKey", http_client=_http(handler))
        uri = client.upload_bytes(b"png", "a.png", "image/png")

        assert uri == "ipfs://QmHash"
        assert calls == [
            ("POST", "/api/v0/ipfs/add", "preprodKey"),
            ("POST", "/api/v0/ipfs/pin/add/QmHash", "preprodKey"),
        ]

    def test_separate_ipfs_project_id(self):
        seen = set()

        def handler(request):
            seen.add(request.headers["project_id"])
            return httpx.Response(200, json={"ipfs_hash": "QmHash"})

        client = BlockfrostClient("preprodChain", ipfs_project_id="ipfsKey", http_client=_http(handler))
        client.upload_json({"a": 1})

        assert seen == {"ipfsKey"}

    def test_upload_json_sends_document(self):
        bodies = []

        def handler(request):
            if request.url.path.endswith("/ipfs/add"):
                bodies.append(request.content)
            return httpx.Response(200, json={"ipfs_hash": "QmDoc"})

        client = BlockfrostClient("preprodKey", http_client=_http(handler))
        assert client.upload_json({"name": "Diplôme"}, "doc.json") == "ipfs://QmDoc"
        assert "Diplôme".encode("utf-8") in bodies[0]

    def test_upload_rejected(self):
        def handler(request):
            return httpx.Response(403, json={"error": "Forbidden"})

        client = BlockfrostClient("preprodKey", http_client=_http(handler))
        with pytest.raises(ContentStorageError) as exc_info:
            client.upload_bytes(b"x", "a.png")
        assert exc_info.value.status_code == 403

    def test_pin_failure(self):
        def handler(request):
            if request.url.path.endswith("/ipfs/add"):
                return httpx.Response(200, json={"ipfs_hash": "QmHash"})
            return httpx.Response(500)

        client = BlockfrostClient("preprodKey", http_client=_http(handler))
        with pytest.raises(ContentStorageError):
            client.upload_bytes(b"x", "a.png")

    def test_unconfigured(self):
        client = BlockfrostClient("", http_client=_http(lambda request: httpx.Response(200)))

        assert client.is_configured is False
        with pytest.raises(ConfigurationError):
            client.upload_bytes(b"x", "a.png")
        with pytest.raises(ConfigurationError):
            client.is_transaction_confirmed("tx")


class TestBlockfrostChain:

    def test_unknown_transaction_is_unconfirmed(self):
        def handler(request):
            assert request.url.host == "cardano-preprod.blockfrost.io"
            return httpx.Response(404, json={"status_code": 404})

        client = BlockfrostClient("preprodKey", http_client=_http(handler))
        assert client.is_transaction_confirmed("tx1") is False

    def test_lookup_error(self):
        client = BlockfrostClient("preprodKey", http_client=_http(lambda request: httpx.Response(500)))
        with pytest.raises(ChainServiceError):
            client.is_transaction_confirmed("tx1")

    def test_wait_returns_attempts(self):
        responses = iter([404, 500, 200])

        def handler(request):
            return httpx.Response(next(responses), json={})

        client = BlockfrostClient("preprodKey", http_client=_http(handler))
        assert client.wait_for_confirmation("tx1", max_attempts=5, interval_seconds=0) == 3

    def test_wait_times_out(self):
        client = BlockfrostClient("preprodKey", http_client=_http(lambda request: httpx.Response(404)))

        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            client.wait_for_confirmation("tx1", max_attempts=3, interval_seconds=0)
        assert exc_info.value.attempts == 3
        assert exc_info.value.tx_hash == "tx1"


def _bridge(routes):
    """Wallet bridge double: {(method, path): json_body or (status, json_body)}."""
    seen = []

    def handler(request):
        key = (request.method, request.url.path)
        seen.append((key, json.loads(request.content) if request.content else None))
        answer = routes.get(key, (404, {"error": "not found"}))
        status, body = answer if isinstance(answer, tuple) else (200, answer)
        return httpx.Response(status, json=body)

    return _http(handler), seen


class TestWalletClient:

    def test_calls_require_connection(self):
        http, _ = _bridge({})
        wallet = WalletClient("http://bridge", http_client=http)

        assert wallet.is_connected is False
        with pytest.raises(WalletNotConnectedError):
            wallet.get_balance()

    def test_connect_and_mint_round(self):
        http, seen = _bridge({
            ("POST", "/wallets/connect"): {"session": "w1", "address": "addr_test1"},
            ("GET", "/wallets/w1/balance"): {"lovelace": "12000000"},
            ("GET", "/wallets/w1/utxos"): {"utxos": [{"tx_hash": "u", "index": 0}]},
            ("POST", "/wallets/w1/mint/build"): {"unsigned_tx": "84a4"},
            ("POST", "/wallets/w1/sign"): {"signed_tx": "84a5"},
            ("POST", "/wallets/w1/submit"): {"tx_hash": "txhash"},
        })
        wallet = WalletClient("http://bridge/", http_client=http)

        assert wallet.connect("addr_test1") == "addr_test1"
        assert wallet.get_balance() == 12_000_000
        utxos = wallet.get_utxos()
        unsigned = wallet.build_mint_transaction("pol", "Diploma_x", {"721": {}}, utxos)
        assert wallet.submit_transaction(wallet.sign_transaction(unsigned)) == "txhash"

        build_body = seen[3][1]
        assert build_body == {
            "policy_id": "pol",
            "asset_name": "Diploma_x",
            "metadata": {"721": {}},
            "utxos": [{"tx_hash": "u", "index": 0}],
        }

    def test_bridge_error_message_surfaces(self):
        http, _ = _bridge({
            ("POST", "/wallets/connect"): {"session": "w1"},
            ("POST", "/wallets/w1/submit"): (400, {"error": "BadInputsUTxO"}),
        })
        wallet = WalletClient("http://bridge", http_client=http)
        wallet.connect("addr_test1")

        with pytest.raises(WalletServiceError) as exc_info:
            wallet.submit_transaction("84a5")
        assert "BadInputsUTxO" in exc_info.value.message
        assert exc_info.value.status_code == 400

    def test_unreadable_balance(self):
        http, _ = _bridge({
            ("POST", "/wallets/connect"): {"session": "w1"},
            ("GET", "/wallets/w1/balance"): {"lovelace": "lots"},
        })
        wallet = WalletClient("http://bridge", http_client=http)
        wallet.connect("addr_test1")

        with pytest.raises(WalletServiceError):
            wallet.get_balance()

    def test_policy_requires_id(self):
        http, _ = _bridge({
            ("POST", "/wallets/connect"): {"session": "w1"},
            ("POST", "/wallets/w1/policy"): {"script": {}},
        })
        wallet = WalletClient("http://bridge", http_client=http)
        wallet.connect("addr_test1")

        with pytest.raises(WalletServiceError):
            wallet.derive_policy()

    def test_disconnect_forgets_session(self):
        http, _ = _bridge({("POST", "/wallets/connect"): {"session": "w1"}})
        wallet = WalletClient("http://bridge", http_client=http)
        wallet.connect("addr_test1")

        wallet.disconnect()

        assert wallet.is_connected is False
        assert wallet.address is None
