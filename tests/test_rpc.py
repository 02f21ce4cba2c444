import base64
import json

import httpx
import pytest

from mazel_draw_bot.errors import RpcError, TransactionError
from mazel_draw_bot.rpc import METHOD_NOT_FOUND, RpcClient, memcmp_filter


def make_client(handler, **kwargs):
    transport = httpx.MockTransport(handler)
    return RpcClient("https://rpc.test", transport=transport, **kwargs)


def reply(request, result=None, error=None):
    body = json.loads(request.content)
    payload = {"jsonrpc": "2.0", "id": body["id"]}
    if error is not None:
        payload["error"] = error
    else:
        payload["result"] = result
    return httpx.Response(200, json=payload)


def with_context(value):
    return {"context": {"slot": 1}, "value": value}


def keyed(pubkey, data):
    return {"pubkey": pubkey, "account": {"data": b64(data)}}


def b64(data):
    return [base64.b64encode(data).decode("ascii"), "base64"]


def test_memcmp_filter_is_base58():
    assert memcmp_filter(40, b"\x01") == {"memcmp": {"offset": 40, "bytes": "2"}}


def test_get_account_info():
    def handler(request):
        body = json.loads(request.content)
        assert body["method"] == "getAccountInfo"
        assert body["params"][1]["encoding"] == "base64"
        return reply(request, with_context({"data": b64(b"hello")}))

    assert make_client(handler).get_account_info("Acc") == b"hello"


def test_get_account_info_missing_returns_none():
    client = make_client(lambda r: reply(r, with_context(None)))
    assert client.get_account_info("Acc") is None


def test_json_rpc_error_raises_with_code():
    error = {"code": -32005, "message": "node is behind"}
    client = make_client(lambda r: reply(r, error=error))
    with pytest.raises(RpcError) as exc:
        client.get_slot()
    assert exc.value.code == -32005
    assert "node is behind" in str(exc.value)


def test_http_error_becomes_rpc_error():
    client = make_client(lambda r: httpx.Response(503, text="unavailable"))
    with pytest.raises(RpcError):
        client.get_slot()


def test_paged_program_accounts_follow_cursor():
    pages = {
        None: {"accounts": [keyed("A", b"a")], "paginationKey": "next"},
        "next": {"accounts": [keyed("B", b"b")], "paginationKey": None},
    }

    def handler(request):
        body = json.loads(request.content)
        assert body["method"] == "getProgramAccountsV2"
        config = body["params"][1]
        assert config["limit"] == 2
        return reply(request, pages[config.get("paginationKey")])

    accounts = make_client(handler).get_program_accounts("Prog", [], page_size=2)
    assert accounts == [("A", b"a"), ("B", b"b")]


def test_paged_program_accounts_fall_back_when_unsupported():
    methods = []

    def handler(request):
        body = json.loads(request.content)
        methods.append(body["method"])
        if body["method"] == "getProgramAccountsV2":
            error = {"code": METHOD_NOT_FOUND, "message": "Method not found"}
            return reply(request, error=error)
        return reply(request, [keyed("A", b"a")])

    accounts = make_client(handler).get_program_accounts(
        "Prog", [memcmp_filter(0, b"x")], page_size=100
    )
    assert accounts == [("A", b"a")]
    assert methods == ["getProgramAccountsV2", "getProgramAccounts"]


def test_confirm_transaction_succeeds_at_commitment():
    statuses = iter(
        [
            None,
            {"err": None, "confirmationStatus": "processed"},
            {"err": None, "confirmationStatus": "confirmed"},
        ]
    )

    def handler(request):
        body = json.loads(request.content)
        if body["method"] == "getBlockHeight":
            return reply(request, 10)
        return reply(request, with_context([next(statuses)]))

    make_client(handler).confirm_transaction("sig", 100, timeout_s=5, poll_interval_s=0)


def test_confirm_transaction_raises_on_landed_error():
    def handler(request):
        status = {
            "err": {"InstructionError": [0, "Custom"]},
            "confirmationStatus": "confirmed",
        }
        return reply(request, with_context([status]))

    with pytest.raises(TransactionError) as exc:
        make_client(handler).confirm_transaction(
            "sig", 100, timeout_s=5, poll_interval_s=0, label="main.commit"
        )
    assert exc.value.signature == "sig"
    assert "main.commit" in str(exc.value)


def test_confirm_transaction_raises_when_blockhash_expires():
    def handler(request):
        body = json.loads(request.content)
        if body["method"] == "getBlockHeight":
            return reply(request, 101)
        return reply(request, with_context([None]))

    with pytest.raises(TransactionError, match="expired"):
        make_client(handler).confirm_transaction(
            "sig", 100, timeout_s=5, poll_interval_s=0
        )


def test_send_transaction_encodes_base64():
    def handler(request):
        body = json.loads(request.content)
        assert body["method"] == "sendTransaction"
        assert base64.b64decode(body["params"][0]) == b"raw-tx"
        assert body["params"][1]["skipPreflight"] is True
        return reply(request, "5ig")

    client = make_client(handler)
    assert client.send_transaction(b"raw-tx", skip_preflight=True) == "5ig"


@pytest.mark.parametrize(
    "call, result",
    [
        (lambda c: c.get_latest_blockhash(), {"value": None}),
        (lambda c: c.get_account_info("Acc"), {"value": {"data": None}}),
        (lambda c: c.get_slot(), "not-a-slot"),
        (lambda c: c.get_signature_statuses(["sig"]), {"value": ["confirmed"]}),
    ],
)
def test_malformed_result_becomes_rpc_error(call, result):
    client = make_client(lambda r: reply(r, result))
    with pytest.raises(RpcError, match="unexpected response"):
        call(client)


def test_non_object_reply_is_rpc_error():
    client = make_client(lambda r: httpx.Response(200, json=[1, 2, 3]))
    with pytest.raises(RpcError):
        client.get_slot()
