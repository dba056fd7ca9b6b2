"""Tests for ChainReader: JSON-RPC transport and fail-closed receipt decoding."""

import pytest
import requests

from agentfails import chain
from agentfails.chain import ChainReader, ChainUnavailable, ReceiptStatus, decode_receipt

from conftest import COLLECTOR, PAYER, TX, USDC

TRANSFER = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def _pad(address: str) -> str:
    return "0x" + address[2:].lower().rjust(64, "0")


RAW_RECEIPT = {
    "status": "0x1",
    "blockNumber": "0x10",
    "logs": [
        {
            "address": USDC,
            "topics": [TRANSFER, _pad(PAYER), _pad(COLLECTOR)],
            "data": "0x" + hex(2_000_000)[2:].rjust(64, "0"),
            "logIndex": "0x0",
        }
    ],
}


class FakeResponse:
    def __init__(self, payload=None, status_code=200, bad_json=False):
        self.payload = payload
        self.status_code = status_code
        self.bad_json = bad_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self.bad_json:
            raise ValueError("not json")
        return self.payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.bodies = []

    def post(self, url, json=None, timeout=None):
        self.bodies.append(json)
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


def _reader(*responses, **kw) -> ChainReader:
    return ChainReader("http://rpc.test", session=FakeSession(*responses), **kw)


class TestFetchReceipt:
    def test_decodes_receipt(self) -> None:
        reader = _reader(FakeResponse({"jsonrpc": "2.0", "id": 1, "result": RAW_RECEIPT}))
        rcpt = reader.fetch_receipt(TX)
        assert rcpt.status is ReceiptStatus.SUCCESS
        log = rcpt.logs[0]
        assert log.emitter == USDC.lower()
        assert len(log.topics) == 3
        assert int.from_bytes(log.data, "big") == 2_000_000
        body = reader._session.bodies[0]
        assert body["method"] == "eth_getTransactionReceipt"
        assert body["params"] == [TX]

    def test_failed_status(self) -> None:
        raw = dict(RAW_RECEIPT, status="0x0")
        reader = _reader(FakeResponse({"result": raw}))
        assert reader.fetch_receipt(TX).status is ReceiptStatus.FAILURE

    def test_null_result_is_absent(self) -> None:
        reader = _reader(FakeResponse({"jsonrpc": "2.0", "id": 1, "result": None}))
        assert reader.fetch_receipt(TX) is None

    def test_polls_while_pending(self, monkeypatch) -> None:
        sleeps = []
        monkeypatch.setattr(chain.time, "sleep", sleeps.append)
        reader = _reader(
            FakeResponse({"result": None}),
            FakeResponse({"result": RAW_RECEIPT}),
            poll_attempts=3,
            poll_interval=0.5,
        )
        assert reader.fetch_receipt(TX) is not None
        assert sleeps == [0.5]

    def test_polling_gives_up(self, monkeypatch) -> None:
        monkeypatch.setattr(chain.time, "sleep", lambda s: None)
        reader = _reader(*[FakeResponse({"result": None})] * 2, poll_attempts=2)
        assert reader.fetch_receipt(TX) is None


class TestFailures:
    @pytest.mark.parametrize("response", [
        requests.ConnectionError("refused"),
        requests.Timeout("slow"),
        FakeResponse(status_code=502),
        FakeResponse(bad_json=True),
        FakeResponse(["not", "an", "object"]),
        FakeResponse({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "boom"}}),
        FakeResponse({"jsonrpc": "2.0", "id": 1}),
    ])
    def test_transport_and_envelope_errors(self, response) -> None:
        with pytest.raises(ChainUnavailable):
            _reader(response).fetch_receipt(TX)

    @pytest.mark.parametrize("mutate", [
        lambda r: r.pop("status"),
        lambda r: r.update(status="0x2"),
        lambda r: r.update(logs="nope"),
        lambda r: r["logs"][0].update(address="0x1234"),
        lambda r: r["logs"][0].update(topics=["0xabc"]),
        lambda r: r["logs"][0].update(topics=[TRANSFER] * 5),
        lambda r: r["logs"][0].update(data="0x123"),
    ])
    def test_malformed_receipt_fails_closed(self, mutate) -> None:
        raw = {**RAW_RECEIPT, "logs": [dict(RAW_RECEIPT["logs"][0])]}
        mutate(raw)
        with pytest.raises(ChainUnavailable):
            decode_receipt(raw)


class TestBalanceOf:
    def test_encodes_call(self) -> None:
        reader = _reader(FakeResponse({"result": "0x" + "0" * 63 + "3"}))
        assert reader.balance_of(USDC, PAYER) == 3
        tx, block = reader._session.bodies[0]["params"]
        assert block == "latest"
        assert tx["to"] == USDC
        assert tx["data"] == "0x70a08231" + PAYER[2:].lower().rjust(64, "0")

    def test_short_result(self) -> None:
        reader = _reader(FakeResponse({"result": "0x"}))
        with pytest.raises(ChainUnavailable):
            reader.balance_of(USDC, PAYER)
