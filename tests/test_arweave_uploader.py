"""Arweave 上传测试：网关拒绝交易时必须失败，接受时返回交易 ID。"""

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest

from deployer.domain.errors import PublicationError
from deployer.infra.arweave import uploader as uploader_module
from deployer.infra.arweave.gateway import ArweaveGateway
from deployer.infra.arweave.uploader import ArweaveUploader


class _TransactionStub:
    """替代 arweave.Transaction：不访问网络，签名后给出固定 ID。"""
    def __init__(self, wallet: object, data: bytes = b"", **_kwargs) -> None:
        self.data = data
        self.tags: list[tuple[str, str]] = []
        self.api_url = ""
        self.id = ""

    def add_tag(self, name: str, value: str) -> None:
        self.tags.append((name, value))

    def sign(self) -> None:
        self.id = "signed-tx"

    @property
    def json_data(self) -> str:
        return json.dumps({"id": self.id, "tags": self.tags, "data_size": str(len(self.data))})


def _uploader(monkeypatch: pytest.MonkeyPatch, handler) -> tuple[ArweaveUploader, list[httpx.Request]]:
    monkeypatch.setattr(uploader_module.arweave, "Transaction", _TransactionStub)
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    gateway = ArweaveGateway("https://gw.test", transport=httpx.MockTransport(record))
    uploader = ArweaveUploader(
        SimpleNamespace(),  # type: ignore[arg-type]
        gateway=gateway,
        chunked_threshold_bytes=1024,
    )
    return uploader, requests


def test_rejected_transaction_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """网关返回 4xx 时抛出 PublicationError，而不是返回一个永远不会上链的 ID。"""
    uploader, requests = _uploader(
        monkeypatch, lambda _request: httpx.Response(410, text="You don't have enough tokens")
    )

    with pytest.raises(PublicationError, match="status 410: You don't have enough tokens"):
        uploader.submit(b"<html></html>", [("Content-Type", "text/html")])

    assert len(requests) == 1


def test_accepted_transaction_returns_id(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    page = tmp_path / "index.html"
    page.write_bytes(b"<html></html>")
    uploader, requests = _uploader(monkeypatch, lambda _request: httpx.Response(200, text="OK"))

    transaction_id = uploader.submit(page, [("Content-Type", "text/html"), ("App-Name", "Solynx")])

    assert transaction_id == "signed-tx"
    assert requests[0].method == "POST"
    assert str(requests[0].url) == "https://gw.test/tx"
    body = json.loads(requests[0].content)
    assert body["tags"] == [["Content-Type", "text/html"], ["App-Name", "Solynx"]]
    assert body["data_size"] == "13"


def test_unreachable_gateway_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    uploader, _requests = _uploader(monkeypatch, refuse)

    with pytest.raises(PublicationError, match="was not delivered"):
        uploader.submit(b"{}", [])
