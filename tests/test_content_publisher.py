"""内容发布测试：上传顺序、路径清单、部分确认与整体失败。"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

import pytest

from deployer.application.publisher import MANIFEST_CONTENT_TYPE, ContentPublisher, build_path_manifest
from deployer.domain.errors import PublicationError
from deployer.infra.arweave.gateway import TransactionStatus


class _UploaderStub:
    """测试用上传桩：按提交顺序分配交易 ID，可指定失败路径。"""
    def __init__(self, *, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.submissions: list[tuple[str, list[tuple[str, str]]]] = []
        self.manifest: dict | None = None

    def submit(self, source: Path | bytes, tags: Sequence[tuple[str, str]]) -> str:
        if isinstance(source, bytes):
            self.manifest = json.loads(source)
            self.submissions.append(("<manifest>", list(tags)))
            return "manifest-tx"
        if source.name in self.failing:
            raise ConnectionError(f"gateway rejected {source.name}")
        self.submissions.append((source.name, list(tags)))
        return f"tx-{len(self.submissions)}"


class _GatewayStub:
    """测试用网关桩：pending 中的交易始终未确认。"""
    def __init__(self, pending: set[str] | None = None) -> None:
        self.pending = pending or set()
        self.probes: list[str] = []

    def url_for(self, transaction_id: str) -> str:
        return f"https://gw.test/{transaction_id}"

    def transaction_status(self, transaction_id: str) -> TransactionStatus:
        self.probes.append(transaction_id)
        if transaction_id in self.pending:
            return TransactionStatus.pending
        return TransactionStatus.confirmed


def _site(root: Path, names: Sequence[str]) -> Path:
    for name in names:
        target = root / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f"content of {name}", encoding="utf-8")
    return root


def _publisher(gateway: _GatewayStub, uploader: _UploaderStub, **kwargs) -> ContentPublisher:
    return ContentPublisher(
        gateway,  # type: ignore[arg-type]
        uploader_factory=lambda _path: uploader,  # type: ignore[arg-type,return-value]
        sleep=lambda _seconds: None,
        **kwargs,
    )


def test_static_site_publishes_single_url(tmp_path: Path) -> None:
    """全部确认时只返回清单地址，不返回逐文件地址。"""
    site = _site(tmp_path / "site", ["index.html", "css/site.css"])
    uploader = _UploaderStub()

    record = _publisher(_GatewayStub(), uploader).publish(site, tmp_path / "wallet.json", tags=[("App-Name", "Solynx")])

    assert record.content_id == "manifest-tx"
    assert record.resolvable_url == "https://gw.test/manifest-tx"
    assert record.per_file_urls is None
    assert record.partial is False
    assert record.manifest == uploader.manifest
    assert uploader.manifest == {
        "manifest": "arweave/paths",
        "version": "0.1.0",
        "index": {"path": "index.html"},
        "paths": {"css/site.css": {"id": "tx-1"}, "index.html": {"id": "tx-2"}},
    }


def test_files_are_uploaded_in_lexicographic_order_with_tags(tmp_path: Path) -> None:
    site = _site(tmp_path / "site", ["b.js", "a/z.txt", "a.png", "index.html"])
    uploader = _UploaderStub()

    _publisher(_GatewayStub(), uploader).publish(site, tmp_path / "wallet.json", tags=[("Project-Type", "static")])

    assert [name for name, _ in uploader.submissions] == ["a.png", "z.txt", "b.js", "index.html", "<manifest>"]
    assert uploader.submissions[0][1] == [("Content-Type", "image/png"), ("Project-Type", "static")]
    assert uploader.submissions[-1][1][0] == ("Content-Type", MANIFEST_CONTENT_TYPE)


def test_pending_file_yields_partial_publication(tmp_path: Path) -> None:
    """10 个文件中 1 个未确认：返回 10 条逐文件地址，其中 9 条已确认。"""
    names = [f"page-{idx}.html" for idx in range(10)]
    site = _site(tmp_path / "site", names)
    gateway = _GatewayStub(pending={"tx-4"})

    record = _publisher(gateway, _UploaderStub(), confirmation_attempts=3).publish(site, tmp_path / "wallet.json")

    assert record.partial is True
    assert record.per_file_urls is not None
    assert len(record.per_file_urls) == 10
    assert [item.path for item in record.per_file_urls] == sorted(names)
    assert sum(1 for item in record.per_file_urls if item.confirmed) == 9
    pending = [item for item in record.per_file_urls if not item.confirmed]
    assert pending[0].transaction_id == "tx-4"
    assert pending[0].url == "https://gw.test/tx-4"
    # 已确认的交易不会被重复探测。
    assert gateway.probes.count("tx-4") == 3
    assert gateway.probes.count("tx-1") == 1


def test_upload_failure_raises_publication_error(tmp_path: Path) -> None:
    site = _site(tmp_path / "site", ["index.html", "app.js"])
    uploader = _UploaderStub(failing={"app.js"})

    with pytest.raises(PublicationError) as excinfo:
        _publisher(_GatewayStub(), uploader).publish(site, tmp_path / "wallet.json")

    assert "app.js: gateway rejected app.js" in str(excinfo.value)
    assert uploader.manifest is None


def test_empty_output_directory_is_rejected(tmp_path: Path) -> None:
    site = tmp_path / "site"
    site.mkdir()

    with pytest.raises(PublicationError, match="nothing to publish"):
        _publisher(_GatewayStub(), _UploaderStub()).publish(site, tmp_path / "wallet.json")


def test_manifest_without_index_omits_index_entry() -> None:
    manifest = build_path_manifest([("app.js", "tx-1")])

    assert "index" not in manifest
    assert manifest["paths"] == {"app.js": {"id": "tx-1"}}
