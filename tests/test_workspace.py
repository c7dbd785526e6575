"""工作区管理器测试：唯一命名、凭据落盘与释放语义。"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

import pytest

from deployer.infra.storage.workspace import WorkspaceManager


def test_workspaces_are_unique_and_released(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path)

    first = manager.acquire_workspace()
    second = manager.acquire_workspace()

    assert first.root != second.root
    assert first.run_id != second.run_id
    assert first.root.parent == tmp_path
    assert first.root.name.startswith("solynx-")

    (first.root / "nested").mkdir()
    (first.root / "nested" / "file.txt").write_text("x", encoding="utf-8")
    manager.release(first)
    manager.release(second)

    assert not first.root.exists()
    assert not second.root.exists()


def test_scoped_releases_on_exception(tmp_path: Path) -> None:
    """作用域内抛出异常时工作区仍被回收，异常原样向上传播。"""
    manager = WorkspaceManager(tmp_path)
    captured: list[Path] = []

    with pytest.raises(RuntimeError, match="boom"):
        with manager.scoped() as workspace:
            captured.append(workspace.root)
            raise RuntimeError("boom")

    assert captured and not captured[0].exists()


def test_release_failure_is_logged_not_raised(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    manager = WorkspaceManager(tmp_path)
    workspace = manager.acquire_workspace()

    def _deny(path: Path) -> None:
        raise PermissionError(f"permission denied: {path}")

    monkeypatch.setattr(shutil, "rmtree", _deny)
    with caplog.at_level(logging.WARNING, logger="deployer.infra.storage.workspace"):
        manager.release(workspace)

    assert any(getattr(record, "event", None) == "workspace.release.failed" for record in caplog.records)


def test_retained_workspace_is_kept(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path, retain=True)

    with manager.scoped() as workspace:
        pass

    assert workspace.root.is_dir()


def test_store_credential_sanitizes_and_limits(tmp_path: Path) -> None:
    """凭据文件名被清洗，空内容与超限内容被拒绝。"""
    manager = WorkspaceManager(tmp_path, max_credential_file_size_bytes=8)
    workspace = manager.acquire_workspace()

    stored = manager.store_credential(workspace, "../../my wallet.json", b"{}")

    assert stored.parent == workspace.credentials_dir
    assert stored.name == "my_wallet.json"
    assert stored.read_bytes() == b"{}"
    assert stored.stat().st_mode & 0o777 == 0o600
    with pytest.raises(ValueError):
        manager.store_credential(workspace, "empty.json", b"")
    with pytest.raises(ValueError):
        manager.store_credential(workspace, "large.json", b"x" * 9)


def test_output_directories_do_not_collide(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path)
    workspace = manager.acquire_workspace()

    first = manager.allocate_output_dir(workspace)
    second = manager.allocate_output_dir(workspace)

    assert first.name == "site"
    assert second.name == "site-1"
    assert first.is_dir() and second.is_dir()
