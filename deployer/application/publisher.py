"""内容发布：逐个上传输出目录文件，生成路径清单并汇总确认状态。"""

from __future__ import annotations

import json
import logging
import mimetypes
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from deployer.domain.errors import PublicationError
from deployer.domain.models import PublicationRecord, PublishedFile
from deployer.infra.arweave.gateway import ArweaveGateway, TransactionStatus
from deployer.infra.arweave.uploader import ArweaveUploader

logger = logging.getLogger(__name__)

MANIFEST_CONTENT_TYPE = "application/x.arweave-manifest+json"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
INDEX_DOCUMENT = "index.html"


@dataclass(slots=True)
class _Upload:
    path: str
    transaction_id: str
    content_type: str


def list_publishable_files(output_directory: Path) -> list[tuple[str, Path]]:
    """按相对路径字典序列出全部普通文件。"""
    files = [
        (path.relative_to(output_directory).as_posix(), path)
        for path in output_directory.rglob("*")
        if path.is_file() and not path.is_symlink()
    ]
    return sorted(files, key=lambda item: item[0])


def guess_content_type(relative_path: str) -> str:
    content_type, _ = mimetypes.guess_type(relative_path)
    return content_type or DEFAULT_CONTENT_TYPE


def build_path_manifest(uploads: Sequence[tuple[str, str]]) -> dict[str, Any]:
    """生成 arweave/paths 清单，使整个站点可通过单一地址访问。"""
    manifest: dict[str, Any] = {"manifest": "arweave/paths", "version": "0.1.0"}
    paths = {path: {"id": transaction_id} for path, transaction_id in uploads}
    if INDEX_DOCUMENT in paths:
        manifest["index"] = {"path": INDEX_DOCUMENT}
    manifest["paths"] = paths
    return manifest


class ContentPublisher:
    """内容发布器：提交失败即整体失败，未确认文件以逐文件地址返回。"""
    def __init__(
        self,
        gateway: ArweaveGateway,
        *,
        uploader_factory: Callable[[Path], ArweaveUploader],
        confirmation_attempts: int = 1,
        confirmation_interval_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._gateway = gateway
        self._uploader_factory = uploader_factory
        self._confirmation_attempts = max(1, confirmation_attempts)
        self._confirmation_interval_seconds = confirmation_interval_seconds
        self._sleep = sleep

    def publish(
        self,
        output_directory: Path,
        credential: Path,
        *,
        tags: Sequence[tuple[str, str]] = (),
    ) -> PublicationRecord:
        files = list_publishable_files(output_directory)
        if not files:
            raise PublicationError(f"nothing to publish: {output_directory.name}/ contains no files")
        uploader = self._uploader_factory(credential)

        uploads: list[_Upload] = []
        failures: list[str] = []
        for relative_path, absolute_path in files:
            content_type = guess_content_type(relative_path)
            try:
                transaction_id = uploader.submit(absolute_path, [("Content-Type", content_type), *tags])
            except Exception as exc:
                logger.warning(
                    "file upload failed",
                    extra={
                        "event": "publish.file.failed",
                        "external_service": "arweave",
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                        "payload_preview": {"path": relative_path},
                    },
                )
                failures.append(f"{relative_path}: {exc}")
                continue
            uploads.append(_Upload(relative_path, transaction_id, content_type))

        if failures:
            raise PublicationError(
                f"upload failed for {len(failures)} of {len(files)} files: " + "; ".join(failures)
            )

        manifest = build_path_manifest([(item.path, item.transaction_id) for item in uploads])
        manifest_bytes = json.dumps(manifest, sort_keys=True, separators=(",", ":")).encode("utf-8")
        try:
            content_id = uploader.submit(manifest_bytes, [("Content-Type", MANIFEST_CONTENT_TYPE), *tags])
        except Exception as exc:
            raise PublicationError(f"manifest upload failed: {exc}") from exc

        confirmed = self._await_confirmations(uploads)
        pending = [item.path for item in uploads if item.transaction_id not in confirmed]
        per_file_urls: tuple[PublishedFile, ...] | None = None
        if pending:
            per_file_urls = tuple(
                PublishedFile(
                    path=item.path,
                    url=self._gateway.url_for(item.transaction_id),
                    transaction_id=item.transaction_id,
                    content_type=item.content_type,
                    confirmed=item.transaction_id in confirmed,
                )
                for item in uploads
            )
        logger.info(
            "publication completed",
            extra={
                "event": "publish.partial" if pending else "publish.succeeded",
                "external_service": "arweave",
                "payload_preview": {"content_id": content_id, "files": len(uploads), "pending": pending},
            },
        )
        return PublicationRecord(
            content_id=content_id,
            resolvable_url=self._gateway.url_for(content_id),
            per_file_urls=per_file_urls,
            manifest=manifest,
        )

    def _await_confirmations(self, uploads: Sequence[_Upload]) -> set[str]:
        confirmed: set[str] = set()
        for attempt in range(self._confirmation_attempts):
            if attempt:
                self._sleep(self._confirmation_interval_seconds)
            for item in uploads:
                if item.transaction_id in confirmed:
                    continue
                if self._gateway.transaction_status(item.transaction_id) is TransactionStatus.confirmed:
                    confirmed.add(item.transaction_id)
            if len(confirmed) == len(uploads):
                break
        return confirmed
