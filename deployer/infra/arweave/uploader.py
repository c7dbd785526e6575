"""Arweave 上传器：使用 JWK 钱包签名并提交单笔数据交易。"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence
from pathlib import Path

import arweave
from arweave.transaction_uploader import TransactionUploaderException, get_uploader

from deployer.domain.errors import PublicationError
from deployer.infra.arweave.gateway import ArweaveGateway

logger = logging.getLogger(__name__)

REQUIRED_JWK_FIELDS = ("kty", "n", "e", "d")


class ArweaveUploader:
    """包装 arweave 钱包；每次 submit 生成并发送一笔交易。

    小数据交易由网关客户端直接 POST /tx，非 2xx 即失败；
    超过阈值的文件走库自带的分块上传。
    """
    def __init__(self, wallet: arweave.Wallet, *, gateway: ArweaveGateway, chunked_threshold_bytes: int) -> None:
        self._wallet = wallet
        self._gateway = gateway
        self._chunked_threshold_bytes = chunked_threshold_bytes

    @classmethod
    def from_key_file(
        cls,
        key_path: Path,
        *,
        gateway: ArweaveGateway,
        chunked_threshold_bytes: int = 10 * 1024 * 1024,
    ) -> ArweaveUploader:
        """加载 JWK 钱包文件；格式不合法时抛出 PublicationError。"""
        try:
            jwk = json.loads(key_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PublicationError(f"storage credential is not a readable JWK file: {exc}") from exc
        missing = [name for name in REQUIRED_JWK_FIELDS if not isinstance(jwk, dict) or not jwk.get(name)]
        if missing:
            raise PublicationError(f"storage credential is missing JWK fields: {', '.join(missing)}")
        try:
            wallet = arweave.Wallet(str(key_path))
        except Exception as exc:
            raise PublicationError(f"unable to load storage wallet: {exc}") from exc
        wallet.api_url = gateway.base_url
        return cls(wallet, gateway=gateway, chunked_threshold_bytes=chunked_threshold_bytes)

    def submit(self, source: Path | bytes, tags: Sequence[tuple[str, str]]) -> str:
        """签名并提交交易，返回交易 ID；网关未接受时抛出 PublicationError。"""
        started = time.perf_counter()
        if isinstance(source, Path) and source.stat().st_size > self._chunked_threshold_bytes:
            transaction_id = self._submit_chunked(source, tags)
        else:
            data = source.read_bytes() if isinstance(source, Path) else source
            transaction = arweave.Transaction(self._wallet, data=data)
            transaction.api_url = self._gateway.base_url
            self._tag_and_sign(transaction, tags)
            transaction_id = str(transaction.id)
            self._gateway.submit_transaction(transaction_id, transaction.json_data)
        logger.info(
            "arweave transaction submitted",
            extra={
                "event": "arweave.tx.submitted",
                "external_service": "arweave",
                "op": "tx.submit",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"transaction_id": transaction_id},
            },
        )
        return transaction_id

    def _submit_chunked(self, source: Path, tags: Sequence[tuple[str, str]]) -> str:
        with source.open("rb", buffering=0) as handle:
            transaction = arweave.Transaction(self._wallet, file_handler=handle, file_path=str(source))
            transaction.api_url = self._gateway.base_url
            self._tag_and_sign(transaction, tags)
            uploader = get_uploader(transaction, handle)
            try:
                while not uploader.is_complete:
                    # 分块被拒时库只返回错误字典而不抛出
                    rejected = uploader.upload_chunk()
                    if rejected:
                        raise PublicationError(
                            f"gateway rejected chunk {uploader.chunk_index} of {transaction.id}: "
                            f"{rejected.get('data', {}).get('error')}"
                        )
            except TransactionUploaderException as exc:
                raise PublicationError(f"chunked upload of {source.name} failed: {exc}") from exc
        return str(transaction.id)

    @staticmethod
    def _tag_and_sign(transaction: arweave.Transaction, tags: Sequence[tuple[str, str]]) -> None:
        for name, value in tags:
            transaction.add_tag(name, value)
        transaction.sign()
