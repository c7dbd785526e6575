"""Arweave 网关 HTTP 客户端：查询交易确认状态并拼接访问地址。"""

from __future__ import annotations

import logging
import time
from enum import Enum

import httpx

from deployer.domain.errors import PublicationError

logger = logging.getLogger(__name__)


class TransactionStatus(str, Enum):
    """交易在网络中的确认状态。"""
    confirmed = "confirmed"
    pending = "pending"


class ArweaveGateway:
    """Arweave 网关同步 HTTP 客户端封装。"""
    def __init__(
        self,
        base_url: str,
        timeout_seconds: int = 30,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._closed = False
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def _client_or_raise(self) -> httpx.Client:
        """返回可用客户端；若已关闭则抛出异常。"""
        if self._closed:
            raise RuntimeError("ArweaveGateway is already closed")
        return self._client

    def close(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        self._client.close()
        self._closed = True

    def url_for(self, transaction_id: str) -> str:
        return f"{self._base_url}/{transaction_id}"

    def transaction_status(self, transaction_id: str) -> TransactionStatus:
        """查询交易状态：200 视为已确认，其余（202/404/网络错误）均视为待确认。"""
        started = time.perf_counter()
        try:
            response = self._client_or_raise().get(f"/tx/{transaction_id}/status")
        except httpx.HTTPError as exc:
            logger.warning(
                "arweave status probe failed",
                extra={
                    "event": "arweave.status.failed",
                    "external_service": "arweave",
                    "op": "tx.status",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"transaction_id": transaction_id},
                },
            )
            return TransactionStatus.pending
        logger.debug(
            "arweave status probed",
            extra={
                "event": "arweave.status.probed",
                "external_service": "arweave",
                "op": "tx.status",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": response.status_code,
                "payload_preview": {"transaction_id": transaction_id},
            },
        )
        if response.status_code == 200:
            return TransactionStatus.confirmed
        return TransactionStatus.pending

    def submit_transaction(self, transaction_id: str, payload: str) -> None:
        """提交已签名交易；网关拒绝（非 2xx）或请求失败时抛出 PublicationError。"""
        started = time.perf_counter()
        try:
            response = self._client_or_raise().post(
                "/tx",
                content=payload,
                headers={"Content-Type": "application/json", "Accept": "application/json, text/plain, */*"},
            )
        except httpx.HTTPError as exc:
            raise PublicationError(f"transaction {transaction_id} was not delivered: {exc}") from exc
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        if not response.is_success:
            logger.warning(
                "arweave transaction rejected",
                extra={
                    "event": "arweave.tx.rejected",
                    "external_service": "arweave",
                    "op": "tx.submit",
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                    "payload_preview": {"transaction_id": transaction_id, "body": response.text},
                },
            )
            raise PublicationError(
                f"gateway rejected transaction {transaction_id} with status {response.status_code}: "
                f"{response.text.strip()}"
            )
