"""部署服务日志：JSONL 落盘、凭据脱敏与按模块/run_id 放行 DEBUG。

所有记录先经 QueueHandler 入队，由 QueueListener 在后台线程写入
``log_dir/deployer.jsonl``（滚动）以及 stderr（仅 ERROR 及以上）。
上下文字段（request_id/run_id/stage）在入队前从 contextvars 取出写入 record，
因此 ``asyncio.to_thread`` 中执行的流水线日志同样带有请求关联信息。
"""

from __future__ import annotations

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import Any

from deployer.config import Settings
from deployer.infra.logging.context import get_log_context

SERVICE_NAME = "solynx-deployer"
LOG_FILE_NAME = "deployer.jsonl"

_listener: QueueListener | None = None

_CONTEXT_FIELDS = ("request_id", "run_id", "stage")
_TEXT_FIELDS = ("event", "external_service", "op", "error_type")
_NUMERIC_FIELDS = ("duration_ms", "status_code")

# 钱包 JWK 私钥分量、git 远端地址里的用户名口令、Solana 64 字节密钥数组、Bearer 令牌。
_CREDENTIAL_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r'(?i)("(?:d|p|q|dp|dq|qi)"\s*:\s*")[^"]+'), r"\1***"),
    (re.compile(r"(?i)(https?://)[^/\s:@]+:[^/\s@]+@"), r"\1***@"),
    (re.compile(r"\[\s*(?:\d{1,3}\s*,\s*){63}\d{1,3}\s*\]"), "[***keypair***]"),
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"), r"\1***"),
)
# strict 模式额外遮盖长 base64url 串（JWK 模数、签名、未识别的密钥材料）。
_LONG_BLOB_RE = re.compile(r"[A-Za-z0-9_-]{64,}")


def redact_text(value: str | None, mode: str) -> str | None:
    """按 off/standard/strict 模式遮盖凭据。"""
    if value is None:
        return None
    text = str(value)
    mode = mode.lower()
    if mode == "off":
        return text
    for pattern, replacement in _CREDENTIAL_PATTERNS:
        text = pattern.sub(replacement, text)
    if mode == "strict":
        text = _LONG_BLOB_RE.sub("***", text)
    return text


def render_payload_preview(payload: Any, *, max_chars: int, redaction_mode: str) -> str | None:
    if payload is None:
        return None
    serialized = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, default=str)
    redacted = redact_text(serialized, redaction_mode) or ""
    if len(redacted) > max_chars:
        return f"{redacted[:max_chars]}...(truncated)"
    return redacted


class DebugRoutingFilter(logging.Filter):
    """低于 min_level 的记录丢弃；DEBUG 例外放行指定模块前缀或 run_id。"""

    def __init__(self, *, min_level: int, debug_modules: set[str], debug_run_ids: set[str]) -> None:
        super().__init__()
        self._min_level = min_level
        self._debug_prefixes = tuple(f"{item}." for item in debug_modules)
        self._debug_modules = debug_modules
        self._debug_run_ids = debug_run_ids

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self._min_level:
            return True
        if record.levelno != logging.DEBUG:
            return False
        if record.name in self._debug_modules or record.name.startswith(self._debug_prefixes):
            return True
        run_id = getattr(record, "run_id", None) or get_log_context().get("run_id")
        return run_id in self._debug_run_ids


class ContextInjectionFilter(logging.Filter):
    """入队前把 contextvars 中的关联字段写入 record。"""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if value is not None and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class StructuredJsonFormatter(logging.Formatter):
    """每条记录输出一行 JSON；message/error/payload_preview 统一脱敏。"""

    def __init__(self, *, redaction_mode: str, payload_preview_chars: int, service: str = SERVICE_NAME) -> None:
        super().__init__()
        self._service = service
        self._redaction_mode = redaction_mode
        self._payload_preview_chars = payload_preview_chars

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "service": self._service,
            "module": record.name,
        }
        for key in _CONTEXT_FIELDS:
            entry[key] = getattr(record, key, None) or ctx.get(key)
        for key in _TEXT_FIELDS:
            entry[key] = getattr(record, key, None)
        for key in _NUMERIC_FIELDS:
            value = getattr(record, key, None)
            entry[key] = value if isinstance(value, (int, float)) else None

        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)
        entry["message"] = redact_text(record.getMessage(), self._redaction_mode)
        entry["error"] = redact_text(str(error), self._redaction_mode) if error is not None else None
        entry["payload_preview"] = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self._payload_preview_chars,
            redaction_mode=self._redaction_mode,
        )
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(settings: Settings) -> Path:
    """安装队列日志，返回 JSONL 文件路径；重复调用会先停止上一次的监听器。"""
    global _listener
    shutdown_logging()

    log_dir = settings.log_dir if settings.log_dir.is_absolute() else (Path.cwd() / settings.log_dir).resolve()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    records: Queue[logging.LogRecord] = Queue()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "context": {"()": ContextInjectionFilter},
                "routing": {
                    "()": DebugRoutingFilter,
                    "min_level": getattr(logging, settings.log_level.upper(), logging.INFO),
                    "debug_modules": set(settings.log_debug_modules_list()),
                    "debug_run_ids": set(settings.log_debug_run_ids_list()),
                },
            },
            "handlers": {
                "queue": {
                    "class": "logging.handlers.QueueHandler",
                    "queue": records,
                    "filters": ["context", "routing"],
                }
            },
            "loggers": {
                name: {"level": "WARNING"}
                for name in ("uvicorn.access", "httpx", "httpcore", "urllib3", "solana", "arweave")
            },
            "root": {"level": "DEBUG", "handlers": ["queue"]},
        }
    )

    formatter = StructuredJsonFormatter(
        redaction_mode=settings.log_redaction_mode,
        payload_preview_chars=settings.log_payload_preview_chars,
    )
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    _listener = QueueListener(records, file_handler, stderr_handler, respect_handler_level=True)
    _listener.start()
    return log_file


def shutdown_logging() -> None:
    """停止监听器并关闭文件句柄，保证队列中的记录已写出。"""
    global _listener
    listener, _listener = _listener, None
    if listener is None:
        return
    listener.stop()
    for handler in listener.handlers:
        handler.close()
