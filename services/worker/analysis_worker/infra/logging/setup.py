"""日志初始化：统一 JSON 结构、异步队列写入与凭据脱敏。"""

from __future__ import annotations

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from analysis_worker.config import Settings
from analysis_worker.infra.logging.context import CONTEXT_FIELDS, get_log_context

_listener: QueueListener | None = None

SERVICE_NAME = "package-analysis-worker"

_SENSITIVE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    # 定位串中的 URL userinfo，例如 redis://:secret@host:6379/0。
    (re.compile(r"(?i)\b([a-z][a-z0-9+.-]*://)[^/\s:@]*:[^/\s@]+@"), r"\1***@"),
    (re.compile(r"(?i)\b(password|passwd|token|secret|access_key|secret_key)=([^&\s,;]+)"), r"\1=***"),
    (re.compile(r"(?i)(authorization\s*[:=]\s*bearer\s+)[^\s,;]+"), r"\1***"),
)


def redact_text(value: str | None, mode: str) -> str | None:
    """按模式脱敏文本，避免凭据落入日志。"""
    if value is None:
        return None
    text = str(value)
    if mode.lower() == "off":
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    if mode.lower() == "strict":
        text = re.sub(r"(?i)(X-Amz-Signature|X-Amz-Credential)=[^&\s]+", r"\1=***", text)
    return text


def render_payload_preview(payload: Any, *, max_chars: int, redaction_mode: str) -> str | None:
    """将 payload 转为截断后的预览文本，避免写入大对象。"""
    if payload is None:
        return None
    if isinstance(payload, str):
        serialized = payload
    else:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, sort_keys=True)
        except TypeError:
            serialized = str(payload)
    redacted = redact_text(serialized, redaction_mode) or ""
    if len(redacted) <= max_chars:
        return redacted
    return f"{redacted[:max_chars]}...(truncated)"


class ContextInjectionFilter(logging.Filter):
    """在日志入队前将 contextvars 写入 record，避免跨线程丢失。"""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_log_context()
        for key in CONTEXT_FIELDS:
            if getattr(record, key, None) is None and ctx.get(key) is not None:
                setattr(record, key, ctx[key])
        return True


class StructuredJsonFormatter(logging.Formatter):
    """将 LogRecord 规整为统一 JSON 行格式。"""

    def __init__(
        self,
        *,
        service: str,
        process_role: str,
        redaction_mode: str,
        payload_preview_chars: int,
    ) -> None:
        super().__init__()
        self._service = service
        self._process_role = process_role
        self._redaction_mode = redaction_mode
        self._payload_preview_chars = payload_preview_chars

    @staticmethod
    def _coerce_number(value: Any) -> int | float | None:
        if value is None:
            return None
        if isinstance(value, (int, float)):
            return value
        try:
            text = str(value)
            return int(text) if text.isdigit() else float(text)
        except ValueError:
            return None

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        error_text = getattr(record, "error", None)
        if error_text is None and record.exc_info:
            error_text = self.formatException(record.exc_info)

        payload_preview = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self._payload_preview_chars,
            redaction_mode=self._redaction_mode,
        )
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self._service,
            "process_role": self._process_role,
            "module": record.name,
            "event": getattr(record, "event", None),
        }
        for key in CONTEXT_FIELDS:
            entry[key] = getattr(record, key, None) or ctx.get(key)
        entry.update(
            {
                "external_service": getattr(record, "external_service", None),
                "op": getattr(record, "op", None),
                "duration_ms": self._coerce_number(getattr(record, "duration_ms", None)),
                "status_code": self._coerce_number(getattr(record, "status_code", None)),
                "retry": self._coerce_number(getattr(record, "retry", None)),
                "message": redact_text(record.getMessage(), self._redaction_mode),
                "error_type": getattr(record, "error_type", None),
                "error": redact_text(str(error_text), self._redaction_mode) if error_text is not None else None,
                "payload_preview": payload_preview,
            }
        )
        return json.dumps(entry, ensure_ascii=False)


class DevTextFormatter(logging.Formatter):
    """开发环境单行文本格式，附带 event 与作业上下文。"""

    def __init__(self, *, redaction_mode: str) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        self._redaction_mode = redaction_mode

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = get_log_context()
        labels = [f"event={record.event}"] if getattr(record, "event", None) else []
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None) or ctx.get(key)
            if value:
                labels.append(f"{key}={value}")
        error_text = getattr(record, "error", None)
        if error_text is not None:
            labels.append(f"error={error_text}")
        if labels:
            line = f"{line} [{' '.join(labels)}]"
        return redact_text(line, self._redaction_mode) or ""


def _parse_level(level_text: str) -> int:
    return getattr(logging, str(level_text).upper(), logging.INFO)


def configure_logging(settings: Settings, *, process_role: str) -> Path | None:
    """初始化全局日志输出：stdout 按级别输出，可选写入滚动 JSONL 文件。"""
    global _listener
    shutdown_logging()

    queue_obj: SimpleQueue[logging.LogRecord] = SimpleQueue()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "handlers": {
                "queue": {
                    "class": "logging.handlers.QueueHandler",
                    "queue": queue_obj,
                }
            },
            "root": {
                "level": _parse_level(settings.log_level),
                "handlers": ["queue"],
            },
        }
    )

    root_logger = logging.getLogger()
    queue_handler = next((item for item in root_logger.handlers if isinstance(item, QueueHandler)), None)
    if queue_handler is None:
        raise RuntimeError("queue logging handler is not configured")
    queue_handler.addFilter(ContextInjectionFilter())

    json_formatter = StructuredJsonFormatter(
        service=SERVICE_NAME,
        process_role=process_role,
        redaction_mode=settings.log_redaction_mode,
        payload_preview_chars=settings.log_payload_preview_chars,
    )
    if settings.logger_env.lower() == "dev":
        console_formatter: logging.Formatter = DevTextFormatter(redaction_mode=settings.log_redaction_mode)
    else:
        console_formatter = json_formatter

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setFormatter(console_formatter)
    handlers: list[logging.Handler] = [stdout_handler]

    log_file: Path | None = None
    if settings.log_to_file:
        role_dir = settings.log_dir / process_role
        role_dir.mkdir(parents=True, exist_ok=True)
        log_file = role_dir / "worker.jsonl"
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(json_formatter)
        handlers.append(file_handler)

    _listener = QueueListener(queue_obj, *handlers, respect_handler_level=True)
    _listener.start()

    # 第三方库默认降噪，避免业务日志被淹没。
    for noisy in ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return log_file


def shutdown_logging() -> None:
    """停止队列监听器并关闭底层句柄。"""
    global _listener
    if _listener is None:
        return
    try:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
    finally:
        _listener = None
