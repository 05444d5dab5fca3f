"""日志上下文：基于 contextvars 透传消息与作业标识。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

_UNSET = object()

CONTEXT_FIELDS: tuple[str, ...] = ("message_id", "ecosystem", "package", "version", "phase")

_vars: dict[str, ContextVar[str | None]] = {
    key: ContextVar(f"log_{key}", default=None) for key in CONTEXT_FIELDS
}


def get_log_context() -> dict[str, str | None]:
    """返回当前线程下的日志上下文字段。"""
    return {key: var.get() for key, var in _vars.items()}


@contextmanager
def bind_log_context(
    *,
    message_id: str | None | object = _UNSET,
    ecosystem: str | None | object = _UNSET,
    package: str | None | object = _UNSET,
    version: str | None | object = _UNSET,
    phase: str | None | object = _UNSET,
) -> Iterator[None]:
    """在上下文范围内绑定日志字段，并在退出时自动恢复。"""
    values = {
        "message_id": message_id,
        "ecosystem": ecosystem,
        "package": package,
        "version": version,
        "phase": phase,
    }
    tokens: list[tuple[ContextVar[Any], Token[Any]]] = []
    for key, value in values.items():
        if value is _UNSET:
            continue
        var = _vars[key]
        tokens.append((var, var.set(value)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
