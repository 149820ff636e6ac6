"""JSON-RPC message, error types and JSON helpers."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

SEPARATOR = "."


class ErrorCode(IntEnum):
    """Error codes used in RPC responses."""

    PARSE = -32700
    INVALID_REQUEST = -32600
    NO_METHOD = -32601
    BAD_PARAMS = -32602
    INTERNAL = -32603
    SERVER = -32000
    AUTHORIZATION = 401
    FORBIDDEN = 403


class RPCError(Exception):
    """An RPC error carrying a code, a message and optional data."""

    def __init__(self, code: int, message: str = "", data: Any = None) -> None:
        super().__init__(message)
        self.code = int(code)
        self.message = message
        self.data = data

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"RPCError(code={self.code!r}, message={self.message!r}, data={self.data!r})"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code}
        if self.message:
            out["message"] = self.message
        if self.data is not None:
            out["data"] = self.data
        return out


def new_error(code: int, message: str, *args: Any) -> RPCError:
    """Create an :class:`RPCError`; the first extra argument becomes its data."""
    return RPCError(code, message, args[0] if args else None)


def method_name_provider(name: str) -> str:
    """Lower-case the first character of a method name."""
    if not name:
        raise ValueError("empty method name")
    return name[:1].lower() + name[1:]


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def json_encode(value: Any) -> bytes:
    """Encode ``value`` as compact JSON without HTML escaping, newline-terminated."""
    text = json.dumps(
        value,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
        default=_json_default,
    )
    text = text.replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")
    return (text + "\n").encode("utf-8")


def json_decode(data: bytes | str) -> Any:
    """Decode the first JSON value in ``data``; anything after it is ignored."""
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    text = text.lstrip(" \t\r\n")
    value, _ = json.JSONDecoder().raw_decode(text)
    return value


def _raw_text(raw: str | bytes | None) -> str:
    if raw is None:
        return ""
    return raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw


def _dump_raw(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


@dataclass
class RPCMessage:
    """A JSON-RPC request or response; id, params and result hold raw JSON text."""

    id: str | bytes | None = None
    version: str = ""
    method: str = ""
    params: str | bytes | None = None
    result: str | bytes | None = None
    error: RPCError | None = None

    def format_method(self) -> None:
        """Normalise each dot-separated part of the method name."""
        if not self.method:
            return
        self.method = SEPARATOR.join(
            method_name_provider(part) for part in self.method.split(SEPARATOR)
        )

    def has_valid_id(self) -> bool:
        """True when an id is present and is neither an object nor an array."""
        raw = _raw_text(self.id)
        return bool(raw) and raw[0] not in "{["

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if _raw_text(self.id):
            out["id"] = json_decode(self.id)
        if self.version:
            out["jsonrpc"] = self.version
        if self.method:
            out["method"] = self.method
        if _raw_text(self.params):
            out["params"] = json_decode(self.params)
        if _raw_text(self.result):
            out["result"] = json_decode(self.result)
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Any) -> RPCMessage:
        """Build a message from decoded JSON; ``None`` yields an empty message."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("cannot decode non-object into RPC message")
        version = data.get("jsonrpc") or ""
        method = data.get("method") or ""
        if not isinstance(version, str):
            raise ValueError("jsonrpc must be a string")
        if not isinstance(method, str):
            raise ValueError("method must be a string")
        return cls(
            id=_dump_raw(data["id"]) if "id" in data else None,
            version=version,
            method=method,
            params=_dump_raw(data["params"]) if "params" in data else None,
            result=_dump_raw(data["result"]) if "result" in data else None,
            error=_error_from_dict(data.get("error")),
        )

    def copy(self) -> RPCMessage:
        return dataclasses.replace(self)


def _error_from_dict(data: Any) -> RPCError | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError("error must be an object")
    code = data.get("code", 0)
    if isinstance(code, bool) or not isinstance(code, int):
        raise ValueError("error code must be an integer")
    message = data.get("message") or ""
    if not isinstance(message, str):
        raise ValueError("error message must be a string")
    return RPCError(code, message, data.get("data"))