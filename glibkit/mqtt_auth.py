"""MQTT broker HTTP auth/ACL hooks, topic options and payload encoding."""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

_SUPER_PEER_PREFIXES = ("192", "10", "172", "127", "::1", "localhost", "fe80", "fd00")

_JSON_FIELDS = {
    "username": "username",
    "password": "password",
    "clientid": "client_id",
    "peerhost": "peer_host",
    "proto_name": "proto_name",
    "mountpoint": "mount_point",
    "action": "action",
    "topic": "topic",
    "qos": "qos",
    "retain": "retain",
}


@dataclass
class AuthRequest:
    """An authentication or ACL request sent by the broker."""

    username: str = ""
    password: str = ""
    client_id: str = ""
    peer_host: str = ""
    proto_name: str = ""
    mount_point: str = ""
    action: str = ""
    topic: str = ""
    qos: str = ""
    retain: str = ""

    def is_superuser(self) -> bool:
        """A ``sys_`` user connecting from a local or private address."""
        return self.username.startswith("sys_") and self.peer_host.startswith(_SUPER_PEER_PREFIXES)

    @classmethod
    def from_dict(cls, data: Any) -> AuthRequest:
        """Build a request from decoded JSON; unknown keys are ignored."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("auth request must be a JSON object")
        values: dict[str, str] = {}
        for key, attr in _JSON_FIELDS.items():
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"field {key!r} must be a string")
            values[attr] = value
        return cls(**values)


@dataclass
class AuthResult:
    """The broker's verdict: ``allow`` or ``deny``."""

    result: str
    is_superuser: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"result": self.result}
        if self.is_superuser:
            out["is_superuser"] = True
        return out


MqttFunc = Callable[[Any, AuthRequest], AuthResult]


@dataclass
class AuthAPI:
    """Decides authentication and ACL requests, with optional custom hooks."""

    auth_func: MqttFunc | None = None
    acl_func: MqttFunc | None = None
    is_super_func: Callable[[AuthRequest], bool] | None = None

    def _is_super(self, request: AuthRequest) -> bool:
        if self.is_super_func is not None:
            return self.is_super_func(request)
        return request.is_superuser()

    def acl(self, ctx: Any, request: AuthRequest) -> AuthResult:
        if (
            self._is_super(request)
            or request.topic.endswith("/pong")
            or request.action == "subscribe"
        ):
            return AuthResult("allow")
        if self.acl_func is not None:
            return self.acl_func(ctx, request)
        return AuthResult("deny")

    def auth(self, ctx: Any, request: AuthRequest) -> AuthResult:
        if self._is_super(request):
            return AuthResult("allow", is_superuser=True)
        if self.auth_func is not None:
            return self.auth_func(ctx, request)
        return AuthResult("deny")

    def handle(self, path: str, body: bytes | str) -> tuple[int, dict[str, Any]]:
        """Serve ``/mqtt/auth`` or ``/mqtt/acl`` and return the status and JSON reply.

        The hooks receive ``None`` as their context.
        """
        route = path.rstrip("/").removeprefix("/mqtt")
        handlers = {"/auth": self.auth, "/acl": self.acl}
        fn = handlers.get(route)
        if fn is None:
            return 404, {"code": 404, "msg": f"not found: {path}"}
        try:
            text = body.decode("utf-8") if isinstance(body, (bytes, bytearray)) else body
            request = AuthRequest.from_dict(json.loads(text))
        except (ValueError, UnicodeDecodeError) as exc:
            return 400, {"code": 400, "msg": str(exc)}
        try:
            result = fn(None, request)
        except Exception as exc:  # noqa: BLE001 - hook failures become 500 replies
            return 500, {"code": 500, "msg": str(exc)}
        return 200, result.to_dict()


@dataclass
class TopicOption:
    """Publish/subscribe settings: wait timeout in seconds, retain flag and QoS."""

    timeout: float = 2.0
    retain: bool = False
    qos: int = 1


class _TopicDefaults:
    """Holds the option that every resolution starts from."""

    current: TopicOption = TopicOption()


def set_global_topic_option(option: TopicOption) -> None:
    """Replace the option that :func:`resolve_topic_option` starts from."""
    if not isinstance(option, TopicOption):
        raise TypeError(f"expected TopicOption, got {type(option).__name__}")
    _TopicDefaults.current = option


def resolve_topic_option(*args: Any) -> TopicOption:
    """Combine the global option with overrides.

    A :class:`TopicOption` replaces the whole option, a float or ``timedelta``
    sets the timeout, a bool sets retain and an int sets the QoS. Other
    arguments are ignored. The global option is never modified.
    """
    option = dataclasses.replace(_TopicDefaults.current)
    for arg in args:
        if isinstance(arg, TopicOption):
            option = dataclasses.replace(arg)
        elif isinstance(arg, timedelta):
            option.timeout = arg.total_seconds()
        elif isinstance(arg, bool):
            option.retain = arg
        elif isinstance(arg, int):
            if not 0 <= arg <= 255:
                raise ValueError(f"qos out of range: {arg}")
            option.qos = arg
        elif isinstance(arg, float):
            option.timeout = arg
    return option


def encode_payload(payload: Any) -> bytes:
    """Bytes pass through, text is UTF-8 encoded, anything else becomes JSON."""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    try:
        text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return b""
    text = text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
    return text.encode("utf-8")