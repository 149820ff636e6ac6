"""Per-request state for the JSON-RPC server: body parsing, handler chain and replies."""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from .rpc_message import ErrorCode, RPCError, RPCMessage, json_decode, json_encode, new_error

BODY_CONTEXT_KEY = "___j2rpc.body"
TIME_BEGIN_CONTEXT_KEY = "___j2rpc.timeBegin"
MAX_REQUEST_CONTENT_LENGTH = 5 << 20

STATUS_OK = 200
STATUS_BAD_REQUEST = 400
STATUS_METHOD_NOT_ALLOWED = 405
STATUS_REQUEST_ENTITY_TOO_LARGE = 413
STATUS_INTERNAL_SERVER_ERROR = 500

_log = logging.getLogger(__name__)

Handler = Callable[["RPCContext"], None]


@dataclass
class RPCRequest:
    """An incoming HTTP request as seen by the RPC layer."""

    method: str = "POST"
    body: bytes | str | BinaryIO | None = b""
    content_length: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    path: str = "/"

    def read_body(self) -> bytes:
        """Return the whole body as bytes."""
        body = self.body
        if body is None:
            return b""
        if isinstance(body, str):
            return body.encode("utf-8")
        if isinstance(body, (bytes, bytearray, memoryview)):
            return bytes(body)
        data = body.read()
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)


@dataclass
class RPCResponse:
    """Collects the status, headers and body written for a request."""

    status: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: bytearray = field(default_factory=bytearray)

    def write_header(self, status: int) -> None:
        if self.status is None:
            self.status = status

    def write(self, data: bytes) -> None:
        if self.status is None:
            self.status = STATUS_OK
        self.body.extend(data)


def _validate_request(request: RPCRequest) -> tuple[int, str] | None:
    method = request.method.upper()
    if method == "OPTIONS":
        return None
    if method != "POST":
        return STATUS_METHOD_NOT_ALLOWED, "method isn't allowed"
    length = request.content_length
    if length is not None and length > MAX_REQUEST_CONTENT_LENGTH:
        return (
            STATUS_REQUEST_ENTITY_TOO_LARGE,
            f"content length too large ({length}>{MAX_REQUEST_CONTENT_LENGTH})",
        )
    return None


def _as_bytes(data: Any) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


class RPCContext:
    """State shared by the handlers that serve one RPC request."""

    def __init__(
        self,
        request: RPCRequest,
        response: RPCResponse | None = None,
        server: Any = None,
        context: Any = None,
    ) -> None:
        self._lock = threading.RLock()
        self._handlers: list[Handler] = []
        self._index = 0
        self._store: dict[str, Any] = {}
        self._msg: RPCMessage | None = None
        self._abort = False
        self._wrote = False
        self.request = request
        self.response = response if response is not None else RPCResponse()
        self.server = server
        self.context = context

    def _option(self, name: str) -> Callable[[bytes], bytes] | None:
        option = getattr(self.server, "option", None)
        return getattr(option, name, None) if option is not None else None

    def abort(self) -> None:
        """Stop the handler chain; later calls to :meth:`next` do nothing."""
        with self._lock:
            self._abort = True

    def is_abort(self) -> bool:
        with self._lock:
            return self._abort

    def add_handler(self, *args: Handler) -> None:
        """Append handlers to the chain."""
        with self._lock:
            self._handlers.extend(args)

    def get_value(self, key: str) -> Any:
        """Return a stored value; raise ``KeyError`` when it is missing."""
        with self._lock:
            return self._store[key]

    def set_value(self, key: str, value: Any) -> None:
        with self._lock:
            self._store[key] = value

    def msg(self) -> RPCMessage:
        """A copy of the current message, or an empty one with id ``0``."""
        with self._lock:
            current = self._msg
        if current is None:
            return RPCMessage(id="0")
        return current.copy()

    def set_msg(self, msg: RPCMessage) -> None:
        with self._lock:
            self._msg = msg.copy()

    def next(self) -> None:
        """Run the next handler in the chain unless the chain is aborted."""
        if self.is_abort():
            return
        with self._lock:
            if self._index >= len(self._handlers):
                return
            handler = self._handlers[self._index]
            self._index += 1
        handler(self)

    def wrote(self) -> bool:
        with self._lock:
            return self._wrote

    def _set_wrote(self) -> None:
        with self._lock:
            self._wrote = True

    def read_body(self) -> None:
        """Parse the request body into the message.

        On failure a plain-text error reply is written and the chain aborted;
        callers check :meth:`wrote` afterwards.
        """
        with self._lock:
            if self._msg is not None:
                return
        failure = _validate_request(self.request)
        if failure is not None:
            self.stop_write_string_status(*failure)
            return
        if self.request.body is None:
            self.stop_write_string_status(STATUS_BAD_REQUEST, "missing request body")
            return
        try:
            body = self.request.read_body()
        except OSError as exc:
            self.stop_write_string_status(STATUS_BAD_REQUEST, str(exc))
            return
        after_read = self._option("caller_after_read_body")
        if after_read is not None:
            try:
                body = _as_bytes(after_read(body.strip()))
            except Exception as exc:  # noqa: BLE001 - user callback
                self.stop_write_string_status(STATUS_BAD_REQUEST, str(exc))
                return
        self.set_value(BODY_CONTEXT_KEY, body)
        try:
            msg = RPCMessage.from_dict(json_decode(body))
        except ValueError as exc:
            self.stop_write_string_status(STATUS_BAD_REQUEST, str(exc))
            return
        if not msg.has_valid_id():
            self.stop_write_string_status(STATUS_BAD_REQUEST, "invalid request id")
            return
        msg.method = msg.method.strip()
        if not msg.method:
            self.stop_write_string_status(STATUS_BAD_REQUEST, "missing method")
            return
        msg.format_method()
        self.set_msg(msg)

    def stop_write_string_status(self, status: int, text: str) -> None:
        """Abort the chain and reply with ``status`` and plain ``text``, once."""
        if self.wrote():
            return
        self.abort()
        self.response.write_header(status)
        self.response.write(text.encode("utf-8"))
        self._set_wrote()

    def write_response(self, *args: Any) -> None:
        """Write the JSON-RPC reply.

        Arguments may be an :class:`RPCError`, any other exception (reported
        as an internal error) or raw JSON bytes used as the result.
        """
        if self.wrote():
            return
        msg = self.msg()
        for arg in args:
            if isinstance(arg, RPCError):
                msg.error = new_error(arg.code, arg.message, arg.data)
            elif isinstance(arg, BaseException):
                msg.error = new_error(ErrorCode.INTERNAL, str(arg))
            elif isinstance(arg, (bytes, bytearray, memoryview)):
                msg.result = bytes(arg)
        if msg.error is None and msg.result is None:
            msg.result = json_encode("Success")
        if msg.error is not None:
            msg.result = None
        self.set_msg(msg)
        msg.method = ""
        msg.params = None
        try:
            data = json_encode(msg.to_dict())
        except (ValueError, TypeError) as exc:
            self.stop_write_string_status(STATUS_INTERNAL_SERVER_ERROR, str(exc))
            return
        before_write = self._option("caller_before_write")
        if before_write is not None:
            try:
                data = _as_bytes(before_write(data.strip()))
            except Exception as exc:  # noqa: BLE001 - user callback
                self.stop_write_string_status(STATUS_INTERNAL_SERVER_ERROR, str(exc))
                return
        headers = self.response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Content-Length"] = str(len(data))
        headers["Content-Type"] = "application/json; charset=utf-8"
        self.response.write_header(STATUS_OK)
        self.response.write(data)
        self._set_wrote()


def parse_positional_arguments(
    raw_args: str | bytes | None, params: Iterable[inspect.Parameter]
) -> list[Any]:
    """Decode a JSON array of positional arguments for ``params``.

    Missing trailing arguments take the parameter default, or ``None``.
    Raises ``ValueError`` for non-array input, too many arguments or bad JSON.
    """
    params = list(params)
    text = raw_args.decode("utf-8") if isinstance(raw_args, (bytes, bytearray)) else (raw_args or "")
    args: list[Any] = []
    if text.strip():
        value = json_decode(text)
        if isinstance(value, list):
            if len(value) > len(params):
                raise ValueError(f"too many arguments, want at most {len(params)}")
            args = value
        elif value is not None:
            raise ValueError("non-array args")
    for param in params[len(args):]:
        args.append(None if param.default is inspect.Parameter.empty else param.default)
    return args


def recover() -> Handler:
    """Handler that turns an exception raised further down the chain into an internal error reply."""

    def handler(ctx: RPCContext) -> None:
        try:
            ctx.next()
        except Exception as exc:  # noqa: BLE001 - everything becomes an RPC error
            ctx.abort()
            _log.exception("panic: %s", exc)
            ctx.write_response(new_error(ErrorCode.INTERNAL, f"panic: {exc}"))

    return handler


__all__: Sequence[str] = (
    "BODY_CONTEXT_KEY",
    "TIME_BEGIN_CONTEXT_KEY",
    "MAX_REQUEST_CONTENT_LENGTH",
    "RPCRequest",
    "RPCResponse",
    "RPCContext",
    "parse_positional_arguments",
    "recover",
)