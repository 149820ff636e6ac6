"""Login tokens: AES-encrypted user ids checked against a token store."""

from __future__ import annotations

import os
import sys
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from .aescbc import CryptoError, aes_cbc_decrypt, aes_cbc_encrypt
from .rpc_message import ErrorCode, new_error

ERROR_TOKEN_MISSING = "禁止访问"
ERROR_TOKEN_MALFORMED = "令牌错误"
ERROR_TOKEN_NOT_VALID_YET = "令牌不存在"
ERROR_TOKEN_EXPIRED = "令牌过期"
ERROR_TOKEN_INVALID = "令牌无效"

TOKEN_KEY = "__JWT_TOKEN"
CONTEXT_USER_KEY = "__CONTEXT_USER"

DEFAULT_EXPIRE = 3600 * 24 * 7
CLEAR_INTERVAL = 3600 * 10

APP_NAME = Path(sys.argv[0]).stem if sys.argv and sys.argv[0] else "app"

_KEY_SIZES = (16, 24, 32)
_crypto_key: bytes = os.urandom(16)


def _now() -> int:
    return int(time.time())


@dataclass
class Token:
    """An issued token: the user id, its expiry (Unix seconds) and the token text."""

    id: str = ""
    expires_at: int = 0
    token: str = ""

    def expired(self) -> bool:
        return self.expires_at < _now()


class TokenStore(Protocol):
    def set_token(self, key: str, token: Token) -> None: ...

    def get_token(self, key: str) -> Token | None: ...

    def del_token(self, key: str) -> None: ...

    def clear_expired_token(self) -> None: ...


class MemoryTokenStore:
    """Thread-safe in-memory token store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, Token] = {}

    def set_token(self, key: str, token: Token) -> None:
        with self._lock:
            self._tokens[key] = token

    def get_token(self, key: str) -> Token | None:
        """Return the stored token or ``None``."""
        with self._lock:
            return self._tokens.get(key)

    def del_token(self, key: str) -> None:
        with self._lock:
            self._tokens.pop(key, None)

    def clear_expired_token(self) -> None:
        """Drop every expired token."""
        with self._lock:
            for key in [k for k, t in self._tokens.items() if t.expired()]:
                del self._tokens[key]


def prefix_jwt_key() -> str:
    """Prefix shared by all token store keys."""
    return f"{APP_NAME}-jwt"


def jwt_key(id_: str) -> str:
    """Store key for the token of user ``id_``."""
    return f"{prefix_jwt_key()}:{id_}"


def set_global_crypto_key(key: str | bytes) -> None:
    """Replace the key used to encrypt ids into tokens; it must be 16, 24 or 32 bytes."""
    global _crypto_key
    raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    if len(raw) not in _KEY_SIZES:
        raise ValueError("jwt crypto key length must be 16, 24 or 32")
    _crypto_key = raw


def generate_token(id_: str) -> str:
    """Encrypt ``id_`` into URL-safe token text."""
    return aes_cbc_encrypt(_crypto_key, id_, True).decode("ascii")


def id_from_token(token: str) -> str:
    """Decrypt the user id from a token; an empty string when it cannot be read."""
    try:
        return aes_cbc_decrypt(_crypto_key, token, True).decode("utf-8")
    except (CryptoError, UnicodeDecodeError):
        return ""


class JWT:
    """Issues, verifies, refreshes and revokes login tokens."""

    def __init__(
        self,
        expire: int = DEFAULT_EXPIRE,
        store: TokenStore | None = None,
        clear_interval: float = CLEAR_INTERVAL,
    ) -> None:
        self.expire = expire or DEFAULT_EXPIRE
        self.store: TokenStore = store if store is not None else MemoryTokenStore()
        self._clear_interval = clear_interval
        self._stop = threading.Event()
        self._cleaner = threading.Thread(target=self._run_cleaner, daemon=True)
        self._cleaner.start()

    def _run_cleaner(self) -> None:
        while not self._stop.wait(self._clear_interval):
            self.store.clear_expired_token()

    def close(self) -> None:
        """Stop the background cleaner."""
        self._stop.set()

    def after_login(self, id_: str) -> Token:
        """Issue and store a fresh token for ``id_``."""
        token = Token(id=id_, expires_at=_now() + self.expire, token=generate_token(id_))
        self.store.set_token(jwt_key(id_), token)
        return token

    def logout(self, id_: str) -> None:
        self.store.del_token(jwt_key(id_))

    def verify(
        self,
        headers: Mapping[str, str],
        query: Mapping[str, str],
        call: Callable[[str], Any],
    ) -> Any:
        """Check the request's token and return the user that ``call`` loads for its id.

        The token is taken from the Authorization header, the ``token`` query
        parameter or the ``token`` header, in that order. Raises
        :class:`~glibkit.rpc_message.RPCError` with code 401 when it is
        missing, malformed, unknown, expired or superseded.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        text = lowered.get("authorization") or query.get("token") or lowered.get("token") or ""
        text = text.replace("Bearer ", "")
        if not text:
            raise new_error(ErrorCode.AUTHORIZATION, ERROR_TOKEN_MISSING)
        id_ = id_from_token(text)
        if not id_:
            raise new_error(ErrorCode.AUTHORIZATION, ERROR_TOKEN_MALFORMED)
        token = self.store.get_token(jwt_key(id_))
        if token is None:
            raise new_error(ErrorCode.AUTHORIZATION, ERROR_TOKEN_NOT_VALID_YET)
        if token.expired():
            raise new_error(ErrorCode.AUTHORIZATION, ERROR_TOKEN_EXPIRED)
        if token.token != text:
            raise new_error(ErrorCode.AUTHORIZATION, ERROR_TOKEN_INVALID)
        user = call(token.id)
        self._refresh_token(token)
        return user

    def _refresh_token(self, token: Token) -> None:
        if token.expires_at - _now() > self.expire / 2:
            return
        token.expires_at = _now() + self.expire
        self.store.set_token(jwt_key(token.id), token)