import secrets
import time

import pytest

from glibkit.jwt import (
    DEFAULT_EXPIRE,
    ERROR_TOKEN_EXPIRED,
    ERROR_TOKEN_INVALID,
    ERROR_TOKEN_MALFORMED,
    ERROR_TOKEN_MISSING,
    ERROR_TOKEN_NOT_VALID_YET,
    JWT,
    MemoryTokenStore,
    Token,
    generate_token,
    id_from_token,
    jwt_key,
    set_global_crypto_key,
)
from glibkit.rpc_message import ErrorCode, RPCError


@pytest.fixture
def jwt():
    instance = JWT(store=MemoryTokenStore())
    yield instance
    instance.close()


def load_user(id_):
    return {"id": id_}


def test_token_round_trip():
    assert id_from_token(generate_token("user-1")) == "user-1"


def test_id_from_garbage_is_empty():
    assert id_from_token("token") == ""


def test_set_global_crypto_key_rejects_bad_length():
    with pytest.raises(ValueError):
        set_global_crypto_key("secret")


def test_set_global_crypto_key_then_round_trip():
    set_global_crypto_key(secrets.token_hex(16))
    assert id_from_token(generate_token("abc")) == "abc"


def test_after_login_stores_token(jwt):
    issued = jwt.after_login("7")
    assert jwt.store.get_token(jwt_key("7")) is issued
    assert issued.id == "7"
    assert not issued.expired()


def test_verify_with_bearer_header(jwt):
    issued = jwt.after_login("7")
    user = jwt.verify({"Authorization": f"Bearer {issued.token}"}, {}, load_user)
    assert user == {"id": "7"}


def test_verify_with_query_and_token_header(jwt):
    issued = jwt.after_login("8")
    assert jwt.verify({}, {"token": issued.token}, load_user) == {"id": "8"}
    assert jwt.verify({"token": issued.token}, {}, load_user) == {"id": "8"}


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer "}],
)
def test_verify_missing(jwt, headers):
    with pytest.raises(RPCError) as info:
        jwt.verify(headers, {}, load_user)
    assert info.value.code == ErrorCode.AUTHORIZATION
    assert info.value.message == ERROR_TOKEN_MISSING


def test_verify_malformed(jwt):
    with pytest.raises(RPCError) as info:
        jwt.verify({"Authorization": "Bearer token"}, {}, load_user)
    assert info.value.message == ERROR_TOKEN_MALFORMED


def test_verify_unknown_id(jwt):
    with pytest.raises(RPCError) as info:
        jwt.verify({}, {"token": generate_token("nobody")}, load_user)
    assert info.value.message == ERROR_TOKEN_NOT_VALID_YET


def test_verify_expired(jwt):
    issued = jwt.after_login("9")
    issued.expires_at = int(time.time()) - 10
    with pytest.raises(RPCError) as info:
        jwt.verify({}, {"token": issued.token}, load_user)
    assert info.value.message == ERROR_TOKEN_EXPIRED


def test_verify_superseded_token(jwt):
    first = jwt.after_login("10")
    jwt.after_login("10")
    with pytest.raises(RPCError) as info:
        jwt.verify({}, {"token": first.token}, load_user)
    assert info.value.message == ERROR_TOKEN_INVALID


def test_verify_propagates_call_error(jwt):
    issued = jwt.after_login("11")

    def refuse(_id):
        raise RPCError(ErrorCode.FORBIDDEN, "no")

    with pytest.raises(RPCError) as info:
        jwt.verify({}, {"token": issued.token}, refuse)
    assert info.value.code == ErrorCode.FORBIDDEN


def test_verify_refreshes_near_expiry(jwt):
    issued = jwt.after_login("12")
    issued.expires_at = int(time.time()) + 10
    jwt.verify({}, {"token": issued.token}, load_user)
    stored = jwt.store.get_token(jwt_key("12"))
    assert stored.expires_at > int(time.time()) + DEFAULT_EXPIRE // 2


def test_verify_keeps_fresh_expiry(jwt):
    issued = jwt.after_login("13")
    before = issued.expires_at
    jwt.verify({}, {"token": issued.token}, load_user)
    assert jwt.store.get_token(jwt_key("13")).expires_at == before


def test_logout_removes_token(jwt):
    issued = jwt.after_login("14")
    jwt.logout("14")
    assert jwt.store.get_token(jwt_key("14")) is None
    with pytest.raises(RPCError):
        jwt.verify({}, {"token": issued.token}, load_user)


def test_memory_store_clear_expired():
    store = MemoryTokenStore()
    now = int(time.time())
    store.set_token("old", Token(id="a", expires_at=now - 5))
    store.set_token("new", Token(id="b", expires_at=now + 500))
    store.clear_expired_token()
    assert store.get_token("old") is None
    assert store.get_token("new").id == "b"


def test_memory_store_del():
    store = MemoryTokenStore()
    store.set_token("k", Token(id="a"))
    store.del_token("k")
    store.del_token("k")
    assert store.get_token("k") is None