import json
from datetime import timedelta

import pytest

from glibkit.mqtt_auth import (
    AuthAPI,
    AuthRequest,
    AuthResult,
    TopicOption,
    encode_payload,
    resolve_topic_option,
    set_global_topic_option,
)


@pytest.mark.parametrize(
    "peer_host,username,expected",
    [
        ("192.168.1.5", "sys_admin", True),
        ("127.0.0.1", "sys_app", True),
        ("localhost", "sys_x", True),
        ("192.168.1.5", "admin", False),
        ("8.8.8.8", "sys_admin", False),
    ],
)
def test_is_superuser(peer_host, username, expected):
    assert AuthRequest(username=username, peer_host=peer_host).is_superuser() is expected


def test_from_dict_maps_json_names():
    request = AuthRequest.from_dict(
        {"username": "u", "clientid": "c", "peerhost": "h", "mountpoint": "m", "extra": 1}
    )
    assert request == AuthRequest(username="u", client_id="c", peer_host="h", mount_point="m")


def test_from_dict_rejects_non_string():
    with pytest.raises(ValueError):
        AuthRequest.from_dict({"username": 5})


def test_auth_result_to_dict():
    assert AuthResult("deny").to_dict() == {"result": "deny"}
    assert AuthResult("allow", True).to_dict() == {"result": "allow", "is_superuser": True}


def test_auth_superuser_allowed():
    result = AuthAPI().auth(None, AuthRequest(username="sys_a", peer_host="10.0.0.1"))
    assert result == AuthResult("allow", is_superuser=True)


def test_auth_default_deny_and_hook():
    request = AuthRequest(username="bob")
    assert AuthAPI().auth(None, request).result == "deny"
    api = AuthAPI(auth_func=lambda ctx, req: AuthResult("allow"))
    assert api.auth(None, request).result == "allow"


@pytest.mark.parametrize(
    "request_",
    [
        AuthRequest(username="sys_a", peer_host="172.16.0.1", topic="t"),
        AuthRequest(username="bob", topic="dev/pong"),
        AuthRequest(username="bob", action="subscribe", topic="t"),
    ],
)
def test_acl_allowed(request_):
    assert AuthAPI().acl(None, request_).result == "allow"


def test_acl_default_deny_and_hook():
    request = AuthRequest(username="bob", action="publish", topic="t")
    assert AuthAPI().acl(None, request).result == "deny"
    seen = []

    def hook(ctx, req):
        seen.append(req.topic)
        return AuthResult("allow")

    assert AuthAPI(acl_func=hook).acl(None, request).result == "allow"
    assert seen == ["t"]


def test_is_super_func_override():
    api = AuthAPI(is_super_func=lambda req: req.username == "root")
    assert api.auth(None, AuthRequest(username="root")).is_superuser is True
    assert api.auth(None, AuthRequest(username="sys_a", peer_host="127.0.0.1")).result == "deny"


def test_handle_auth():
    body = json.dumps({"username": "sys_a", "peerhost": "127.0.0.1"})
    status, reply = AuthAPI().handle("/mqtt/auth", body)
    assert status == 200
    assert reply == {"result": "allow", "is_superuser": True}


def test_handle_acl_bytes():
    body = json.dumps({"username": "bob", "topic": "x/pong"}).encode()
    assert AuthAPI().handle("/mqtt/acl", body) == (200, {"result": "allow"})


def test_handle_bad_json():
    status, reply = AuthAPI().handle("/mqtt/auth", "{not json")
    assert status == 400
    assert reply["code"] == 400


def test_handle_hook_error():
    def boom(ctx, req):
        raise RuntimeError("broken")

    status, reply = AuthAPI(auth_func=boom).handle("/mqtt/auth", "{}")
    assert (status, reply) == (500, {"code": 500, "msg": "broken"})


def test_handle_unknown_path():
    status, _ = AuthAPI().handle("/mqtt/other", "{}")
    assert status == 404


def test_resolve_topic_option_defaults():
    assert resolve_topic_option() == TopicOption(timeout=2.0, retain=False, qos=1)


def test_resolve_topic_option_overrides_do_not_touch_global():
    option = resolve_topic_option(True, 2, timedelta(seconds=5))
    assert option == TopicOption(timeout=5.0, retain=True, qos=2)
    assert resolve_topic_option() == TopicOption()


def test_resolve_topic_option_replacement_and_global():
    custom = TopicOption(timeout=1.5, retain=True, qos=0)
    assert resolve_topic_option(custom) == custom
    set_global_topic_option(custom)
    try:
        assert resolve_topic_option(0.5).timeout == 0.5
        assert resolve_topic_option().qos == 0
    finally:
        set_global_topic_option(TopicOption())


def test_resolve_topic_option_bad_qos():
    with pytest.raises(ValueError):
        resolve_topic_option(300)


def test_encode_payload():
    assert encode_payload(b"\x00\x01") == b"\x00\x01"
    assert encode_payload("hi") == b"hi"
    assert json.loads(encode_payload({"a": [1, 2]})) == {"a": [1, 2]}
    assert encode_payload(None) == b"null"
    assert encode_payload("<") == b"<"
    assert encode_payload(["<"]) == b'["\\u003c"]'