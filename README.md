# glibkit

Building blocks for small backend services:

- `glibkit.aescbc`: AES-CBC encryption with PKCS#5 padding and a random IV placed in front of the ciphertext. Output is upper-case hex by default. Pass `use_base64=True` to get URL-safe base64 without padding. Errors raise `CryptoError`.
- `glibkit.env`: `get_env(key, fallback)` and `load_environment(*files, root_dir=None)`. The second function loads `.env` files from `.`, `..`, the root directory, its parent, `etc/` and `data/`, then any files you pass. It never overrides variables that are already set.
- `glibkit.keylock`: `KeyLock` gives one lock per key. Use `lock(key)`, which returns a release function, or the `locked(key)` context manager. `get_num(key)` returns the count, and `len()` returns the number of keys in use. `wait_signal()` blocks until SIGINT, SIGTERM, SIGQUIT or SIGTSTP arrives.
- `glibkit.rpc_message`: `RPCMessage`, `RPCError`, `ErrorCode`, `new_error`, and the JSON helpers `json_encode` and `json_decode`.
- `glibkit.rpc_context`: `RPCContext` holds the state of one JSON-RPC request. It reads and validates the body and runs a handler chain through `next()`. It writes the JSON-RPC reply or a plain-text error into an `RPCResponse`. The module also has `parse_positional_arguments` and the `recover()` handler, which turns exceptions into internal-error replies.
- `glibkit.jwt`: opaque bearer tokens. Each token is the user id encrypted with AES. Expiry slides forward when a token is used. `MemoryTokenStore` is the default store, and any object with the same four methods can replace it.
- `glibkit.mqtt_auth`: `AuthAPI` answers broker auth and ACL requests on `/mqtt/auth` and `/mqtt/acl`. The module also has `TopicOption` and `resolve_topic_option` for publish and subscribe settings, and `encode_payload`.
- `glibkit.config`: `Config` reads a TOML file on top of `GLOBAL_DEFAULTS`. If the file is missing, it is created. Changes go to a `<file>_temp.toml` file, which replaces the config file on the next `load()`. The file is polled for changes. `load_config()` loads the environment files, honours `CONFIG_FILE` and loads the shared `C` instance.
- `glibkit.daemon`: shell helpers that find and kill processes by name or port, and the `glibkit` command line.

## Installation

```
pip install glibkit
```

## Examples

Encrypt and decrypt:

```python
import os
from glibkit.aescbc import aes_cbc_encrypt, aes_cbc_decrypt

key = os.urandom(16)
box = aes_cbc_encrypt(key, b"hello")
assert aes_cbc_decrypt(key, box) == b"hello"
```

Handle a JSON-RPC request:

```python
from glibkit.rpc_context import RPCContext, RPCRequest, recover
from glibkit.rpc_message import json_decode, json_encode

def add(ctx):
    ctx.read_body()
    if ctx.wrote():
        return
    a, b = json_decode(ctx.msg().params)
    ctx.write_response(json_encode(a + b))

ctx = RPCContext(RPCRequest(body=b'{"id":1,"method":"Add","params":[1,2]}'))
ctx.add_handler(recover(), add)
ctx.next()
print(ctx.response.status, bytes(ctx.response.body))
# 200 b'{"id":1,"result":3}\n'
```

Issue and check a token:

```python
from glibkit.jwt import JWT

auth = JWT()
issued = auth.after_login("42")
user = auth.verify({"Authorization": "Bearer " + issued.token}, {}, lambda uid: {"id": uid})
```

When a token is missing, malformed, unknown, expired or replaced by a newer one, `verify` raises `RPCError` with code 401.

Lock per key:

```python
from glibkit.keylock import KeyLock

locks = KeyLock()
with locks.locked("user:1"):
    ...
```

Answer a broker auth request:

```python
from glibkit.mqtt_auth import AuthAPI

status, reply = AuthAPI().handle("/mqtt/auth", b'{"username":"sys_app","peerhost":"127.0.0.1"}')
# 200, {"result": "allow", "is_superuser": True}
```

Read configuration:

```python
from glibkit.config import Config

conf = Config(root_dir="/srv/app", watch=False)
conf.load()          # creates /srv/app/conf.toml from the defaults if missing
conf.get("server.host")   # "80"
```

## Command line

```
glibkit version
glibkit start [-d]
glibkit stop
```

`start` first runs `daemon.hooks.before_start`, which is `load_config` by default. It then calls `daemon.hooks.start` if one is set. `start -d` stops any running daemon and starts the program again in the background with `-x`. Its output goes to `logs/runtime.log`. `stop` runs `daemon.hooks.before_stop` and then kills the daemon. The process helpers call `ps`, `lsof` and `kill` through `/bin/sh`, so they work only on POSIX systems.

## What the package does not do

- It has no JSON-RPC server. Nothing registers functions or types and routes methods to them, and there is no HTTP or WSGI front end. You build the handler chain on an `RPCContext` yourself.
- It has no REST helpers, rate limiter or HTTP client.
- `glibkit.mqtt_auth` decides auth and ACL requests and prepares payloads, but it does not connect to a broker or publish messages.
- Tokens are stored only in memory unless you supply your own store.

## Tests

```
pip install glibkit[test]
pytest
```