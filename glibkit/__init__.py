"""Service toolkit: JSON-RPC request handling, token auth, AES-CBC, config, key locks, MQTT auth hooks and daemon control."""

__version__ = "0.1.0"

__all__ = [
    "aescbc",
    "config",
    "daemon",
    "env",
    "jwt",
    "keylock",
    "mqtt_auth",
    "rpc_context",
    "rpc_message",
]