"""Application configuration kept in a TOML file, layered over global defaults."""

from __future__ import annotations

import copy
import logging
import os
import sys
import threading
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import tomli_w

from .env import get_env, load_environment

_log = logging.getLogger(__name__)

APP_NAME = Path(sys.argv[0]).stem if sys.argv and sys.argv[0] else "app"

GLOBAL_DEFAULTS: dict[str, Any] = {
    "app.name": APP_NAME,
    "app.host": "127.0.0.1",
    "app.debug": True,
    "app.runtimes": 0,
    "app.log_level": "debug",
    "server.host": "80",
    "server.pprof_port": "81",
    "server.concurrent_limit": 1000,
    "server.rate_limit_value": 20,
    "server.rate_limit_burst": 50,
    "server.debug": True,
    "server.crypto": "",
    "db.type": "",
    "db.host": "",
    "db.db": "",
    "db.user": "",
    "db.port": "",
    "db.pwd": "",
    "db.debug": True,
    "db.log_level": 4,
    "db.skip_cache": False,
    "db.skip_create_db": False,
    "db.cache_type": "mem",
    "db.max_idle_conns": 10,
    "db.max_open_conns": 200,
    "db.max_lifetime_seconds": 60,
    "db.max_idle_time_seconds": 30,
    "redis.host": "",
    "redis.port": "",
    "redis.db": 0,
    "redis.pwd": "",
    "emq.host": "",
    "emq.port": "",
    "emq.super_username": "",
    "emq.super_password": "",
}

_TRUE_STRINGS = frozenset({"1", "t", "true"})


class ConfigError(Exception):
    """Raised when the configuration file cannot be prepared or read."""


def default_root_dir() -> Path:
    """Directory of the running program, or the working directory."""
    if sys.argv and sys.argv[0]:
        return Path(sys.argv[0]).resolve().parent
    return Path.cwd()


def temp_config_file(name: str | os.PathLike) -> str:
    """Path of the pending-changes file that belongs to config file ``name``."""
    return f"{os.fspath(name)}_temp.toml"


def merge_global_defaults(mapping: Mapping[str, Any]) -> None:
    """Add or replace entries of the defaults applied on every load."""
    GLOBAL_DEFAULTS.update(mapping)


def _set_path(data: dict[str, Any], key: str, value: Any) -> None:
    parts = key.lower().split(".")
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[parts[-1]] = value


def _get_path(data: Mapping[str, Any], key: str) -> Any:
    node: Any = data
    for part in key.lower().split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return copy.deepcopy(node)


def _deep_merge(base: Mapping[str, Any], over: Mapping[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(dict(base))
    for key, value in over.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _lower_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        str(k).lower(): _lower_keys(v) if isinstance(v, Mapping) else v
        for k, v in data.items()
    }


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


def _read_toml(path: Path) -> dict[str, Any]:
    if path.suffix.lower() != ".toml":
        raise ConfigError(f"unsupported config type: {path.suffix or path.name}")
    try:
        with path.open("rb") as fh:
            return _lower_keys(tomllib.load(fh))
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid config file {path}: {exc}") from exc


def _write_toml(path: str | os.PathLike, data: Mapping[str, Any]) -> None:
    with open(path, "wb") as fh:
        tomli_w.dump(data, fh)


def _swap_temp_config_file(path: Path) -> None:
    temp = Path(temp_config_file(path))
    if not temp.exists():
        return
    try:
        os.replace(temp, path)
    except OSError as exc:
        _log.error("rename config file error: %s", exc)


class Config:
    """Configuration read from a TOML file on top of defaults.

    Changes made with :meth:`set_value` are written to a temporary file next
    to the config file and take effect on the next :meth:`load`.
    """

    def __init__(
        self,
        root_dir: str | os.PathLike | None = None,
        before_load: Callable[[Config], None] | None = None,
        watch: bool = True,
        watch_interval: float = 1.0,
    ) -> None:
        self.root_dir = Path(root_dir) if root_dir is not None else None
        self.before_load = before_load
        self.watch = watch
        self.watch_interval = watch_interval
        self._config_file: Path | None = None
        self._defaults: dict[str, Any] = {}
        self._settings: dict[str, Any] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._watcher: threading.Thread | None = None

    def set_default(self, key: str, value: Any) -> None:
        """Set the value used for ``key`` when the file does not give one."""
        with self._lock:
            _set_path(self._defaults, key, value)

    def all_settings(self) -> dict[str, Any]:
        """Every setting as a nested dictionary, file values over defaults."""
        with self._lock:
            return _deep_merge(self._defaults, self._settings)

    def get(self, key: str) -> Any:
        """Value for a dotted, case-insensitive key, or ``None``."""
        return _get_path(self.all_settings(), key)

    def app_debug(self) -> bool:
        return _to_bool(self.get("app.debug"))

    def app_name(self) -> str:
        value = self.get("app.name")
        if value is None or value == "":
            return APP_NAME
        return str(value)

    def db_debug(self) -> bool:
        return _to_bool(self.get("db.debug"))

    def get_config_file(self) -> Path:
        """The config file path, ``conf.toml`` under the root directory by default."""
        if self._config_file is None:
            root = self.root_dir if self.root_dir is not None else default_root_dir()
            self._config_file = root / "conf.toml"
        return self._config_file

    def set_config_file(self, path: str | os.PathLike) -> None:
        self._config_file = Path(path)

    def set_value(self, key: str, value: Any) -> None:
        """Record ``key = value`` in the pending-changes file."""
        self.write_temp(lambda data: _set_path(data, key, value))

    def write_temp(self, fn: Callable[[dict[str, Any]], None] | None) -> None:
        """Write all settings, after ``fn`` edits them as a nested dict, to the temp file."""
        with self._lock:
            data = self.all_settings()
            if fn is not None:
                fn(data)
            try:
                _write_toml(temp_config_file(self.get_config_file()), data)
            except (OSError, TypeError, ValueError) as exc:
                _log.error("write config file error: %s", exc)

    def load(self) -> None:
        """Read the config file, creating it from the defaults when missing."""
        self.close()
        path = self.get_config_file()
        _log.info("load config file: %s", path)
        _swap_temp_config_file(path)
        with self._lock:
            self._defaults = {}
            self._settings = {}
            for key, value in GLOBAL_DEFAULTS.items():
                _set_path(self._defaults, key, value)
        if self.before_load is not None:
            self.before_load(self)
        self._write_default_if_missing(path)
        settings = _read_toml(path)
        with self._lock:
            self._settings = settings
        if self.watch:
            self._start_watcher(path)

    def close(self) -> None:
        """Stop watching the config file."""
        watcher = self._watcher
        if watcher is not None:
            self._stop.set()
            watcher.join()
            self._watcher = None

    def _write_default_if_missing(self, path: Path) -> None:
        if path.exists():
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            _write_toml(path, self.all_settings())
        except OSError as exc:
            raise ConfigError(f"cannot write config file {path}: {exc}") from exc

    def _start_watcher(self, path: Path) -> None:
        self._stop = threading.Event()
        stop = self._stop
        try:
            last = path.stat().st_mtime_ns
        except OSError:
            last = None

        def run() -> None:
            nonlocal last
            while not stop.wait(self.watch_interval):
                try:
                    current = path.stat().st_mtime_ns
                except OSError:
                    continue
                if current == last:
                    continue
                last = current
                try:
                    settings = _read_toml(path)
                except ConfigError as exc:
                    _log.error("reload config file error: %s", exc)
                    continue
                with self._lock:
                    self._settings = settings
                self.write_temp(None)

        self._watcher = threading.Thread(target=run, name="config-watcher", daemon=True)
        self._watcher.start()


C = Config()


def load_config(root_dir: str | os.PathLike | None = None) -> Config:
    """Load environment files, pick the config file from ``CONFIG_FILE`` and load it."""
    root = Path(root_dir) if root_dir is not None else default_root_dir()
    load_environment(root.parent / "pro.env", root_dir=root)
    C.root_dir = root
    config_file = get_env("CONFIG_FILE", "")
    if config_file:
        C.set_config_file(config_file)
    else:
        _log.info("env: CONFIG_FILE is not set; using default config file")
    C.load()
    return C