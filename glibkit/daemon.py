"""Process helpers and the command line that starts, stops and daemonises an app."""

from __future__ import annotations

import argparse
import logging
import platform
import subprocess
import sys
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .config import APP_NAME, default_root_dir, load_config

_log = logging.getLogger(__name__)

_PORT_TICK = 1.0
_STOP_POLL = 0.1


class ProcessNotRunningError(RuntimeError):
    """Raised when the process to kill cannot be found."""


def run_shell(script: str) -> str:
    """Run ``script`` with ``/bin/sh -c`` and return its standard output."""
    result = subprocess.run(
        ["/bin/sh", "-c", script], capture_output=True, text=True, check=False
    )
    return result.stdout or ""


def find_pid_with_port(port: int) -> str:
    """PID of the process listening on ``port``, or an empty string."""
    script = f"lsof -i:{port}|grep -v grep|awk '{{print $2}}'|awk 'NR==2{{print}}'|tr -s '\\n'"
    return run_shell(script).strip()


def find_pids_by_process_name(name: str) -> list[str]:
    """PIDs of processes whose command line contains ``name``."""
    script = f"ps -ef|grep -v grep|grep '{name}'|awk '{{print $2}}'|tr -s '\\n'"
    output = run_shell(script).strip()
    return output.split("\n") if output else []


def process_is_running(name: str) -> bool:
    return bool(find_pids_by_process_name(name))


def kill_process_by_pid(pid: str) -> None:
    command = f"kill {pid}"
    _log.info("kill process: %s", command)
    run_shell(command)


def kill_process(name: str) -> None:
    """Send ``kill`` to every process matching ``name``."""
    if not process_is_running(name):
        raise ProcessNotRunningError(f"process[{name}] is not running")
    for pid in find_pids_by_process_name(name):
        kill_process_by_pid(pid)


def kill_process_with_port(port: int) -> None:
    """Kill the process on ``port`` and wait until the port is free."""
    pid = find_pid_with_port(port)
    if not pid:
        raise ProcessNotRunningError(f"process[{port}] is not running")
    kill_process_by_pid(pid)
    while True:
        time.sleep(_PORT_TICK)
        if find_pid_with_port(port) == "":
            return


@dataclass
class Hooks:
    """Callbacks run by the ``start`` and ``stop`` commands."""

    before_start: Callable[[], object] | None = load_config
    start: Callable[[], object] | None = None
    before_stop: Callable[[], object] | None = None


@dataclass
class BuildInfo:
    """Details printed by the ``version`` command."""

    version: str = ""
    compile_mode: str = ""
    build_time: str = ""
    python_version: str = field(default_factory=platform.python_version)
    git_branch: str = ""
    git_hash: str = ""


hooks = Hooks()
build_info = BuildInfo()


def _program() -> str:
    return sys.argv[0] if sys.argv and sys.argv[0] else APP_NAME


def _kill_daemon() -> None:
    process = f"{Path(_program()).name} -x start"
    try:
        kill_process(process)
    except ProcessNotRunningError:
        pass
    while process_is_running(process):
        time.sleep(_STOP_POLL)
    _log.info("Stop daemon success")


def _start_daemon(args: Sequence[str]) -> None:
    command = f"{_program()} -x" + "".join(f" {arg}" for arg in args)
    command = command.replace("-d", "", 1)
    log_file = default_root_dir() / "logs" / "runtime.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with log_file.open("wb") as out:
        subprocess.Popen(
            ["/bin/sh", "-c", command],
            stdout=out,
            stderr=out,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
    _log.info("Start daemon success")


def _version_text() -> str:
    return (
        f"{APP_NAME}\n"
        f"Version: {build_info.version}\n"
        f"CompileMod: {build_info.compile_mode}\n"
        f"BuildTime: {build_info.build_time}\n"
        f"PythonVersion: {build_info.python_version}\n"
        f"GitBranch: {build_info.git_branch}\n"
        f"GitHash: {build_info.git_hash}\n"
    )


def _parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-x", action="store_true", default=argparse.SUPPRESS, help="set daemon")
    common.add_argument(
        "-i", "--init", action="store_true", default=argparse.SUPPRESS, help="init database"
    )
    parser = argparse.ArgumentParser(prog=APP_NAME, parents=[common])
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("version", parents=[common])
    start = commands.add_parser("start", parents=[common])
    start.add_argument("-d", "--daemon", action="store_true", help="run as daemon")
    commands.add_parser("stop", parents=[common])
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the ``version``, ``start`` or ``stop`` command."""
    args = list(sys.argv[1:] if argv is None else argv)
    parser = _parser()
    ns = parser.parse_args(args)
    if ns.command == "version":
        sys.stdout.write(_version_text())
        return 0
    if ns.command == "start":
        if hooks.before_start is not None:
            hooks.before_start()
        if ns.daemon:
            _kill_daemon()
            _start_daemon(args)
            return 0
        if hooks.start is not None:
            hooks.start()
        return 0
    if ns.command == "stop":
        if hooks.before_stop is not None:
            hooks.before_stop()
        _kill_daemon()
        return 0
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())