"""Thin client around the runc command line."""

from __future__ import annotations

import enum
import json
import os
import re
import shutil
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import IO, Any, Optional

from .oci import Spec, State, User, state_from_dict, to_dict

_NOT_EXIST = re.compile(r'^\s*container "[^"]*" does not exist\s*$')
_CHUNK = 64 * 1024


class Signal(enum.Enum):
    """Signals that can be sent to a container."""

    TERM = "TERM"
    QUIT = "QUIT"

    def __str__(self) -> str:
        return self.value


@dataclass
class ContainerState:
    """One entry of the runtime's container listing."""

    id: str = ""
    init_process_pid: int = 0
    status: str = ""


class RuncError(Exception):
    """A runc invocation exited unsuccessfully."""

    def __init__(self, exit_status: int, message: str, output: bytes = b"") -> None:
        super().__init__(message)
        self.exit_status = exit_status
        self.output = output


def _has_fileno(stream: Any) -> bool:
    try:
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    return True


def _copy_out(source: IO[bytes], target: Any) -> None:
    while True:
        chunk = source.read(_CHUNK)
        if not chunk:
            break
        target.write(chunk)
    source.close()


def _copy_in(source: Any, target: IO[bytes]) -> None:
    try:
        while True:
            chunk = source.read(_CHUNK)
            if not chunk:
                break
            target.write(chunk)
    except BrokenPipeError:
        pass
    finally:
        try:
            target.close()
        except BrokenPipeError:
            pass


def _execute(argv: Sequence[str], stdin: Any = None, stdout: Any = None,
             stderr: Any = None, env: Optional[dict[str, str]] = None) -> int:
    """Run ``argv``, connecting streams that lack a file descriptor via pipes."""
    pipe_in = stdin is not None and not _has_fileno(stdin)
    pipe_out = stdout is not None and not _has_fileno(stdout)
    pipe_err = stderr is not None and not _has_fileno(stderr)
    process = subprocess.Popen(
        list(argv),
        stdin=subprocess.PIPE if pipe_in else stdin,
        stdout=subprocess.PIPE if pipe_out else stdout,
        stderr=subprocess.PIPE if pipe_err else stderr,
        env=env,
    )
    pumps = []
    if pipe_in:
        pumps.append(threading.Thread(target=_copy_in, args=(stdin, process.stdin)))
    if pipe_out:
        pumps.append(threading.Thread(target=_copy_out, args=(process.stdout, stdout)))
    if pipe_err:
        pumps.append(threading.Thread(target=_copy_out, args=(process.stderr, stderr)))
    for pump in pumps:
        pump.daemon = True
        pump.start()
    status = process.wait()
    for pump in pumps:
        pump.join()
    return status


def _status_error(command: str, status: int, output: bytes = b"") -> RuncError:
    return RuncError(status, f"runc {command} exited with status {status}", output)


class RuncClient:
    """Runs runc subcommands against a given state root."""

    def __init__(self, runc_path: str, runc_root: str, in_systemd: bool = False) -> None:
        self._runc_path = runc_path
        self._runc_root = runc_root
        self._in_systemd = in_systemd

    def _argv(self, command: str, *extra: str) -> list[str]:
        argv = [self._runc_path, "--root", self._runc_root]
        if self._in_systemd:
            argv.append("--systemd-cgroup")
        argv.append(command)
        argv.extend(extra)
        return argv

    def create_bundle(self, bundle_path: str, job_spec: Spec, user: User) -> None:
        """Create the bundle directory, an empty rootfs and ``config.json``."""
        os.makedirs(bundle_path, 0o700, exist_ok=True)
        os.makedirs(os.path.join(bundle_path, "rootfs"), 0o755, exist_ok=True)
        fd = os.open(os.path.join(bundle_path, "config.json"),
                     os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o600)
        with open(fd, "w", encoding="utf-8") as config:
            json.dump(to_dict(job_spec), config, indent="\t")
            config.write("\n")

    def run_container(self, pid_file_path: str, bundle_path: str, container_id: str,
                      detach: bool, stdout: Any, stderr: Any) -> int:
        """Run the container; return 0, or raise RuncError carrying the exit status."""
        args = ["--bundle", bundle_path]
        if detach:
            args += ["--pid-file", pid_file_path, "--detach"]
        args.append(container_id)
        status = _execute(self._argv("run", *args), stdout=stdout, stderr=stderr)
        if status != 0:
            raise _status_error("run", status)
        return 0

    def exec(self, container_id: str, command: str, stdin: Any, stdout: Any,
             stderr: Any) -> None:
        """Run ``command`` interactively on a terminal inside the container."""
        argv = self._argv("exec", "--tty", "--env",
                          f"TERM={os.environ.get('TERM', '')}", container_id, command)
        status = _execute(argv, stdin=stdin, stdout=stdout, stderr=stderr)
        if status != 0:
            raise _status_error("exec", status)

    def container_state(self, container_id: str) -> Optional[State]:
        """Return the container's state, or None when it does not exist."""
        result = subprocess.run(self._argv("state", container_id),
                                stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        if result.returncode != 0:
            if _NOT_EXIST.match(result.stdout.decode("utf-8", "replace")):
                return None
            raise _status_error("state", result.returncode, result.stdout)
        return state_from_dict(json.loads(result.stdout))

    def list_containers(self) -> list[ContainerState]:
        """Return every container runc knows about."""
        result = subprocess.run(self._argv("list", "--format", "json"),
                                stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        if result.returncode != 0:
            raise _status_error("list", result.returncode, result.stderr)
        entries = json.loads(result.stdout) or []
        if not isinstance(entries, list):
            raise ValueError("container list must be an array")
        return [
            ContainerState(id=entry.get("id", ""),
                           init_process_pid=entry.get("pid", 0),
                           status=entry.get("status", ""))
            for entry in entries
        ]

    def signal_container(self, container_id: str, signal: Signal) -> None:
        """Send ``signal`` to the container's init process."""
        status = _execute(self._argv("kill", container_id, str(signal)))
        if status != 0:
            raise _status_error("kill", status)

    def delete_container(self, container_id: str) -> None:
        """Forcefully delete the container."""
        status = _execute(self._argv("delete", "--force", container_id))
        if status != 0:
            raise _status_error("delete", status)

    def destroy_bundle(self, bundle_path: str) -> None:
        """Remove the bundle directory; a missing bundle is not an error."""
        try:
            shutil.rmtree(bundle_path)
        except FileNotFoundError:
            pass