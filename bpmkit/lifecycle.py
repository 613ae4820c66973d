"""Starting, stopping and inspecting job processes in runc containers."""

from __future__ import annotations

import logging
import subprocess
import sys
import time
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Optional

from .client import Signal
from .usertools import VCAP_USER

CONTAINER_SIGQUIT_GRACE_PERIOD = 2.0
CONTAINER_STATE_POLL_INTERVAL = 1.0

CONTAINER_STATE_RUNNING = "running"
CONTAINER_STATE_PAUSED = "paused"
CONTAINER_STATE_STOPPED = "stopped"

_log = logging.getLogger(__name__)


class ProcessNotFoundError(LookupError):
    """The process is not running or could not be found."""

    def __init__(self) -> None:
        super().__init__("process is not running or could not be found")


class StopTimeoutError(TimeoutError):
    """The job did not stop within its timeout."""

    def __init__(self) -> None:
        super().__init__("failed to stop job within timeout")


def is_not_exist(err: BaseException) -> bool:
    """Tell whether ``err`` reports a missing process."""
    return isinstance(err, ProcessNotFoundError)


@dataclass
class ProcessInfo:
    """A job process as seen by the runtime."""

    name: str
    pid: int
    status: str


@dataclass
class HookCommand:
    """A hook program to run before the job starts."""

    path: str
    env: list[str] = field(default_factory=list)
    stdout: Any = None
    stderr: Any = None


class CommandRunner:
    """Runs hook commands, raising CalledProcessError on failure."""

    def run(self, command: HookCommand) -> None:
        env = dict(entry.partition("=")[::2] for entry in command.env)
        subprocess.run([command.path], env=env, stdout=command.stdout,
                       stderr=command.stderr, check=True)


class SystemClock:
    """The real clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class _Tee:
    def __init__(self, *targets: Any) -> None:
        self._targets = targets

    def write(self, data: bytes) -> None:
        for target in self._targets:
            target.write(data)
            target.flush()


def _process_from_state(container_id: str, status: str, pid: int) -> ProcessInfo:
    if status == CONTAINER_STATE_STOPPED:
        status = "failed"
    return ProcessInfo(name=container_id, pid=pid, status=status)


class RuncLifecycle:
    """Drives a job process through its life in a runc container."""

    def __init__(self, runc_client: Any, runc_adapter: Any, user_finder: Any,
                 command_runner: Any, clock: Any,
                 delete_file: Callable[[str], None]) -> None:
        self._client = runc_client
        self._adapter = runc_adapter
        self._users = user_finder
        self._runner = command_runner
        self._clock = clock
        self._delete_file = delete_file

    def _setup(self, logger: logging.Logger, bpm_cfg: Any, proc_cfg: Any) -> tuple[Any, Any]:
        user = self._users.lookup(VCAP_USER)

        logger.info("creating-job-prerequisites")
        try:
            stdout, stderr = self._adapter.create_job_prerequisites(bpm_cfg, proc_cfg, user)
        except Exception as exc:
            raise RuntimeError(f"failed to create system files: {exc}") from exc

        with ExitStack() as cleanup:
            cleanup.callback(stdout.close)
            cleanup.callback(stderr.close)

            logger.info("building-spec")
            spec = self._adapter.build_spec(logger, bpm_cfg, proc_cfg, user)

            logger.info("creating-bundle")
            try:
                self._client.create_bundle(bpm_cfg.bundle_path(), spec, user)
            except Exception as exc:
                raise RuntimeError(f"bundle build failure: {exc}") from exc

            hooks = getattr(proc_cfg, "hooks", None)
            if hooks is not None:
                env = list(spec.process.env) if spec.process is not None else []
                hook = HookCommand(path=hooks.pre_start, env=env,
                                   stdout=stdout, stderr=stderr)
                try:
                    self._runner.run(hook)
                except Exception as exc:
                    raise RuntimeError(f"prestart hook failed: {exc}") from exc

            cleanup.pop_all()
        return stdout, stderr

    def start_process(self, logger: Optional[logging.Logger], bpm_cfg: Any, proc_cfg: Any) -> None:
        """Set the job up and start its container detached."""
        logger = logger or _log
        logger.info("start-process.starting")
        try:
            stdout, stderr = self._setup(logger, bpm_cfg, proc_cfg)
            with stdout, stderr:
                logger.info("running-container")
                self._client.run_container(bpm_cfg.pid_file().external, bpm_cfg.bundle_path(),
                                           bpm_cfg.container_id(), True, stdout, stderr)
        finally:
            logger.info("start-process.complete")

    def run_process(self, logger: Optional[logging.Logger], bpm_cfg: Any, proc_cfg: Any) -> int:
        """Set the job up and run its container in the foreground; return its status."""
        logger = logger or _log
        logger.info("run-process.starting")
        try:
            stdout, stderr = self._setup(logger, bpm_cfg, proc_cfg)
            with stdout, stderr:
                logger.info("running-container")
                return self._client.run_container(
                    bpm_cfg.pid_file().external, bpm_cfg.bundle_path(),
                    bpm_cfg.container_id(), False,
                    _Tee(stdout, sys.stdout.buffer), _Tee(stderr, sys.stderr.buffer))
        finally:
            logger.info("run-process.complete")

    def stat_process(self, cfg: Any) -> ProcessInfo:
        """Return the job's process; raise ProcessNotFoundError if there is none."""
        state = self._client.container_state(cfg.container_id())
        if state is None:
            raise ProcessNotFoundError()
        return _process_from_state(state.id, state.status, state.pid)

    def open_shell(self, cfg: Any, stdin: Any, stdout: Any, stderr: Any) -> None:
        """Open an interactive bash shell in the job's container."""
        self._client.exec(cfg.container_id(), "/bin/bash", stdin, stdout, stderr)

    def list_processes(self) -> list[ProcessInfo]:
        """Return every job process the runtime knows about."""
        return [_process_from_state(c.id, c.status, c.init_process_pid)
                for c in self._client.list_containers()]

    def _is_stopped(self, logger: logging.Logger, container_id: str) -> bool:
        try:
            state = self._client.container_state(container_id)
        except Exception as exc:
            logger.error("failed-to-fetch-state: %s", exc)
            return False
        return state is None or state.status == CONTAINER_STATE_STOPPED

    def stop_process(self, logger: Optional[logging.Logger], cfg: Any, exit_timeout: float) -> None:
        """Terminate the job, escalating to QUIT and raising StopTimeoutError on timeout."""
        logger = logger or _log
        container_id = cfg.container_id()
        self._client.signal_container(container_id, Signal.TERM)
        if self._is_stopped(logger, container_id):
            return

        deadline = self._clock.monotonic() + exit_timeout
        while True:
            remaining = deadline - self._clock.monotonic()
            if remaining < CONTAINER_STATE_POLL_INTERVAL:
                if remaining > 0:
                    self._clock.sleep(remaining)
                try:
                    self._client.signal_container(container_id, Signal.QUIT)
                except Exception as exc:
                    logger.error("failed-to-sigquit: %s", exc)
                self._clock.sleep(CONTAINER_SIGQUIT_GRACE_PERIOD)
                raise StopTimeoutError()
            self._clock.sleep(CONTAINER_STATE_POLL_INTERVAL)
            if self._is_stopped(logger, container_id):
                return

    def remove_process(self, logger: Optional[logging.Logger], cfg: Any) -> None:
        """Delete the container, its bundle and its pid file."""
        logger = logger or _log
        logger.info("forcefully-deleting-container")
        self._client.delete_container(cfg.container_id())
        logger.info("destroying-bundle")
        self._client.destroy_bundle(cfg.bundle_path())
        logger.info("deleting-pidfile")
        self._delete_file(cfg.pid_file().external)