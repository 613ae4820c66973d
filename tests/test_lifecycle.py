import io
from dataclasses import dataclass, field
from types import SimpleNamespace

import pytest

from bpmkit.client import ContainerState, RuncError, Signal
from bpmkit.lifecycle import (
    CONTAINER_SIGQUIT_GRACE_PERIOD,
    ProcessInfo,
    RuncLifecycle,
    StopTimeoutError,
    is_not_exist,
)
from bpmkit.oci import Process, Spec, State, User

USER = User(uid=300, gid=400, username="vcap")
CID = "example.server"
BUNDLE = "system-root/data/bpm/bundles/example/server"
PIDFILE = "system-root/sys/run/bpm/example/server.pid"


class Cfg:
    def container_id(self):
        return CID

    def bundle_path(self):
        return BUNDLE

    def pid_file(self):
        return SimpleNamespace(external=PIDFILE)


class FakeUsers:
    def __init__(self):
        self.calls = []
        self.error = None

    def lookup(self, name):
        self.calls.append(name)
        if self.error:
            raise self.error
        return USER


class FakeAdapter:
    def __init__(self):
        self.prereq_error = None
        self.spec_error = None
        self.files = []
        self.spec = Spec(version="example-version", process=Process(env=["foo=bar"]))

    def create_job_prerequisites(self, bpm_cfg, proc_cfg, user):
        if self.prereq_error:
            raise self.prereq_error
        out, err = io.BytesIO(), io.BytesIO()
        self.files = [out, err]
        return out, err

    def build_spec(self, logger, bpm_cfg, proc_cfg, user):
        if self.spec_error:
            raise self.spec_error
        return self.spec


@dataclass
class FakeClient:
    states: list = field(default_factory=list)
    signals: list = field(default_factory=list)
    runs: list = field(default_factory=list)
    calls: list = field(default_factory=list)
    state_fn: object = None
    run_error: object = None
    bundle_error: object = None
    signal_error: object = None
    delete_error: object = None
    containers: list = field(default_factory=list)

    def create_bundle(self, path, spec, user):
        if self.bundle_error:
            raise self.bundle_error
        self.calls.append(("bundle", path, spec, user))

    def run_container(self, pid, bundle, cid, detach, out, err):
        self.runs.append((pid, bundle, cid, detach))
        if self.run_error:
            raise self.run_error
        return 0

    def exec(self, cid, command, stdin, stdout, stderr):
        self.calls.append(("exec", cid, command))

    def container_state(self, cid):
        self.states.append(cid)
        return self.state_fn()

    def list_containers(self):
        return self.containers

    def signal_container(self, cid, signal):
        self.signals.append((cid, signal))
        if self.signal_error:
            raise self.signal_error

    def delete_container(self, cid):
        if self.delete_error:
            raise self.delete_error
        self.calls.append(("delete", cid))

    def destroy_bundle(self, path):
        self.calls.append(("destroy", path))


class FakeRunner:
    def __init__(self):
        self.commands = []
        self.error = None

    def run(self, command):
        self.commands.append(command)
        if self.error:
            raise self.error


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def env():
    ns = SimpleNamespace(users=FakeUsers(), adapter=FakeAdapter(), client=FakeClient(),
                         runner=FakeRunner(), clock=FakeClock(), deleted=[])
    ns.lifecycle = RuncLifecycle(ns.client, ns.adapter, ns.users, ns.runner, ns.clock,
                                 ns.deleted.append)
    ns.proc = SimpleNamespace(executable="/bin/sleep", hooks=None)
    return ns


def test_start_process(env):
    env.lifecycle.start_process(None, Cfg(), env.proc)
    assert env.users.calls == ["vcap"]
    assert env.client.calls[0] == ("bundle", BUNDLE, env.adapter.spec, USER)
    assert env.client.runs == [(PIDFILE, BUNDLE, CID, True)]
    assert all(f.closed for f in env.adapter.files)


def test_run_process(env):
    assert env.lifecycle.run_process(None, Cfg(), env.proc) == 0
    assert env.client.runs == [(PIDFILE, BUNDLE, CID, False)]


def test_run_process_failure_carries_status(env):
    env.client.run_error = RuncError(1, "fake test error")
    with pytest.raises(RuncError) as excinfo:
        env.lifecycle.run_process(None, Cfg(), env.proc)
    assert excinfo.value.exit_status == 1


def test_prestart_hook(env):
    env.proc.hooks = SimpleNamespace(pre_start="/please/execute/me")
    env.lifecycle.start_process(None, Cfg(), env.proc)
    (hook,) = env.runner.commands
    assert hook.path == "/please/execute/me"
    assert hook.env == ["foo=bar"]
    assert hook.stdout is env.adapter.files[0]


def test_prestart_hook_failure(env):
    env.proc.hooks = SimpleNamespace(pre_start="/x")
    env.runner.error = OSError("fake test error")
    with pytest.raises(RuntimeError, match="prestart hook failed"):
        env.lifecycle.start_process(None, Cfg(), env.proc)


@pytest.mark.parametrize("part", ["users", "prereq", "spec", "bundle"])
def test_setup_failures(env, part):
    err = ValueError("fake test error")
    if part == "users":
        env.users.error = err
    elif part == "prereq":
        env.adapter.prereq_error = err
    elif part == "spec":
        env.adapter.spec_error = err
    else:
        env.client.bundle_error = err
    with pytest.raises(Exception, match="fake test error"):
        env.lifecycle.start_process(None, Cfg(), env.proc)
    assert env.client.runs == []


def test_stop_immediately(env):
    env.client.state_fn = lambda: State(status="stopped")
    env.lifecycle.stop_process(None, Cfg(), 5)
    assert env.client.signals == [(CID, Signal.TERM)]
    assert env.clock.sleeps == []


def test_stop_polls_until_stopped(env):
    answers = iter(["running", "running", "stopped"])
    env.client.state_fn = lambda: State(status=next(answers))
    env.lifecycle.stop_process(None, Cfg(), 5)
    assert env.client.states == [CID, CID, CID]
    assert env.clock.sleeps == [1.0, 1.0]


def test_stop_timeout_sends_quit(env):
    env.client.state_fn = lambda: State(status="running")
    with pytest.raises(StopTimeoutError, match="failed to stop job within timeout"):
        env.lifecycle.stop_process(None, Cfg(), 5)
    assert env.client.signals == [(CID, Signal.TERM), (CID, Signal.QUIT)]
    assert env.clock.sleeps[-1] == CONTAINER_SIGQUIT_GRACE_PERIOD


def test_stop_keeps_polling_on_state_errors(env):
    def fail():
        raise RuncError(1, "fake test error")

    env.client.state_fn = fail
    with pytest.raises(StopTimeoutError):
        env.lifecycle.stop_process(None, Cfg(), 5)
    assert len(env.client.states) >= 3


def test_stop_signal_failure(env):
    env.client.signal_error = RuncError(1, "an error")
    with pytest.raises(RuncError, match="an error"):
        env.lifecycle.stop_process(None, Cfg(), 5)


def test_remove_process(env):
    env.lifecycle.remove_process(None, Cfg())
    assert env.client.calls == [("delete", CID), ("destroy", BUNDLE)]
    assert env.deleted == [PIDFILE]


def test_remove_process_delete_failure(env):
    env.client.delete_error = RuncError(1, "an error")
    with pytest.raises(RuncError):
        env.lifecycle.remove_process(None, Cfg())
    assert env.deleted == []


def test_list_processes(env):
    env.client.containers = [
        ContainerState("job-process-2", 23456, "created"),
        ContainerState("job-process-1", 34567, "running"),
        ContainerState("job-process-3", 0, "stopped"),
    ]
    assert env.lifecycle.list_processes() == [
        ProcessInfo("job-process-2", 23456, "created"),
        ProcessInfo("job-process-1", 34567, "running"),
        ProcessInfo("job-process-3", 0, "failed"),
    ]


def test_stat_process(env):
    env.client.state_fn = lambda: State(id=CID, pid=1234, status="running")
    assert env.lifecycle.stat_process(Cfg()) == ProcessInfo(CID, 1234, "running")


def test_stat_process_stopped(env):
    env.client.state_fn = lambda: State(id=CID, pid=0, status="stopped")
    assert env.lifecycle.stat_process(Cfg()).status == "failed"


def test_stat_process_missing(env):
    env.client.state_fn = lambda: None
    with pytest.raises(LookupError) as excinfo:
        env.lifecycle.stat_process(Cfg())
    assert is_not_exist(excinfo.value)


def test_stat_process_error_is_not_not_exist(env):
    def fail():
        raise RuncError(1, "fake test error")

    env.client.state_fn = fail
    with pytest.raises(RuncError) as excinfo:
        env.lifecycle.stat_process(Cfg())
    assert not is_not_exist(excinfo.value)


def test_open_shell(env):
    env.lifecycle.open_shell(Cfg(), io.BytesIO(b"stdin"), None, None)
    assert env.client.calls == [("exec", CID, "/bin/bash")]