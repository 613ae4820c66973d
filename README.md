# bpmkit

`bpmkit` is a library for running job processes inside runc containers. It
builds an OCI runtime spec for a process, writes it out as a runc bundle, and
starts, inspects, stops and removes the container by calling the `runc`
binary.

## Modules

- `bpmkit.oci`: dataclasses for the parts of the OCI runtime spec in use
  (`Spec`, `Process`, `User`, `Mount`, `Root`, `Linux`, `LinuxCapabilities`,
  `LinuxResources`, `LinuxMemory`, `LinuxPids`, `POSIXRlimit`,
  `LinuxNamespace`, `LinuxSeccomp`, `LinuxSyscall`, `LinuxSeccompArg`) and the
  container `State`. `to_dict` turns any of them into its JSON document form,
  leaving out empty optional fields. `state_from_dict` reads a state document
  and raises `ValueError` for values of the wrong type.
- `bpmkit.seccomp`: `default_seccomp()` returns a profile that denies with
  errno by default and allows a fixed list of system calls on x86_64, x86 and
  x32. `allow_syscall(name, *args)` builds one allow rule.
  `default_privileged_capabilities()` returns the capability names granted to
  privileged containers.
- `bpmkit.specbuilder`: `default_spec()` returns a restrictive baseline spec
  with masked and read-only `/proc` and `/sys` paths, the default seccomp
  profile, `noNewPrivileges` and the standard `/proc`, `/dev`, `/sys` mounts.
  Options are callables that change a spec in place: `with_root_filesystem`,
  `with_namespace`, `with_user`, `with_process`, `with_capabilities`,
  `with_mounts`, `with_memory_limit`, `with_pid_limit`,
  `with_open_file_limit` and `with_privileged`. `build(*options)` applies them
  to a fresh default spec; `apply(spec, *options)` applies them to an
  existing one.
- `bpmkit.mounts`: `mount(source, destination, *options)` and
  `identity_mount(path, *options)` describe bind mounts. Without options a
  mount is `bind`, `noexec`, `nosuid`, `nodev`, `ro`; the `MountOption` flags
  `RECURSIVE_BIND`, `EXEC` and `WRITABLE` loosen them. `MountDeduplicator`
  keeps the first mount for each destination, logs `duplicate-mount` for the
  rest, and returns mounts ordered by path depth.
- `bpmkit.sysfeat`: `fetch()` finds the memory cgroup (v1) mount point in
  `/proc/self/mountinfo` and reports in a `Features` value whether swap can be
  limited. `find_cgroup_mountpoint` raises `LookupError` when the hierarchy is
  not mounted.
- `bpmkit.usertools`: `UserFinder().lookup(name)` returns an `oci.User` from
  the password database and raises `LookupError` for an unknown user.
  `VCAP_USER` is the user jobs run as.
- `bpmkit.adapter`: `RuncAdapter` prepares the host for a job and builds its
  spec. `create_job_prerequisites` creates the pid, log, socket, temp and
  (when requested) data and store directories, sets up extra volumes, and
  returns the stdout and stderr log files opened for appending. `build_spec`
  assembles the complete `Spec`: system and job mounts, user volumes,
  glob-expanded unrestricted volumes, the init wrapper, the environment,
  capabilities, limits and privileged mode. Helpers: `parse_bytes` (for
  example `"100G"`, powers of 1024), `process_environment`,
  `process_capabilities` and `default_path`.
- `bpmkit.client`: `RuncClient` wraps the `runc` binary: `create_bundle`,
  `run_container`, `exec`, `container_state`, `list_containers`,
  `signal_container` (with a `Signal`), `delete_container` and
  `destroy_bundle`.
- `bpmkit.lifecycle`: `RuncLifecycle` ties these together.

## Requirements

Python 3.10 or later on Linux. No third-party libraries are needed. Running
containers needs a `runc` binary and, in practice, root privileges.

## Building a spec

```python
from bpmkit import specbuilder
from bpmkit.mounts import MountOption, identity_mount
from bpmkit.oci import User, to_dict

spec = specbuilder.build(
    specbuilder.with_root_filesystem("/var/vcap/data/bpm/bundles/web/web/rootfs"),
    specbuilder.with_user(User(uid=2000, gid=3000, username="vcap")),
    specbuilder.with_process(
        "/var/vcap/packages/web/bin/web",
        ["--port", "8080"],
        ["LANG=en_US.UTF-8"],
        "/var/vcap/jobs/web",
    ),
    specbuilder.with_mounts([
        identity_mount("/var/vcap/store/web", MountOption.RECURSIVE_BIND, MountOption.WRITABLE),
    ]),
    specbuilder.with_namespace("pid"),
    specbuilder.with_pid_limit(100),
)

document = to_dict(spec)   # ready for json.dumps
```

## Talking to runc

```python
from bpmkit.client import RuncClient, Signal

client = RuncClient("/var/vcap/packages/runc/bin/runc", "/var/vcap/data/bpm/runc", False)

for container in client.list_containers():
    print(container.id, container.status)

state = client.container_state("web")
if state is None:
    print("not running")
else:
    client.signal_container("web", Signal.TERM)
```

Every command runs with `--root` set to the given state directory, and with
`--systemd-cgroup` when the client is created with `in_systemd=True`. A
failing `runc` command raises `RuncError`, which carries the exit status.
`container_state` returns `None` when runc reports that the container does not
exist. `create_bundle` writes `config.json` (mode 0600) and an empty `rootfs`
directory; `destroy_bundle` removes the bundle and ignores a missing one.

## Managing a job's lifecycle

`RuncLifecycle(runc_client, runc_adapter, user_finder, command_runner, clock,
delete_file)` combines a client, an adapter, a `UserFinder`, a
`CommandRunner` for pre-start hooks, a clock (`SystemClock` provides
`monotonic` and `sleep`) and a function that removes a file.

- `start_process` looks up the `vcap` user, prepares the host, builds the
  spec and bundle, runs the pre-start hook if one is configured, and starts
  the container detached.
- `run_process` does the same but runs the container in the foreground,
  copying its output to the log files and to this process's stdout and
  stderr; it returns the exit status.
- `stat_process` returns a `ProcessInfo` (a stopped container is reported as
  `failed`) and raises `ProcessNotFoundError` when there is no container;
  `is_not_exist` tells that error apart from others.
- `list_processes` returns a `ProcessInfo` for every container.
- `open_shell` runs `/bin/bash` on a terminal inside the container.
- `stop_process` sends TERM, polls the state once a second and, once the
  timeout has passed, sends QUIT, waits a two-second grace period and raises
  `StopTimeoutError`.
- `remove_process` force-deletes the container, destroys its bundle and
  deletes its pid file.

Failures while preparing the host, writing the bundle or running the hook are
raised as `RuntimeError` with the cause attached.

## What the package does not do

- It has no command-line program; it is a library only.
- It does not define job configuration. `RuncAdapter` and `RuncLifecycle`
  take configuration objects from the caller: a job configuration offering
  `job_dir()`, `log_dir()`, `temp_dir()`, `data_dir()`, `store_dir()`,
  `pid_dir()`, `socket_dir()`, `package_dir()`, `data_package_dir()`,
  `tini_path()`, `stdout()`, `stderr()`, `pid_file()` (paths with `external`,
  `internal` and `join`), plus `root_fs_path()`, `bundle_path()` and
  `container_id()`; and a process configuration with `executable`, `args`,
  `env`, `work_dir`, `capabilities`, `additional_volumes`, `ephemeral_disk`,
  `persistent_disk`, `limits`, `unsafe` and `hooks`.
- It does not lock volumes or make mounts shared itself; `RuncAdapter` is
  given a locker (with `lock_volume`) and a mount-sharing function.

## Running the tests

Install the `test` extra and run `pytest` from the project root.