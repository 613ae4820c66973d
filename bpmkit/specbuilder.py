"""Composable construction of container specifications."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from .oci import (
    Linux,
    LinuxCapabilities,
    LinuxMemory,
    LinuxNamespace,
    LinuxPids,
    LinuxResources,
    Mount,
    POSIXRlimit,
    Process,
    Root,
    Spec,
    User,
)
from .seccomp import default_privileged_capabilities, default_seccomp
from .sysfeat import Features

SpecOption = Callable[[Spec], None]


def default_spec() -> Spec:
    """Return the restrictive baseline specification every container starts from."""
    return Spec(
        process=Process(capabilities=LinuxCapabilities(), no_new_privileges=True),
        linux=Linux(
            masked_paths=[
                "/etc/sv",
                "/proc/kcore",
                "/proc/latency_stats",
                "/proc/sched_debug",
                "/proc/timer_list",
                "/proc/timer_stats",
                "/sys/firmware",
            ],
            readonly_paths=[
                "/proc/asound",
                "/proc/bus",
                "/proc/fs",
                "/proc/irq",
                "/proc/sys",
                "/proc/sysrq-trigger",
            ],
            resources=LinuxResources(),
            rootfs_propagation="private",
            seccomp=default_seccomp(),
        ),
        mounts=[
            Mount(destination="/proc", type="proc", source="proc"),
            Mount(
                destination="/dev",
                type="tmpfs",
                source="tmpfs",
                options=["nosuid", "noexec", "mode=755", "size=65536k"],
            ),
            Mount(
                destination="/dev/pts",
                type="devpts",
                source="devpts",
                options=[
                    "nosuid",
                    "noexec",
                    "newinstance",
                    "ptmxmode=0666",
                    "mode=0620",
                    "gid=5",
                ],
            ),
            Mount(
                destination="/dev/shm",
                type="tmpfs",
                source="shm",
                options=["nosuid", "noexec", "nodev", "mode=1777", "size=65536k"],
            ),
            Mount(
                destination="/dev/mqueue",
                type="mqueue",
                source="mqueue",
                options=["nosuid", "noexec", "nodev"],
            ),
            Mount(
                destination="/sys",
                type="sysfs",
                source="sysfs",
                options=["nosuid", "noexec", "nodev", "ro"],
            ),
        ],
    )


def build(*options: SpecOption) -> Spec:
    """Return the default specification with ``options`` applied in order."""
    spec = default_spec()
    apply(spec, *options)
    return spec


def apply(spec: Spec, *options: SpecOption) -> None:
    """Apply ``options`` to ``spec`` in order."""
    for option in options:
        option(spec)


def with_root_filesystem(path: str) -> SpecOption:
    """Use ``path`` as the container's root filesystem."""

    def option(spec: Spec) -> None:
        spec.root = Root(path=path)

    return option


def with_namespace(namespace: str) -> SpecOption:
    """Place the container in a new namespace of the given type."""

    def option(spec: Spec) -> None:
        spec.linux.namespaces.append(LinuxNamespace(type=namespace))

    return option


def with_user(user: User) -> SpecOption:
    """Run the container process as ``user``."""

    def option(spec: Spec) -> None:
        spec.process.user = user

    return option


def with_process(
    executable: str,
    args: Iterable[str],
    environment: Iterable[str],
    cwd: str,
) -> SpecOption:
    """Set the command, environment and working directory of the process."""

    def option(spec: Spec) -> None:
        spec.process.args = [executable, *args]
        spec.process.env = list(environment)
        spec.process.cwd = cwd

    return option


def with_capabilities(capabilities: Iterable[str]) -> SpecOption:
    """Grant ``capabilities`` to the process.

    The effective set is left alone; the kernel derives it from the others.
    """
    granted = list(capabilities)

    def option(spec: Spec) -> None:
        caps = spec.process.capabilities
        caps.ambient.extend(granted)
        caps.bounding.extend(granted)
        caps.inheritable.extend(granted)
        caps.permitted.extend(granted)

    return option


def with_mounts(mounts: Iterable[Mount]) -> SpecOption:
    """Add ``mounts`` after the mounts already present."""
    extra = list(mounts)

    def option(spec: Spec) -> None:
        spec.mounts.extend(extra)

    return option


def with_memory_limit(limit: int, features: Features) -> SpecOption:
    """Limit memory to ``limit`` bytes, and swap too where the host supports it."""

    def option(spec: Spec) -> None:
        memory = LinuxMemory(limit=limit)
        if features.swap_limit_supported:
            memory.swap = limit
        spec.linux.resources.memory = memory

    return option


def with_pid_limit(limit: int) -> SpecOption:
    """Limit the number of processes in the container."""

    def option(spec: Spec) -> None:
        spec.linux.resources.pids = LinuxPids(limit=limit)

    return option


def with_open_file_limit(limit: int) -> SpecOption:
    """Limit the number of open files, both hard and soft."""

    def option(spec: Spec) -> None:
        spec.process.rlimits.append(
            POSIXRlimit(type="RLIMIT_NOFILE", hard=limit, soft=limit)
        )

    return option


def with_privileged() -> SpecOption:
    """Lift the default restrictions: root user, full capabilities, no seccomp."""

    def option(spec: Spec) -> None:
        apply(spec, with_capabilities(default_privileged_capabilities()))
        apply(spec, with_user(User(uid=0, gid=0)))

        spec.process.no_new_privileges = False

        spec.linux.masked_paths = []
        spec.linux.readonly_paths = []
        spec.linux.seccomp = None

        for mount in spec.mounts:
            mount.options = _without_nosuid(mount.options)

    return option


def _without_nosuid(options: list[str]) -> list[str]:
    if "nosuid" not in options:
        return options
    remaining = list(options)
    remaining.remove("nosuid")
    return remaining