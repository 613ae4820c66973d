"""Translation of job configuration into host preparation and container specs."""

from __future__ import annotations

import logging
import os
import stat
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import IO, Any, Protocol

from . import specbuilder
from .mounts import MountDeduplicator, MountOption, identity_mount, mount
from .oci import Mount, Spec, User
from .sysfeat import Features

RESOLV_CONF_DIR = "/run/resolvconf"
DEFAULT_LANG = "en_US.UTF-8"

_DEFAULT_PATH_TAIL = "/usr/local/bin:/usr/local/sbin:/usr/bin:/usr/sbin:/bin:/sbin:."

_INVALID_BYTES = (
    "byte quantity must be a positive integer with a unit of measurement "
    "like M, MB, MiB, G, GiB, or GB"
)

_MULTIPLIERS: dict[str, int] = {"B": 1}
for _power, _prefix in enumerate("KMGTPE", start=1):
    for _suffix in ("", "B", "IB"):
        _MULTIPLIERS[_prefix + _suffix] = 1024**_power

GlobFunc = Callable[[str], list[str]]
MountSharer = Callable[[str], None]


class _HostPath(Protocol):
    external: str
    internal: str

    def join(self, *parts: str) -> "_HostPath": ...


class _Lock(Protocol):
    def unlock(self) -> Any: ...


class _VolumeLocker(Protocol):
    def lock_volume(self, path: str) -> _Lock: ...


def parse_bytes(value: str) -> int:
    """Parse a byte quantity such as ``"100G"`` or ``"512MiB"`` into bytes.

    Units are powers of 1024. Raises ValueError for malformed quantities.
    """
    text = value.strip().upper()
    index = next((i for i, ch in enumerate(text) if ch.isalpha()), -1)
    if index < 0:
        raise ValueError(_INVALID_BYTES)

    number, unit = text[:index], text[index:]
    if "_" in number:
        raise ValueError(_INVALID_BYTES)
    try:
        amount = float(number)
    except ValueError:
        raise ValueError(_INVALID_BYTES) from None
    if amount < 0 or unit not in _MULTIPLIERS:
        raise ValueError(_INVALID_BYTES)
    return int(amount * _MULTIPLIERS[unit])


def default_path(cfg: Any) -> str:
    """Return the PATH given to a job that does not set its own."""
    return f"{cfg.job_dir().join('bin').internal}:{_DEFAULT_PATH_TAIL}"


def process_environment(env: Mapping[str, str], cfg: Any) -> list[str]:
    """Render ``env`` as KEY=VALUE entries, adding defaults for missing keys."""
    environ = [f"{key}={value}" for key, value in env.items()]
    defaults = (
        ("TMPDIR", lambda: cfg.temp_dir().internal),
        ("LANG", lambda: DEFAULT_LANG),
        ("PATH", lambda: default_path(cfg)),
        ("HOME", lambda: cfg.data_dir().internal),
    )
    for key, value in defaults:
        if key not in env:
            environ.append(f"{key}={value()}")
    return environ


def process_capabilities(capabilities: Iterable[str]) -> list[str]:
    """Prefix each capability name with ``CAP_``."""
    return [f"CAP_{cap}" for cap in capabilities]


def _dir_exists(path: str) -> bool:
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def _mkdir_all(path: str, mode: int = 0o700) -> None:
    """Create ``path`` and any missing parents, all with ``mode``."""
    if os.path.isdir(path):
        return
    parent = os.path.dirname(path.rstrip(os.sep))
    if parent and parent != path and not os.path.exists(parent):
        _mkdir_all(parent, mode)
    try:
        os.mkdir(path, mode)
    except FileExistsError:
        if not os.path.isdir(path):
            raise NotADirectoryError(f"not a directory: {path}") from None


def _create_dir_for(path: str, user: User) -> None:
    _mkdir_all(path, 0o700)
    os.chown(path, user.uid, user.gid)


def _open_log(path: str, flags: int) -> int:
    return os.open(path, os.O_RDWR | os.O_CREAT | os.O_APPEND, 0o600)


def _create_file_for(path: str, user: User) -> IO[bytes]:
    log_file = open(path, "ab+", opener=_open_log)
    try:
        os.chown(path, user.uid, user.gid)
    except BaseException:
        log_file.close()
        raise
    return log_file


def _create_log_files(bpm_cfg: Any, user: User) -> tuple[IO[bytes], IO[bytes]]:
    stdout = _create_file_for(bpm_cfg.stdout().external, user)
    try:
        stderr = _create_file_for(bpm_cfg.stderr().external, user)
    except BaseException:
        stdout.close()
        raise
    return stdout, stderr


def _system_identity_mounts(mount_resolv_conf: bool, resolv_conf_dir: str) -> list[Mount]:
    mounts = [
        identity_mount(path, MountOption.EXEC)
        for path in ("/bin", "/etc", "/lib", "/lib64", "/sbin", "/usr")
    ]
    if mount_resolv_conf:
        mounts.append(identity_mount(resolv_conf_dir))
    return mounts


def _bosh_mounts(bpm_cfg: Any, mount_data: bool, mount_store: bool) -> list[Mount]:
    writable = (MountOption.RECURSIVE_BIND, MountOption.WRITABLE)
    job_dir = bpm_cfg.job_dir()
    log_dir = bpm_cfg.log_dir()
    tmp_dir = bpm_cfg.temp_dir()
    package_dir = bpm_cfg.package_dir()
    data_package_dir = bpm_cfg.data_package_dir()

    mounts = [
        mount(tmp_dir.external, "/tmp", *writable),
        mount(tmp_dir.external, "/var/tmp", *writable),
        mount(tmp_dir.external, tmp_dir.internal, *writable),
        mount(data_package_dir.external, data_package_dir.internal, MountOption.EXEC),
        mount(package_dir.external, package_dir.internal, MountOption.EXEC),
        mount(job_dir.external, job_dir.internal, MountOption.EXEC),
        mount(log_dir.external, log_dir.internal, *writable),
    ]
    if mount_data:
        data_dir = bpm_cfg.data_dir()
        mounts.append(mount(data_dir.external, data_dir.internal, *writable))
    if mount_store:
        store_dir = bpm_cfg.store_dir()
        mounts.append(mount(store_dir.external, store_dir.internal, *writable))
    return mounts


def _volume_mount(path: str, volume: Any) -> Mount:
    options = [MountOption.RECURSIVE_BIND]
    if volume.allow_executions:
        options.append(MountOption.EXEC)
    if volume.writable:
        options.append(MountOption.WRITABLE)
    return identity_mount(path, *options)


def _user_provided_mounts(volumes: Iterable[Any]) -> list[Mount]:
    return [_volume_mount(volume.path, volume) for volume in volumes]


class RuncAdapter:
    """Prepares the host for a job and builds the container spec it runs in."""

    def __init__(
        self,
        features: Features,
        glob: GlobFunc,
        share_mount: MountSharer,
        locker: _VolumeLocker,
        *,
        resolv_conf_dir: str = RESOLV_CONF_DIR,
    ) -> None:
        self._features = features
        self._glob = glob
        self._share_mount = share_mount
        self._locker = locker
        self._resolv_conf_dir = resolv_conf_dir

    def create_job_prerequisites(
        self, bpm_cfg: Any, proc_cfg: Any, user: User
    ) -> tuple[IO[bytes], IO[bytes]]:
        """Create the job's directories and volumes and open its log files.

        Returns the stdout and stderr log files, opened for appending.
        """
        _mkdir_all(bpm_cfg.pid_dir().external, 0o700)

        dirs_to_create: list[str] = []
        paths_to_chown: list[str] = []
        for volume in proc_cfg.additional_volumes:
            if volume.shared:
                self._make_shared(volume.path)
            if volume.mount_only:
                continue

            try:
                info = os.stat(volume.path)
            except FileNotFoundError:
                dirs_to_create.append(volume.path)
            else:
                if stat.S_ISDIR(info.st_mode) and stat.S_IMODE(info.st_mode) != 0o700:
                    os.chmod(volume.path, 0o700)
            paths_to_chown.append(volume.path)

        dirs_to_create.extend(
            [
                bpm_cfg.log_dir().external,
                bpm_cfg.socket_dir().external,
                bpm_cfg.temp_dir().external,
            ]
        )

        if proc_cfg.ephemeral_disk:
            dirs_to_create.append(bpm_cfg.data_dir().external)

        if proc_cfg.persistent_disk:
            store_dir = bpm_cfg.store_dir().external
            if not _dir_exists(os.path.dirname(store_dir)):
                raise FileNotFoundError("requested persistent disk does not exist")
            dirs_to_create.append(store_dir)

        for path in dirs_to_create:
            _create_dir_for(path, user)
        for path in paths_to_chown:
            os.chown(path, user.uid, user.gid)

        return _create_log_files(bpm_cfg, user)

    def _make_shared(self, path: str) -> None:
        held = self._locker.lock_volume(path)
        try:
            self._share_mount(path)
        finally:
            held.unlock()

    def _glob_expand(self, volumes: Iterable[Any]) -> Iterator[Mount]:
        for volume in volumes:
            for match in self._glob(volume.path):
                yield _volume_mount(match, volume)

    def build_spec(
        self, logger: logging.Logger | None, bpm_cfg: Any, proc_cfg: Any, user: User
    ) -> Spec:
        """Build the container spec for running the job's process."""
        cwd = proc_cfg.work_dir or bpm_cfg.job_dir().internal
        mount_resolv_conf = _dir_exists(self._resolv_conf_dir)

        dedup = MountDeduplicator(logger)
        dedup.add_mounts(_system_identity_mounts(mount_resolv_conf, self._resolv_conf_dir))
        dedup.add_mounts(
            _bosh_mounts(bpm_cfg, proc_cfg.ephemeral_disk, proc_cfg.persistent_disk)
        )
        dedup.add_mounts(_user_provided_mounts(proc_cfg.additional_volumes))
        unsafe = proc_cfg.unsafe
        if unsafe is not None and unsafe.unrestricted_volumes:
            dedup.add_mounts(list(self._glob_expand(unsafe.unrestricted_volumes)))

        init_args = ["-w", "-s", "--", proc_cfg.executable, *proc_cfg.args]

        spec = specbuilder.build(
            specbuilder.with_root_filesystem(bpm_cfg.root_fs_path()),
            specbuilder.with_user(user),
            specbuilder.with_process(
                bpm_cfg.tini_path().internal,
                init_args,
                process_environment(proc_cfg.env, bpm_cfg),
                cwd,
            ),
            specbuilder.with_capabilities(process_capabilities(proc_cfg.capabilities)),
            specbuilder.with_mounts(dedup.mounts()),
            specbuilder.with_namespace("ipc"),
            specbuilder.with_namespace("mount"),
            specbuilder.with_namespace("pid"),
            specbuilder.with_namespace("uts"),
        )

        limits = proc_cfg.limits
        if limits is not None:
            if limits.memory is not None:
                memory_limit = parse_bytes(limits.memory)
                specbuilder.apply(
                    spec, specbuilder.with_memory_limit(memory_limit, self._features)
                )
            if limits.processes is not None:
                specbuilder.apply(spec, specbuilder.with_pid_limit(limits.processes))
            if limits.open_files is not None:
                specbuilder.apply(spec, specbuilder.with_open_file_limit(limits.open_files))

        if unsafe is not None and unsafe.privileged:
            specbuilder.apply(spec, specbuilder.with_privileged())

        return spec