"""Data model of the OCI runtime specification, as far as it is used here.

Every field carries its JSON key and its omission rule in the dataclass field
metadata, so that :func:`to_dict` produces the document a runtime expects.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

OCI_VERSION = "1.0.2"

ACT_ALLOW = "SCMP_ACT_ALLOW"
ACT_ERRNO = "SCMP_ACT_ERRNO"

ARCH_X86_64 = "SCMP_ARCH_X86_64"
ARCH_X86 = "SCMP_ARCH_X86"
ARCH_X32 = "SCMP_ARCH_X32"

OP_EQUAL_TO = "SCMP_CMP_EQ"
OP_MASKED_EQUAL = "SCMP_CMP_MASKED_EQ"

_NEVER = "never"
_IF_EMPTY = "empty"
_IF_NONE = "none"


def _field(key: str, omit: str = _NEVER, **kwargs: Any) -> Any:
    return field(metadata={"json": key, "omit": omit}, **kwargs)


@dataclass
class User:
    """The user a container process runs as."""

    uid: int = _field("uid", default=0)
    gid: int = _field("gid", default=0)
    additional_gids: list[int] = _field(
        "additionalGids", _IF_EMPTY, default_factory=list
    )
    username: str = _field("username", _IF_EMPTY, default="")


@dataclass
class Mount:
    """A filesystem mount inside the container."""

    destination: str = _field("destination", default="")
    type: str = _field("type", _IF_EMPTY, default="")
    source: str = _field("source", _IF_EMPTY, default="")
    options: list[str] = _field("options", _IF_EMPTY, default_factory=list)


@dataclass
class Root:
    """The root filesystem of the container."""

    path: str = _field("path", default="")
    readonly: bool = _field("readonly", _IF_EMPTY, default=False)


@dataclass
class LinuxCapabilities:
    """Capability sets of the container process."""

    bounding: list[str] = _field("bounding", _IF_EMPTY, default_factory=list)
    effective: list[str] = _field("effective", _IF_EMPTY, default_factory=list)
    inheritable: list[str] = _field("inheritable", _IF_EMPTY, default_factory=list)
    permitted: list[str] = _field("permitted", _IF_EMPTY, default_factory=list)
    ambient: list[str] = _field("ambient", _IF_EMPTY, default_factory=list)


@dataclass
class POSIXRlimit:
    """A resource limit applied to the container process."""

    type: str = _field("type", default="")
    hard: int = _field("hard", default=0)
    soft: int = _field("soft", default=0)


@dataclass
class Process:
    """The process started inside the container."""

    terminal: bool = _field("terminal", _IF_EMPTY, default=False)
    user: User = _field("user", default_factory=User)
    args: list[str] = _field("args", _IF_EMPTY, default_factory=list)
    env: list[str] = _field("env", _IF_EMPTY, default_factory=list)
    cwd: str = _field("cwd", default="")
    capabilities: Optional[LinuxCapabilities] = _field(
        "capabilities", _IF_NONE, default=None
    )
    rlimits: list[POSIXRlimit] = _field("rlimits", _IF_EMPTY, default_factory=list)
    no_new_privileges: bool = _field("noNewPrivileges", _IF_EMPTY, default=False)


@dataclass
class LinuxNamespace:
    """A namespace the container is placed in."""

    type: str = _field("type", default="")
    path: str = _field("path", _IF_EMPTY, default="")


@dataclass
class LinuxMemory:
    """Memory limits in bytes."""

    limit: Optional[int] = _field("limit", _IF_NONE, default=None)
    swap: Optional[int] = _field("swap", _IF_NONE, default=None)


@dataclass
class LinuxPids:
    """The maximum number of processes in the container."""

    limit: int = _field("limit", default=0)


@dataclass
class LinuxResources:
    """Cgroup resource restrictions."""

    memory: Optional[LinuxMemory] = _field("memory", _IF_NONE, default=None)
    pids: Optional[LinuxPids] = _field("pids", _IF_NONE, default=None)


@dataclass
class LinuxSeccompArg:
    """A condition on one argument of a system call."""

    index: int = _field("index", default=0)
    value: int = _field("value", default=0)
    value_two: int = _field("valueTwo", _IF_EMPTY, default=0)
    op: str = _field("op", default="")


@dataclass
class LinuxSyscall:
    """A seccomp rule for a group of system calls."""

    names: list[str] = _field("names", default_factory=list)
    action: str = _field("action", default="")
    args: list[LinuxSeccompArg] = _field("args", _IF_EMPTY, default_factory=list)


@dataclass
class LinuxSeccomp:
    """A seccomp filter profile."""

    default_action: str = _field("defaultAction", default="")
    architectures: list[str] = _field("architectures", _IF_EMPTY, default_factory=list)
    syscalls: list[LinuxSyscall] = _field("syscalls", _IF_EMPTY, default_factory=list)


@dataclass
class Linux:
    """Linux specific container configuration."""

    resources: Optional[LinuxResources] = _field("resources", _IF_NONE, default=None)
    cgroups_path: str = _field("cgroupsPath", _IF_EMPTY, default="")
    namespaces: list[LinuxNamespace] = _field(
        "namespaces", _IF_EMPTY, default_factory=list
    )
    seccomp: Optional[LinuxSeccomp] = _field("seccomp", _IF_NONE, default=None)
    rootfs_propagation: str = _field("rootfsPropagation", _IF_EMPTY, default="")
    masked_paths: list[str] = _field("maskedPaths", _IF_EMPTY, default_factory=list)
    readonly_paths: list[str] = _field(
        "readonlyPaths", _IF_EMPTY, default_factory=list
    )


@dataclass
class Spec:
    """A complete container configuration."""

    version: str = _field("ociVersion", default=OCI_VERSION)
    process: Optional[Process] = _field("process", _IF_NONE, default=None)
    root: Optional[Root] = _field("root", _IF_NONE, default=None)
    hostname: str = _field("hostname", _IF_EMPTY, default="")
    mounts: list[Mount] = _field("mounts", _IF_EMPTY, default_factory=list)
    annotations: dict[str, str] = _field(
        "annotations", _IF_EMPTY, default_factory=dict
    )
    linux: Optional[Linux] = _field("linux", _IF_NONE, default=None)


@dataclass
class State:
    """The runtime state of a container as reported by the runtime."""

    version: str = _field("ociVersion", default="")
    id: str = _field("id", default="")
    status: str = _field("status", default="")
    pid: int = _field("pid", _IF_EMPTY, default=0)
    bundle: str = _field("bundle", default="")
    annotations: dict[str, str] = _field(
        "annotations", _IF_EMPTY, default_factory=dict
    )


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _encode(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_dict(value)
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    return value


def to_dict(obj: Any) -> dict[str, Any]:
    """Convert a specification object into its JSON document form."""
    if not dataclasses.is_dataclass(obj) or isinstance(obj, type):
        raise TypeError(f"expected a specification object, got {type(obj).__name__}")

    document: dict[str, Any] = {}
    for spec_field in dataclasses.fields(obj):
        value = getattr(obj, spec_field.name)
        omit = spec_field.metadata.get("omit", _NEVER)
        if omit == _IF_NONE and value is None:
            continue
        if omit == _IF_EMPTY and _is_empty(value):
            continue
        document[spec_field.metadata["json"]] = _encode(value)
    return document


def state_from_dict(data: Any) -> State:
    """Build a :class:`State` from a decoded runtime state document.

    Unknown keys are ignored; values of the wrong type raise ValueError.
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"state document must be an object, got {type(data).__name__}")

    values: dict[str, Any] = {}
    for spec_field in dataclasses.fields(State):
        key = spec_field.metadata["json"]
        if key not in data or data[key] is None:
            continue
        value = data[key]
        if spec_field.name == "pid":
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"state field {key!r} must be an integer")
        elif spec_field.name == "annotations":
            if not isinstance(value, Mapping):
                raise ValueError(f"state field {key!r} must be an object")
            value = dict(value)
        elif not isinstance(value, str):
            raise ValueError(f"state field {key!r} must be a string")
        values[spec_field.name] = value
    return State(**values)