"""Bind mount descriptions and de-duplication of container mounts."""

from __future__ import annotations

import enum
import functools
import logging
import operator
from collections.abc import Iterable

from .oci import Mount

_log = logging.getLogger(__name__)


class MountOption(enum.Flag):
    """Loosens the restrictive defaults of a bind mount."""

    EXEC = enum.auto()
    """Allow binaries to be executed from the mount (exec/noexec)."""
    WRITABLE = enum.auto()
    """Allow writes to the mount (rw/ro)."""
    RECURSIVE_BIND = enum.auto()
    """Bind nested mounts of the source too (rbind/bind)."""


# Each entry: (flag enabling the loose option, loose option, restrictive option).
# A flag of None means the option can never be loosened.
_TOGGLES: tuple[tuple[MountOption | None, str, str], ...] = (
    (MountOption.RECURSIVE_BIND, "rbind", "bind"),
    (MountOption.EXEC, "exec", "noexec"),
    (None, "suid", "nosuid"),
    (None, "dev", "nodev"),
    (MountOption.WRITABLE, "rw", "ro"),
)


def _option_strings(flags: MountOption) -> list[str]:
    options: list[str] = []
    for flag, loose, restrictive in _TOGGLES:
        enabled = flag is not None and flag in flags
        options.append(loose if enabled else restrictive)
    return options


def mount(source: str, destination: str, *options: MountOption) -> Mount:
    """Describe a bind mount of ``source`` at ``destination``.

    Without options the most restrictive mount options are used.
    """
    flags = functools.reduce(operator.or_, options, MountOption(0))
    return Mount(
        destination=destination,
        source=source,
        type="bind",
        options=_option_strings(flags),
    )


def identity_mount(path: str, *options: MountOption) -> Mount:
    """Describe a bind mount of ``path`` onto the same path in the container."""
    return mount(path, path, *options)


class MountDeduplicator:
    """Collects mounts, keeping the first mount for each destination."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._by_destination: dict[str, Mount] = {}
        self._logger = logger if logger is not None else _log

    def add_mounts(self, mounts: Iterable[Mount]) -> None:
        """Add ``mounts``, skipping (and logging) any whose destination is taken."""
        for item in mounts:
            destination = item.destination
            if destination in self._by_destination:
                self._logger.info("duplicate-mount", extra={"mount": destination})
                continue
            self._by_destination[destination] = item

    def mounts(self) -> list[Mount]:
        """Return the collected mounts, shallowest destinations first."""
        return sorted(
            self._by_destination.values(),
            key=lambda item: len(item.destination.split("/")),
        )