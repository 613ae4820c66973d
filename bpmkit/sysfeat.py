"""Detection of host features that decide which container settings apply."""

from __future__ import annotations

import os
from dataclasses import dataclass

MOUNTINFO_PATH = "/proc/self/mountinfo"
_SWAP_LIMIT_FILE = "memory.memsw.limit_in_bytes"


@dataclass(frozen=True)
class Features:
    """What the host system supports."""

    swap_limit_supported: bool = False


def find_cgroup_mountpoint(subsystem: str, mountinfo_path: str = MOUNTINFO_PATH) -> str:
    """Return where the cgroup v1 hierarchy holding ``subsystem`` is mounted.

    Raises LookupError when no such hierarchy is mounted and ValueError when
    the mount table cannot be parsed.
    """
    with open(mountinfo_path, encoding="utf-8") as mountinfo:
        for line in mountinfo:
            text = line.rstrip("\n")
            if not text:
                continue
            fields = text.split(" ")
            separator = text.find(" - ")
            if separator < 0:
                raise ValueError(f"found no fields post '-' in {text!r}")
            post_fields = text[separator + 3 :].split()
            if not post_fields:
                raise ValueError(f"found no fields post '-' in {text!r}")
            if post_fields[0] != "cgroup":
                continue
            if len(post_fields) < 3:
                raise ValueError(f"error found less than 3 fields post '-' in {text!r}")
            if len(fields) < 5:
                raise ValueError(f"malformed mount entry {text!r}")
            if subsystem in fields[-1].split(","):
                return fields[4]
    raise LookupError(f"mountpoint for {subsystem} not found")


def swap_limit_supported(mount: str) -> bool:
    """Tell whether the memory cgroup mounted at ``mount`` can limit swap."""
    try:
        os.stat(os.path.join(mount, _SWAP_LIMIT_FILE))
    except OSError:
        return False
    return True


def fetch(mountinfo_path: str = MOUNTINFO_PATH) -> Features:
    """Inspect the host and report the features it supports."""
    mountpoint = find_cgroup_mountpoint("memory", mountinfo_path)
    return Features(swap_limit_supported=swap_limit_supported(mountpoint))