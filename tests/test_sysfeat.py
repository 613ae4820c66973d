import pytest

from bpmkit.sysfeat import (
    Features,
    fetch,
    find_cgroup_mountpoint,
    swap_limit_supported,
)


def _write_mountinfo(path, lines):
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


def test_finds_memory_mountpoint(tmp_path):
    mountinfo = _write_mountinfo(
        tmp_path / "mountinfo",
        [
            "22 1 8:1 / / rw,relatime shared:1 - ext4 /dev/sda1 rw",
            "30 25 0:26 / /sys/fs/cgroup/cpu rw,nosuid shared:12 - cgroup cgroup rw,cpu,cpuacct",
            "31 25 0:27 / /sys/fs/cgroup/memory rw,nosuid shared:13 - cgroup cgroup rw,memory",
        ],
    )
    assert find_cgroup_mountpoint("memory", mountinfo) == "/sys/fs/cgroup/memory"
    assert find_cgroup_mountpoint("cpuacct", mountinfo) == "/sys/fs/cgroup/cpu"


def test_missing_subsystem_raises_lookup_error(tmp_path):
    mountinfo = _write_mountinfo(
        tmp_path / "mountinfo",
        ["22 1 8:1 / / rw,relatime shared:1 - ext4 /dev/sda1 rw"],
    )
    with pytest.raises(LookupError):
        find_cgroup_mountpoint("memory", mountinfo)


def test_line_without_separator_is_malformed(tmp_path):
    mountinfo = _write_mountinfo(tmp_path / "mountinfo", ["22 1 8:1 / / rw"])
    with pytest.raises(ValueError):
        find_cgroup_mountpoint("memory", mountinfo)


def test_cgroup_line_with_too_few_fields_is_malformed(tmp_path):
    mountinfo = _write_mountinfo(
        tmp_path / "mountinfo",
        ["31 25 0:27 / /sys/fs/cgroup/memory rw shared:13 - cgroup cgroup"],
    )
    with pytest.raises(ValueError):
        find_cgroup_mountpoint("memory", mountinfo)


def test_missing_mountinfo_raises_os_error(tmp_path):
    with pytest.raises(OSError):
        find_cgroup_mountpoint("memory", str(tmp_path / "absent"))


def test_swap_limit_supported_depends_on_file(tmp_path):
    assert swap_limit_supported(str(tmp_path)) is False
    (tmp_path / "memory.memsw.limit_in_bytes").write_text("0", encoding="utf-8")
    assert swap_limit_supported(str(tmp_path)) is True


def test_fetch_reports_swap_support(tmp_path):
    cgroup_dir = tmp_path / "memory"
    cgroup_dir.mkdir()
    mountinfo = _write_mountinfo(
        tmp_path / "mountinfo",
        [f"31 25 0:27 / {cgroup_dir} rw,nosuid shared:13 - cgroup cgroup rw,memory"],
    )
    assert fetch(mountinfo) == Features(swap_limit_supported=False)

    (cgroup_dir / "memory.memsw.limit_in_bytes").write_text("0", encoding="utf-8")
    assert fetch(mountinfo) == Features(swap_limit_supported=True)


def test_fetch_without_memory_cgroup_raises(tmp_path):
    mountinfo = _write_mountinfo(
        tmp_path / "mountinfo",
        ["22 1 8:1 / / rw,relatime shared:1 - ext4 /dev/sda1 rw"],
    )
    with pytest.raises(LookupError):
        fetch(mountinfo)