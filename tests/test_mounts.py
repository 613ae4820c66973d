import logging

from bpmkit.mounts import MountDeduplicator, MountOption, identity_mount, mount
from bpmkit.oci import Mount


def test_mount_defaults_are_most_restrictive():
    result = mount("/host/src", "/container/dst")
    assert result == Mount(
        destination="/container/dst",
        source="/host/src",
        type="bind",
        options=["bind", "noexec", "nosuid", "nodev", "ro"],
    )


def test_identity_mount_with_all_options():
    result = identity_mount(
        "/data", MountOption.RECURSIVE_BIND, MountOption.EXEC, MountOption.WRITABLE
    )
    assert result.source == "/data"
    assert result.destination == "/data"
    assert result.options == ["rbind", "exec", "nosuid", "nodev", "rw"]


def test_option_order_does_not_matter():
    first = mount("/a", "/b", MountOption.WRITABLE, MountOption.EXEC)
    second = mount("/a", "/b", MountOption.EXEC, MountOption.WRITABLE)
    assert first == second


def test_repeated_option_is_same_as_single():
    assert mount("/a", "/b", MountOption.EXEC, MountOption.EXEC) == mount(
        "/a", "/b", MountOption.EXEC
    )


def test_combined_flag_equals_separate_options():
    combined = identity_mount("/p", MountOption.EXEC | MountOption.WRITABLE)
    separate = identity_mount("/p", MountOption.EXEC, MountOption.WRITABLE)
    assert combined == separate


def test_dedup_keeps_first_mount_for_destination():
    dedup = MountDeduplicator()
    dedup.add_mounts([mount("/first", "/dst"), mount("/second", "/dst")])
    result = dedup.mounts()
    assert len(result) == 1
    assert result[0].source == "/first"


def test_dedup_logs_duplicates(caplog):
    logger = logging.getLogger("test-dedup")
    caplog.set_level(logging.INFO, logger="test-dedup")
    dedup = MountDeduplicator(logger)
    dedup.add_mounts([identity_mount("/dst")])
    dedup.add_mounts([identity_mount("/dst")])
    records = [r for r in caplog.records if r.getMessage() == "duplicate-mount"]
    assert len(records) == 1
    assert records[0].mount == "/dst"


def test_mounts_sorted_by_depth():
    dedup = MountDeduplicator()
    dedup.add_mounts(
        [
            identity_mount("/a/b/c/d"),
            identity_mount("/a"),
            identity_mount("/a/b/c"),
            identity_mount("/x/y"),
        ]
    )
    depths = [len(m.destination.split("/")) for m in dedup.mounts()]
    assert depths == sorted(depths)
    assert dedup.mounts()[0].destination == "/a"


def test_equal_depth_keeps_insertion_order():
    dedup = MountDeduplicator()
    paths = ["/z", "/m", "/a"]
    dedup.add_mounts(identity_mount(p) for p in paths)
    assert [m.destination for m in dedup.mounts()] == paths


def test_empty_deduplicator_has_no_mounts():
    assert MountDeduplicator().mounts() == []