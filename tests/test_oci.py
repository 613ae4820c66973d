import json

import pytest

from bpmkit.oci import (
    OCI_VERSION,
    OP_EQUAL_TO,
    Linux,
    LinuxCapabilities,
    LinuxMemory,
    LinuxPids,
    LinuxResources,
    LinuxSeccompArg,
    Mount,
    Process,
    Root,
    Spec,
    State,
    User,
    state_from_dict,
    to_dict,
)


def test_state_round_trip():
    state = State(
        version=OCI_VERSION,
        id="abc",
        status="running",
        pid=1234,
        bundle="/var/bundles/abc",
        annotations={"k": "v"},
    )
    assert state_from_dict(to_dict(state)) == state


def test_state_without_pid_round_trips():
    state = State(version=OCI_VERSION, id="abc", status="stopped", bundle="/b")
    document = to_dict(state)
    assert 0 not in document.values()
    assert state_from_dict(document) == state


def test_state_uses_oci_version_key():
    assert to_dict(State(version=OCI_VERSION))["ociVersion"] == OCI_VERSION


def test_state_from_dict_ignores_unknown_keys():
    state = State(version=OCI_VERSION, id="abc", status="running", pid=7, bundle="/b")
    document = dict(to_dict(state), rootfs="/b/rootfs", owner="")
    assert state_from_dict(document) == state


def test_state_from_dict_rejects_non_mapping():
    with pytest.raises(ValueError):
        state_from_dict([])


def test_state_from_dict_rejects_bad_pid():
    document = to_dict(State(id="abc", status="running", pid=3))
    document["pid"] = "three"
    with pytest.raises(ValueError):
        state_from_dict(document)


def test_mount_omits_empty_options():
    document = to_dict(Mount(destination="/proc", type="proc", source="proc"))
    assert list(document.values()) == ["/proc", "proc", "proc"]


def test_mount_keeps_options():
    options = ["nosuid", "noexec", "nodev"]
    document = to_dict(
        Mount(destination="/dev/mqueue", type="mqueue", source="mqueue", options=options)
    )
    assert options in document.values()


def test_user_ids_are_always_present():
    document = to_dict(User())
    assert len(document) == 2
    assert set(document.values()) == {0}


def test_pointer_fields_keep_zero_values():
    assert list(to_dict(LinuxMemory(limit=0)).values()) == [0]
    assert list(to_dict(LinuxPids(limit=0)).values()) == [0]


def test_unset_pointer_fields_are_omitted():
    assert list(to_dict(Spec(version=OCI_VERSION)).values()) == [OCI_VERSION]


def test_present_empty_struct_is_encoded():
    assert list(to_dict(Linux(resources=LinuxResources())).values()) == [{}]


def test_seccomp_arg_omits_zero_second_value():
    document = to_dict(LinuxSeccompArg(index=0, value=8, op=OP_EQUAL_TO))
    assert list(document.values()) == [0, 8, OP_EQUAL_TO]


def test_nested_objects_are_converted():
    process = Process(
        user=User(uid=200, gid=300, username="vcap"),
        args=["/bin/sleep", "10"],
        env=["A=B"],
        cwd="/",
        capabilities=LinuxCapabilities(bounding=["CAP_KILL"]),
        no_new_privileges=True,
    )
    mounts = [Mount(destination="/tmp", type="bind", source="/data/tmp", options=["rbind"])]
    spec = Spec(process=process, root=Root(path="/rootfs"), mounts=mounts)
    document = to_dict(spec)
    assert to_dict(process) in document.values()
    assert to_dict(Root(path="/rootfs")) in document.values()
    assert [to_dict(mount) for mount in mounts] in document.values()


def test_document_is_json_serialisable():
    spec = Spec(
        process=Process(args=["/bin/true"], cwd="/"),
        linux=Linux(resources=LinuxResources(pids=LinuxPids(limit=30))),
    )
    document = to_dict(spec)
    assert json.loads(json.dumps(document)) == document


def test_to_dict_rejects_plain_values():
    with pytest.raises(TypeError):
        to_dict({"destination": "/proc"})
    with pytest.raises(TypeError):
        to_dict(Mount)