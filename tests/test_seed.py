import json
import os

import pytest

import settings
import guest_harness.proc as proc_mod
import guest_harness.seed as seed
from guest_harness.errors import ResourceError
from guest_harness.models import ArtifactRole
from guest_harness.scope import ResourceScope

TOKENS = (seed.HOST_IP_TOKEN, seed.GUEST_IP_TOKEN, seed.GUEST_MAC_TOKEN)


def test_render_user_data_substitutes_every_token():
    template = (
        "gw=@HOST_IP@\naddr=@GUEST_IP@/24\nmac=@GUEST_MAC@\n"
        "again=@GUEST_IP@ @HOST_IP@\n"
    )

    out = seed.render_user_data(template, "10.0.0.1", "10.0.0.2", "aa:bb:cc:dd:ee:ff")

    for token in TOKENS:
        assert token not in out
    assert "gw=10.0.0.1" in out
    assert "again=10.0.0.2 10.0.0.1" in out
    assert "mac=aa:bb:cc:dd:ee:ff" in out


def test_render_user_data_rejects_unknown_placeholder():
    with pytest.raises(ResourceError):
        seed.render_user_data("x=@NAMESERVER@", "10.0.0.1", "10.0.0.2", "aa:bb:cc:dd:ee:ff")


def test_shipped_template_renders_totally():
    with open(os.path.join(settings.CLOUDINIT_TEMPLATE_DIR, "user_data"), encoding="utf-8") as fh:
        template = fh.read()
    for token in TOKENS:
        assert token in template

    out = seed.render_user_data(template, "192.168.2.1", "192.168.2.2", "12:34:56:78:90:ab")

    assert seed._TOKEN_RE.search(out) is None
    assert "MACAddress=12:34:56:78:90:ab" in out


def test_make_config_disk_invokes_tools(tmp_path, fake_tools):
    workdir = tmp_path / "scope"
    workdir.mkdir()

    path = seed.make_config_disk(
        str(workdir),
        settings.CLOUDINIT_TEMPLATE_DIR,
        host_ip="192.168.9.1",
        guest_ip="192.168.9.2",
        guest_mac="02:00:00:00:00:01",
    )

    assert path == str(workdir / "cloudinit")
    assert fake_tools[0] == ["mkdosfs", "-n", "config-2", "-C", path, "8192"]
    assert fake_tools[1] == [
        "mcopy",
        "-o",
        "-i",
        path,
        "-s",
        str(workdir / "cloud-init" / "openstack"),
        "::",
    ]
    latest = workdir / "cloud-init" / "openstack" / "latest"
    rendered = (latest / "user_data").read_text()
    assert "192.168.9.2" in rendered and "02:00:00:00:00:01" in rendered
    assert json.loads((latest / "meta_data.json").read_text())["hostname"] == "cloud"


def test_tool_failure_is_fatal(tmp_path, monkeypatch):
    def failing_run(args, check=False, capture_output=False, text=False):
        raise proc_mod.subprocess.CalledProcessError(1, args, stderr="mkdosfs: boom")

    monkeypatch.setattr(proc_mod.subprocess, "run", failing_run)

    with pytest.raises(ResourceError) as exc:
        seed.make_config_disk(
            str(tmp_path), settings.CLOUDINIT_TEMPLATE_DIR, "1.1.1.1", "1.1.1.2", "02:00:00:00:00:01"
        )
    assert "mkdosfs" in str(exc.value)


def test_missing_tool_is_fatal(tmp_path, monkeypatch):
    def missing(args, check=False, capture_output=False, text=False):
        raise FileNotFoundError(2, "No such file or directory", args[0])

    monkeypatch.setattr(proc_mod.subprocess, "run", missing)

    with pytest.raises(ResourceError):
        seed.make_config_disk(
            str(tmp_path), settings.CLOUDINIT_TEMPLATE_DIR, "1.1.1.1", "1.1.1.2", "02:00:00:00:00:01"
        )


def test_compose_artifact_order_is_stable(workloads, fake_tools):
    with ResourceScope.acquire(prefix="test") as scope:
        desc = seed.compose(scope)

        # Positional contract: [os disk, config disk, raw os disk]
        assert desc.disks == [
            scope.path("osdisk.img"),
            scope.path("cloudinit"),
            scope.path("osdisk_raw.img"),
        ]
        assert desc.disks[0] == desc.artifacts.path_for(ArtifactRole.os_disk)
        assert desc.disks[1] == desc.artifacts.path_for(ArtifactRole.cloudinit)
        assert desc.disks[2] == desc.artifacts.path_for(ArtifactRole.os_disk_raw)
        assert all(os.path.exists(p) for p in desc.disks)
        assert desc.fw_path == str(workloads / "hypervisor-fw")
        assert desc.guest_ip == settings.GUEST_IP


def test_compose_without_raw_disk(workloads, fake_tools):
    with ResourceScope.acquire(prefix="test") as scope:
        desc = seed.compose(scope, with_raw=False)

        assert desc.disks == [scope.path("osdisk.img"), scope.path("cloudinit")]
        with pytest.raises(KeyError):
            desc.artifacts.path_for(ArtifactRole.os_disk_raw)


def test_compose_missing_base_image(tmp_path, monkeypatch, fake_tools):
    monkeypatch.setattr(settings, "WORKLOADS_DIR", str(tmp_path / "nowhere"), raising=False)

    with ResourceScope.acquire(prefix="test") as scope:
        with pytest.raises(ResourceError):
            seed.compose(scope)


def test_default_net_string(workloads, fake_tools):
    with ResourceScope.acquire(prefix="test") as scope:
        desc = seed.compose(scope, guest_mac="02:00:00:00:00:09", host_ip="10.1.1.1")

    assert desc.default_net_string() == "tap=,mac=02:00:00:00:00:09,ip=10.1.1.1,mask=255.255.255.0"
