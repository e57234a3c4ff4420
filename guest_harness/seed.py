import os
import re
import shutil
from typing import Optional

import settings

from .errors import ResourceError
from .models import ArtifactSet, GuestDescriptor
from .proc import _run_checked
from .scope import ResourceScope

HOST_IP_TOKEN = "@HOST_IP@"
GUEST_IP_TOKEN = "@GUEST_IP@"
GUEST_MAC_TOKEN = "@GUEST_MAC@"

_TOKEN_RE = re.compile(r"@[A-Z][A-Z0-9_]*@")

CONFIG_DISK_LABEL = "config-2"
CONFIG_DISK_BLOCKS = "8192"


def render_user_data(template: str, host_ip: str, guest_ip: str, guest_mac: str) -> str:
    """
    Substitute the per-guest identity into the user_data template.

    Substitution is total: a rendered payload that still carries any
    @TOKEN@ is rejected.
    """
    rendered = (
        template.replace(HOST_IP_TOKEN, host_ip)
        .replace(GUEST_IP_TOKEN, guest_ip)
        .replace(GUEST_MAC_TOKEN, guest_mac)
    )
    leftover = sorted(set(_TOKEN_RE.findall(rendered)))
    if leftover:
        raise ResourceError(f"Unresolved placeholders in user_data: {leftover}")
    return rendered


def make_config_disk(
    workdir: str,
    template_dir: str,
    host_ip: str,
    guest_ip: str,
    guest_mac: str,
) -> str:
    """
    Build the cloud-init config-drive image (openstack layout, vfat labelled
    config-2) and return its path.
    """
    print("Creating the config disk in: ", workdir, host_ip, guest_ip, guest_mac)
    disk_path = os.path.join(workdir, "cloudinit")
    latest = os.path.join(workdir, "cloud-init", "openstack", "latest")
    os.makedirs(latest, exist_ok=True)

    try:
        shutil.copyfile(
            os.path.join(template_dir, "meta_data.json"),
            os.path.join(latest, "meta_data.json"),
        )
        with open(os.path.join(template_dir, "user_data"), encoding="utf-8") as fh:
            template = fh.read()
    except OSError as e:
        raise ResourceError(f"Could not read cloud-init template: {e}") from e

    user_data = render_user_data(template, host_ip, guest_ip, guest_mac)
    print("Writing user_data")
    with open(os.path.join(latest, "user_data"), "w", encoding="utf-8") as fh:
        fh.write(user_data)

    _run_checked(
        ["mkdosfs", "-n", CONFIG_DISK_LABEL, "-C", disk_path, CONFIG_DISK_BLOCKS]
    )
    _run_checked(
        [
            "mcopy",
            "-o",
            "-i",
            disk_path,
            "-s",
            os.path.join(workdir, "cloud-init", "openstack"),
            "::",
        ]
    )
    return disk_path


def copy_os_disk(src: str, dst: str) -> str:
    print("Copying the OS disk: ", src, dst)
    try:
        shutil.copyfile(src, dst)
    except OSError as e:
        raise ResourceError(f"Copying of OS disk image {src} failed: {e}") from e
    return dst


def compose(
    scope: ResourceScope,
    template_dir: Optional[str] = None,
    guest_ip: Optional[str] = None,
    host_ip: Optional[str] = None,
    guest_mac: Optional[str] = None,
    with_raw: bool = True,
) -> GuestDescriptor:
    """
    Produce every boot artifact for one guest under `scope` and return the
    descriptor that carries them. Artifacts come back named; the ordered
    view is {os disk, config disk, [raw os disk]}.
    """
    workloads = settings.WORKLOADS_DIR
    guest_ip = guest_ip or settings.GUEST_IP
    host_ip = host_ip or settings.HOST_IP
    guest_mac = guest_mac or settings.GUEST_MAC

    os_disk = copy_os_disk(
        os.path.join(workloads, settings.HV_OS_IMAGE), scope.path("osdisk.img")
    )
    cloudinit = make_config_disk(
        scope.root,
        template_dir or settings.CLOUDINIT_TEMPLATE_DIR,
        host_ip=host_ip,
        guest_ip=guest_ip,
        guest_mac=guest_mac,
    )
    os_disk_raw = None
    if with_raw:
        os_disk_raw = copy_os_disk(
            os.path.join(workloads, settings.HV_OS_RAW_IMAGE),
            scope.path("osdisk_raw.img"),
        )

    return GuestDescriptor(
        guest_ip=guest_ip,
        host_ip=host_ip,
        guest_mac=guest_mac,
        artifacts=ArtifactSet(
            os_disk=os_disk, cloudinit=cloudinit, os_disk_raw=os_disk_raw
        ),
        fw_path=os.path.join(workloads, settings.HV_FIRMWARE),
        netmask=settings.GUEST_NETMASK,
    )
