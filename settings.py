import os
from pathlib import Path
from dotenv import load_dotenv

_ = load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

HV_BIN = os.environ.get("HV_BIN", "target/debug/cloud-hypervisor")

WORKLOADS_DIR = os.environ.get("WORKLOADS_DIR", os.path.expanduser("~/workloads"))
HV_FIRMWARE = os.environ.get("HV_FIRMWARE", "hypervisor-fw")
HV_OS_IMAGE = os.environ.get("HV_OS_IMAGE", "clear-29810-cloud.img")
HV_OS_RAW_IMAGE = os.environ.get("HV_OS_RAW_IMAGE", "clear-29810-cloud-raw.img")

# Empty means "virtiofsd" and "shared_dir" under WORKLOADS_DIR
VIRTIOFSD_BIN = os.environ.get("VIRTIOFSD_BIN", "")
VIRTIOFSD_SHARED_DIR = os.environ.get("VIRTIOFSD_SHARED_DIR", "")

CLOUDINIT_TEMPLATE_DIR = os.environ.get(
    "CLOUDINIT_TEMPLATE_DIR",
    os.path.join(BASE_DIR, "test_data", "cloud-init", "openstack", "latest"),
)

GUEST_IP = os.environ.get("GUEST_IP", "192.168.2.2")
HOST_IP = os.environ.get("HOST_IP", "192.168.2.1")
GUEST_MAC = os.environ.get("GUEST_MAC", "12:34:56:78:90:ab")
GUEST_NETMASK = os.environ.get("GUEST_NETMASK", "255.255.255.0")

# Test credentials baked into the guest image, never used outside the harness
GUEST_SSH_USER = os.environ.get("GUEST_SSH_USER", "admin")
GUEST_SSH_PASSWORD = os.environ.get("GUEST_SSH_PASSWORD", "cloud123")
GUEST_SSH_PORT = int(os.environ.get("GUEST_SSH_PORT", "22"))

PROBE_MAX_ATTEMPTS = int(os.environ.get("PROBE_MAX_ATTEMPTS", "6"))
PROBE_BACKOFF_STEP_S = float(os.environ.get("PROBE_BACKOFF_STEP_S", "10"))
_connect_timeout = os.environ.get("PROBE_CONNECT_TIMEOUT_S", "")
PROBE_CONNECT_TIMEOUT_S: float | None = (
    float(_connect_timeout) if _connect_timeout else None
)

BOOT_SETTLE_S = float(os.environ.get("BOOT_SETTLE_S", "20"))
SHUTDOWN_SETTLE_S = float(os.environ.get("SHUTDOWN_SETTLE_S", "10"))
WAIT_FOR_READY: bool = os.environ.get("WAIT_FOR_READY", "").lower() == "true"
READY_TIMEOUT_S = float(os.environ.get("READY_TIMEOUT_S", "150"))
SIDECAR_READY_TIMEOUT_S = float(os.environ.get("SIDECAR_READY_TIMEOUT_S", "10"))

SCOPE_PREFIX = os.environ.get("SCOPE_PREFIX", "ch")
