import re
from typing import Optional, Sequence

import settings

from .errors import ConfigurationError

_SIZE_RE = re.compile(r"^\d+[KMG]?$")
_MAC_RE = re.compile(r"^([0-9a-fA-F]{2}:){5}[0-9a-fA-F]{2}$")


def memory_spec(size: str, file: Optional[str] = None) -> str:
    if not _SIZE_RE.match(size or ""):
        raise ConfigurationError(f"Invalid memory size: {size!r}")
    spec = f"size={size}"
    if file:
        spec += f",file={file}"
    return spec


def net_spec(ip: str, mac: str, mask: str = "255.255.255.0", tap: str = "") -> str:
    if not _MAC_RE.match(mac or ""):
        raise ConfigurationError(f"Invalid MAC address: {mac!r}")
    if not ip:
        raise ConfigurationError("Network spec needs an ip")
    return f"tap={tap},mac={mac},ip={ip},mask={mask}"


_NET_KEYS = ("tap", "mac", "ip", "mask")


def parse_net_spec(value: str) -> str:
    """Validate a "tap=..,mac=..,ip=..,mask=.." string and return it in canonical order."""
    fields = {}
    for item in (value or "").split(","):
        key, sep, val = item.partition("=")
        key = key.strip()
        if not sep or key not in _NET_KEYS:
            raise ConfigurationError(f"Invalid network spec item {item!r} in {value!r}")
        fields[key] = val.strip()
    return net_spec(
        fields.get("ip", ""),
        fields.get("mac", ""),
        fields.get("mask") or "255.255.255.0",
        fields.get("tap", ""),
    )


def fs_spec(sock: str, tag: str = "virtiofs", num_queues: int = 1, queue_size: int = 1024) -> str:
    if num_queues < 1 or queue_size < 1:
        raise ConfigurationError("virtio-fs needs at least one queue of size >= 1")
    return f"tag={tag},sock={sock},num_queues={num_queues},queue_size={queue_size}"


def pmem_spec(file: str, size: int) -> str:
    if size <= 0:
        raise ConfigurationError(f"Invalid pmem size: {size}")
    return f"file={file},size={size}"


def serial_spec(mode: str, path: Optional[str] = None) -> str:
    if mode in ("off", "tty"):
        return mode
    if mode == "file":
        if not path:
            raise ConfigurationError("Serial mode 'file' needs a path")
        return f"file={path}"
    raise ConfigurationError(f"Invalid serial mode: {mode!r} (off|tty|file)")


def build_hv_args(
    cpus: int,
    memory: str,
    kernel: str,
    disks: Sequence[str],
    nets: Sequence[str],
    cmdline: Optional[str] = None,
    rng: Optional[str] = None,
    fs: Optional[str] = None,
    pmem: Optional[str] = None,
    serial: Optional[str] = None,
    hv_bin: Optional[str] = None,
) -> list[str]:
    """
    Build the hypervisor argv. Options with more than one value (disks,
    nets) are passed after a single flag.
    """
    if cpus < 1:
        raise ConfigurationError(f"Invalid cpu count: {cpus}")
    if not kernel:
        raise ConfigurationError("Missing argument: kernel")

    args: list[str] = [hv_bin or settings.HV_BIN]
    args += ["--cpus", str(cpus), "--memory", memory, "--kernel", kernel]
    if cmdline:
        args += ["--cmdline", cmdline]
    if disks:
        args += ["--disk", *disks]
    if nets:
        args += ["--net", *nets]
    if rng:
        args += ["--rng", rng]
    if fs:
        args += ["--fs", fs]
    if pmem:
        args += ["--pmem", pmem]
    if serial:
        args += ["--serial", serial]
    print(args)
    return args
