import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .errors import ConfigurationError
from .hv_args import net_spec, parse_net_spec


class ArtifactRole(str, Enum):
    os_disk = "os_disk"
    cloudinit = "cloudinit"
    os_disk_raw = "os_disk_raw"


# Positional contract: scenarios that still index disks by position rely on it.
ARTIFACT_ORDER = (ArtifactRole.os_disk, ArtifactRole.cloudinit, ArtifactRole.os_disk_raw)


@dataclass
class ArtifactSet:
    """Named boot artifacts produced by the image composer for one scope."""

    os_disk: str
    cloudinit: str
    os_disk_raw: Optional[str] = None

    def path_for(self, role: ArtifactRole) -> str:
        path = getattr(self, role.value)
        if not path:
            raise KeyError(role.value)
        return path

    def as_list(self) -> list[str]:
        return [getattr(self, r.value) for r in ARTIFACT_ORDER if getattr(self, r.value)]


@dataclass
class GuestDescriptor:
    guest_ip: str
    host_ip: str
    guest_mac: str
    artifacts: ArtifactSet
    fw_path: str
    netmask: str = "255.255.255.0"

    @property
    def disks(self) -> list[str]:
        return self.artifacts.as_list()

    def default_net_string(self) -> str:
        return net_spec(self.host_ip, self.guest_mac, self.netmask)


class ProcState(str, Enum):
    running = "running"
    exited = "exited"
    killed = "killed"


@dataclass
class ProcessHandle:
    """
    Handle to a child process launched by a ProcessSupervisor.
    `state` only moves forward: running -> exited | killed.
    """

    name: str
    argv: list[str]
    proc: subprocess.Popen
    log_path: Optional[str] = None
    state: ProcState = ProcState.running
    returncode: Optional[int] = None

    @property
    def pid(self) -> int:
        return self.proc.pid

    def poll(self) -> Optional[int]:
        if self.state != ProcState.running:
            return self.returncode
        rc = self.proc.poll()
        if rc is not None:
            self.returncode = rc
            self.state = ProcState.exited
        return rc

    def read_log_tail(self, lines: int = 120) -> str:
        if not self.log_path or not os.path.exists(self.log_path):
            return ""
        with open(self.log_path, encoding="utf-8", errors="ignore") as fh:
            return "".join(fh.readlines()[-lines:])


# ===== Scenario parameters =====
class PmemSpec(BaseModel):
    source: Literal["scratch", "os_disk_raw"] = "scratch"
    size: Optional[int] = Field(None, ge=4096, description="Bytes; file size if unset")
    content: str = Field("", description="Initial content of a scratch backing file")


class ScenarioSpec(BaseModel):
    cpus: int = Field(1, ge=1, le=255)
    memory_size: str = Field("512M", pattern=r"^\d+[KMG]?$")
    memory_file: Optional[str] = Field(None, description="Memory backing path")
    kernel: str = Field("", description="File under WORKLOADS_DIR; firmware if empty")
    cmdline: Optional[str] = None
    disks: list[ArtifactRole] = Field(
        default_factory=lambda: [ArtifactRole.os_disk, ArtifactRole.cloudinit]
    )
    extra_nets: list[str] = Field(default_factory=list)
    fs: bool = Field(False, description="Launch the shared-filesystem side-car")
    pmem: Optional[PmemSpec] = None
    rng: Optional[str] = Field(None, pattern=r"^/", description="Entropy source path")
    serial: Literal["off", "tty", "file"] = "tty"

    @field_validator("extra_nets")
    @classmethod
    def _check_nets(cls, v: list[str]) -> list[str]:
        try:
            return [parse_net_spec(n) for n in v]
        except ConfigurationError as e:
            raise ValueError(str(e)) from e


@dataclass
class ScenarioResult:
    name: str
    ok: bool
    kind: str = ""
    message: str = ""
    duration_s: float = 0.0
