"""Public API re-exports."""

from .errors import (
    BootError,
    ConfigurationError,
    HarnessError,
    ProbeError,
    ProbeErrorKind,
    ResourceError,
)
from .models import ArtifactRole, ArtifactSet, GuestDescriptor, ProcessHandle, ProcState
from .scope import ResourceScope
from .seed import compose, make_config_disk, render_user_data
from .hv_args import build_hv_args
from .proc import ProcessSupervisor
from .ssh_probe import GuestProbe, ReadyState
from .sidecar import launch_virtiofsd
from .guest import Guest

__all__ = [
    "BootError",
    "ConfigurationError",
    "HarnessError",
    "ProbeError",
    "ProbeErrorKind",
    "ResourceError",
    "ArtifactRole",
    "ArtifactSet",
    "GuestDescriptor",
    "ProcessHandle",
    "ProcState",
    "ResourceScope",
    "compose",
    "make_config_disk",
    "render_user_data",
    "build_hv_args",
    "ProcessSupervisor",
    "GuestProbe",
    "ReadyState",
    "launch_virtiofsd",
    "Guest",
]
