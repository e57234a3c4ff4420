import os
import time
from typing import Optional

import settings

from .errors import ResourceError
from .models import ProcessHandle
from .scope import ResourceScope


def virtiofsd_args(binary: str, socket_path: str, shared_dir: str) -> list[str]:
    return [
        binary,
        "-o",
        f"vhost_user_socket={socket_path}",
        "-o",
        f"source={shared_dir}",
        "-o",
        "cache=none",
    ]


def wait_for_socket(
    handle: ProcessHandle, socket_path: str, timeout: float
) -> bool:
    """True once `socket_path` exists; False on deadline. Raises if the daemon dies."""
    start = time.time()
    while time.time() - start < timeout:
        if os.path.exists(socket_path):
            return True
        if handle.poll() is not None:
            raise ResourceError(
                f"{handle.name} exited with {handle.returncode} before creating "
                f"{socket_path}:\n{handle.read_log_tail()}"
            )
        time.sleep(0.05)
    return os.path.exists(socket_path)


def launch_virtiofsd(
    scope: ResourceScope,
    binary: Optional[str] = None,
    shared_dir: Optional[str] = None,
    timeout: Optional[float] = None,
) -> tuple[ProcessHandle, str]:
    """
    Start the shared-filesystem daemon with its socket inside `scope` and
    wait until the socket is there, so the hypervisor never connects early.
    """
    socket_path = scope.path("virtiofs.sock")
    handle = scope.supervisor.launch(
        virtiofsd_args(
            binary
            or settings.VIRTIOFSD_BIN
            or os.path.join(settings.WORKLOADS_DIR, "virtiofsd"),
            socket_path,
            shared_dir
            or settings.VIRTIOFSD_SHARED_DIR
            or os.path.join(settings.WORKLOADS_DIR, "shared_dir"),
        ),
        name="virtiofsd",
        log_path=scope.path("virtiofsd.log"),
    )
    timeout = timeout if timeout is not None else settings.SIDECAR_READY_TIMEOUT_S
    if not wait_for_socket(handle, socket_path, timeout):
        raise ResourceError(f"virtiofsd socket {socket_path} not ready after {timeout}s")
    print("virtiofsd ready on", socket_path)
    return handle, socket_path
