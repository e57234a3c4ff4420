import subprocess
import time
from typing import Callable, Iterable, Optional

import psutil

from .errors import HarnessError, ResourceError
from .models import ProcessHandle, ProcState


def _run_checked(cmd: Iterable[str]) -> subprocess.CompletedProcess:
    """subprocess.run with check=True; any failure to run becomes a ResourceError."""
    args = list(cmd)
    print(args)
    try:
        return subprocess.run(args, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise ResourceError(
            f"{args[0]} exited with {e.returncode}: {(e.stderr or '').strip()}"
        ) from e
    except OSError as e:
        raise ResourceError(f"Could not run {args[0]}: {e}") from e


def safe(call, default=None):
    try:
        return call()
    except (psutil.AccessDenied, psutil.ZombieProcess, psutil.NoSuchProcess):
        return default


def pid_alive(pid: int) -> bool:
    """True while `pid` exists and is not a zombie waiting to be reaped."""
    if not psutil.pid_exists(pid):
        return False
    status = safe(lambda: psutil.Process(pid).status())
    return status is not None and status != psutil.STATUS_ZOMBIE


class ProcessSupervisor:
    """
    Owns every child process spawned for one scenario.

    `terminate` is idempotent: killing or reaping a process that is already
    gone is logged and ignored, so cleanup never fails destructively.
    """

    def __init__(self) -> None:
        self.handles: list[ProcessHandle] = []

    def launch(
        self, argv: list[str], name: str = "", log_path: Optional[str] = None
    ) -> ProcessHandle:
        name = name or argv[0]
        print(f"Launching {name}: {argv}")
        log_fh = subprocess.DEVNULL
        try:
            if log_path:
                log_fh = open(log_path, "ab")
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=log_fh,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise ResourceError(f"Could not spawn {name}: {e}") from e
        finally:
            if log_fh is not subprocess.DEVNULL:
                log_fh.close()

        handle = ProcessHandle(name=name, argv=list(argv), proc=proc, log_path=log_path)
        self.handles.append(handle)
        print("Process executed", proc.pid)
        return handle

    def graceful_stop(
        self,
        handle: ProcessHandle,
        via: Callable[[str], str],
        command: str = "sudo reboot",
        settle_s: float = 0,
    ) -> None:
        """Run an in-guest shutdown command, wait, then force-terminate."""
        if handle.poll() is None:
            try:
                via(command)
            except HarnessError as e:
                print(f"Graceful stop of {handle.name} failed, killing instead", e)
            if settle_s:
                time.sleep(settle_s)
        self.terminate(handle)

    def terminate(self, handle: ProcessHandle) -> None:
        if handle.state == ProcState.killed:
            return

        if handle.poll() is None:
            children = safe(
                lambda: psutil.Process(handle.pid).children(recursive=True), []
            )
            for child in children:
                try:
                    child.kill()
                except psutil.Error as e:
                    print(f"Error killing child {child.pid} of {handle.name}", e)
            try:
                handle.proc.kill()
            except OSError as e:
                print(f"Error killing {handle.name}", e)
            killed = True
        else:
            killed = False

        try:
            handle.returncode = handle.proc.wait(timeout=10)
        except (subprocess.TimeoutExpired, ChildProcessError) as e:
            print(f"Error reaping {handle.name}", e)
            # not reaped: state stays as poll() reports it
            return
        if killed:
            handle.state = ProcState.killed
        print(f"Terminated {handle.name} (pid {handle.pid}) rc={handle.returncode}")

    def terminate_all(self) -> None:
        # Reverse launch order: the hypervisor goes before its side-car.
        for handle in reversed(self.handles):
            self.terminate(handle)
