from __future__ import annotations

import os
import time
from typing import Optional

import settings

from guest_harness.errors import BootError, ConfigurationError, HarnessError, ResourceError
from guest_harness.guest import Guest
from guest_harness.hv_args import (
    build_hv_args,
    fs_spec,
    memory_spec,
    pmem_spec,
    serial_spec,
)
from guest_harness.models import (
    ArtifactRole,
    GuestDescriptor,
    PmemSpec,
    ProcessHandle,
    ScenarioResult,
    ScenarioSpec,
)
from guest_harness.scope import ResourceScope
from guest_harness.seed import compose
from guest_harness.sidecar import launch_virtiofsd
from guest_harness.ssh_probe import GuestProbe, ReadyState

from .scenarios import Scenario, ScenarioContext

PARSE_FAILURE_MARKER = "Failed parsing parameters"


class ScenarioRunner:
    """
    Runs one scenario end to end:
    scope -> images -> [side-car] -> hypervisor -> settle -> checks ->
    graceful stop -> terminate -> teardown.

    Teardown always runs; any failure is reported in the ScenarioResult
    rather than raised, so one broken scenario does not stop the others.
    """

    def __init__(
        self,
        hv_bin: Optional[str] = None,
        template_dir: Optional[str] = None,
        probe: Optional[GuestProbe] = None,
        boot_settle_s: Optional[float] = None,
        shutdown_settle_s: Optional[float] = None,
        wait_for_ready: Optional[bool] = None,
        ready_timeout_s: Optional[float] = None,
    ):
        self.hv_bin = hv_bin or settings.HV_BIN
        self.template_dir = template_dir or settings.CLOUDINIT_TEMPLATE_DIR
        self.probe = probe or GuestProbe()
        self.boot_settle_s = (
            boot_settle_s if boot_settle_s is not None else settings.BOOT_SETTLE_S
        )
        self.shutdown_settle_s = (
            shutdown_settle_s
            if shutdown_settle_s is not None
            else settings.SHUTDOWN_SETTLE_S
        )
        self.wait_for_ready = (
            wait_for_ready if wait_for_ready is not None else settings.WAIT_FOR_READY
        )
        self.ready_timeout_s = (
            ready_timeout_s if ready_timeout_s is not None else settings.READY_TIMEOUT_S
        )

    def run(self, scenario: Scenario) -> ScenarioResult:
        print(f"=== Scenario {scenario.name} ===")
        start = time.time()
        try:
            with ResourceScope.acquire() as scope:
                self._run_in_scope(scenario, scope)
        except HarnessError as e:
            print(f"Scenario {scenario.name} failed [{e.kind}]", e)
            return ScenarioResult(
                scenario.name, False, e.kind, str(e), time.time() - start
            )
        except AssertionError as e:
            print(f"Scenario {scenario.name} failed [assertion]", e)
            return ScenarioResult(
                scenario.name, False, "assertion", str(e), time.time() - start
            )
        except Exception as e:
            kind = type(e).__name__
            print(f"Scenario {scenario.name} failed [{kind}]", e)
            return ScenarioResult(scenario.name, False, kind, str(e), time.time() - start)
        return ScenarioResult(scenario.name, True, duration_s=time.time() - start)

    def _run_in_scope(self, scenario: Scenario, scope: ResourceScope) -> None:
        spec = scenario.spec
        descriptor = compose(scope, self.template_dir, with_raw=_needs_raw_disk(spec))
        ctx = ScenarioContext(scope=scope, descriptor=descriptor)

        fs_sock = None
        if spec.fs:
            _, fs_sock = launch_virtiofsd(scope)

        argv = self.hypervisor_args(spec, ctx, fs_sock)
        handle = scope.supervisor.launch(
            argv, name="hypervisor", log_path=scope.path("hypervisor.log")
        )
        self._wait_for_boot(handle, descriptor)

        guest = Guest(descriptor, self.probe)
        for check in scenario.checks:
            check(guest, ctx)

        scope.supervisor.graceful_stop(
            handle,
            via=guest.ssh_command,
            command="sudo reboot",
            settle_s=self.shutdown_settle_s,
        )
        for check in scenario.post_checks:
            check(guest, ctx)

    def hypervisor_args(
        self, spec: ScenarioSpec, ctx: ScenarioContext, fs_sock: Optional[str] = None
    ) -> list[str]:
        descriptor = ctx.descriptor
        kernel = (
            os.path.join(settings.WORKLOADS_DIR, spec.kernel)
            if spec.kernel
            else descriptor.fw_path
        )
        try:
            disks = [descriptor.artifacts.path_for(role) for role in spec.disks]
        except KeyError as e:
            raise ConfigurationError(f"Scenario needs artifact {e} which was not composed")

        serial = None
        if spec.serial == "file":
            ctx.serial_path = ctx.scope.path("serial-output")
            serial = serial_spec("file", ctx.serial_path)
        elif spec.serial != "tty":
            serial = serial_spec(spec.serial)

        return build_hv_args(
            cpus=spec.cpus,
            memory=memory_spec(spec.memory_size, spec.memory_file),
            kernel=kernel,
            cmdline=spec.cmdline,
            disks=disks,
            nets=[descriptor.default_net_string(), *spec.extra_nets],
            fs=fs_spec(fs_sock) if fs_sock else None,
            rng=spec.rng,
            pmem=self._pmem(spec.pmem, ctx),
            serial=serial,
            hv_bin=self.hv_bin,
        )

    @staticmethod
    def _pmem(pmem: Optional[PmemSpec], ctx: ScenarioContext) -> Optional[str]:
        if pmem is None:
            return None
        if pmem.source == "os_disk_raw":
            path = ctx.descriptor.artifacts.path_for(ArtifactRole.os_disk_raw)
            size = pmem.size or os.path.getsize(path)
        else:
            path = ctx.scope.path("pmem-file")
            size = pmem.size or 0x1000
            try:
                with open(path, "wb") as fh:
                    fh.write(pmem.content.encode())
                    fh.truncate(size)
            except OSError as e:
                raise ResourceError(f"Could not create pmem backing file: {e}") from e
        ctx.pmem_path = path
        return pmem_spec(path, size)

    def _wait_for_boot(self, handle: ProcessHandle, descriptor: GuestDescriptor) -> None:
        if self.wait_for_ready:
            state = self.probe.wait_ready(
                descriptor.guest_ip,
                self.ready_timeout_s,
                is_alive=lambda: handle.poll() is None,
            )
            if state == ReadyState.timeout:
                raise BootError(
                    f"Guest {descriptor.guest_ip} not reachable after "
                    f"{self.ready_timeout_s}s"
                )
        else:
            time.sleep(self.boot_settle_s)

        if handle.poll() is not None:
            _raise_early_exit(handle)


def _needs_raw_disk(spec: ScenarioSpec) -> bool:
    if ArtifactRole.os_disk_raw in spec.disks:
        return True
    return spec.pmem is not None and spec.pmem.source == "os_disk_raw"


def _raise_early_exit(handle: ProcessHandle) -> None:
    tail = handle.read_log_tail()
    print(f"=== {handle.name} output (tail) ===\n", tail)
    msg = f"{handle.name} exited with {handle.returncode} during boot: {tail.strip()}"
    if PARSE_FAILURE_MARKER in tail:
        raise ConfigurationError(msg)
    raise BootError(msg)
