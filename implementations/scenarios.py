"""
Scenario catalog.

A Scenario is a validated ScenarioSpec (how to launch the hypervisor)
plus checks run against the booted guest and post-shutdown checks run
on the host side once the guest has been asked to stop.
"""
from __future__ import annotations

import dataclasses as dc
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from guest_harness.errors import ConfigurationError
from guest_harness.guest import Guest
from guest_harness.models import ArtifactRole, GuestDescriptor, PmemSpec, ScenarioSpec
from guest_harness.scope import ResourceScope


@dc.dataclass
class ScenarioContext:
    scope: ResourceScope
    descriptor: GuestDescriptor
    pmem_path: Optional[str] = None
    serial_path: Optional[str] = None


Check = Callable[[Guest, ScenarioContext], None]


@dc.dataclass
class Scenario:
    name: str
    spec: ScenarioSpec
    checks: List[Check] = dc.field(default_factory=list)
    post_checks: List[Check] = dc.field(default_factory=list)
    title: str = ""


def make_spec(**params: Any) -> ScenarioSpec:
    try:
        return ScenarioSpec(**params)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid scenario parameters: {e}") from e


# ===== Check helpers =====
def expect_eq(getter: Callable[[Guest], Any], expected: Any, label: str) -> Check:
    def _check(guest: Guest, ctx: ScenarioContext) -> None:
        got = getter(guest)
        if got != expected:
            raise AssertionError(f"{label}: expected {expected!r}, got {got!r}")

    _check.__name__ = f"expect_eq[{label}]"
    return _check


def expect_ne(getter: Callable[[Guest], Any], unexpected: Any, label: str) -> Check:
    def _check(guest: Guest, ctx: ScenarioContext) -> None:
        got = getter(guest)
        if got == unexpected:
            raise AssertionError(f"{label}: did not expect {unexpected!r}")

    _check.__name__ = f"expect_ne[{label}]"
    return _check


def expect_gt(getter: Callable[[Guest], Any], bound: Any, label: str) -> Check:
    def _check(guest: Guest, ctx: ScenarioContext) -> None:
        got = getter(guest)
        if not got > bound:
            raise AssertionError(f"{label}: expected > {bound!r}, got {got!r}")

    _check.__name__ = f"expect_gt[{label}]"
    return _check


def expect_ge(getter: Callable[[Guest], Any], bound: Any, label: str) -> Check:
    def _check(guest: Guest, ctx: ScenarioContext) -> None:
        got = getter(guest)
        if not got >= bound:
            raise AssertionError(f"{label}: expected >= {bound!r}, got {got!r}")

    _check.__name__ = f"expect_ge[{label}]"
    return _check


def output_of(command: str) -> Callable[[Guest], str]:
    return lambda guest: guest.ssh_command(command).strip()


def run_command(command: str) -> Check:
    def _check(guest: Guest, ctx: ScenarioContext) -> None:
        guest.ssh_command(command)

    _check.__name__ = f"run[{command}]"
    return _check


def cpu_count(guest: Guest) -> int:
    return guest.get_cpu_count()


def total_memory(guest: Guest) -> int:
    return guest.get_total_memory()


DIRECT_KERNEL_CMDLINE = (
    "root=PARTUUID=3cb0e0a5-925d-405e-bc55-edf0cec8f10a console=tty0 "
    "console=ttyS0,115200n8 console=hvc0 quiet "
    "init=/usr/lib/systemd/systemd-bootchart initcall_debug tsc=reliable "
    "no_timer_check noreplace-smp cryptomgr.notests rootfstype=ext4,btrfs,xfs "
    "kvm-intel.nested=1 rw"
)

BASIC_BOOT_CHECKS: List[Check] = [
    expect_eq(cpu_count, 1, "cpu count"),
    expect_gt(total_memory, 496_000, "total memory KiB"),
    expect_ge(lambda g: g.get_entropy(), 1000, "entropy"),
    expect_eq(lambda g: g.count_pci_msi(), 8, "PCI-MSI interrupts"),
]


# ===== Host-side checks =====
def pmem_host_content_is(expected: str) -> Check:
    def _check(guest: Guest, ctx: ScenarioContext) -> None:
        if ctx.pmem_path is None:
            raise AssertionError("scenario has no pmem backing file")
        with open(ctx.pmem_path, "rb") as fh:
            got = fh.read(len(expected)).decode(errors="ignore")
        if got != expected:
            raise AssertionError(f"pmem backing file: expected {expected!r}, got {got!r}")

    return _check


def serial_log_contains(needle: str) -> Check:
    def _check(guest: Guest, ctx: ScenarioContext) -> None:
        if ctx.serial_path is None:
            raise AssertionError("scenario does not capture serial output to a file")
        try:
            with open(ctx.serial_path, encoding="utf-8", errors="ignore") as fh:
                buf = fh.read()
        except FileNotFoundError:
            raise AssertionError(f"serial output {ctx.serial_path} was never written")
        if needle not in buf:
            raise AssertionError(f"serial output does not contain {needle!r}")

    return _check


def default_scenarios() -> List[Scenario]:
    direct = dict(kernel="vmlinux-custom", cmdline=DIRECT_KERNEL_CMDLINE)
    scs: List[Scenario] = [
        Scenario(
            name="simple_launch",
            title="Firmware boot with one vCPU and 512M",
            spec=make_spec(cpus=1, memory_size="512M"),
            checks=[
                expect_eq(cpu_count, 1, "cpu count"),
                expect_eq(lambda g: g.get_initial_apicid(), 0, "initial apicid"),
                expect_gt(total_memory, 496_000, "total memory KiB"),
                expect_ge(lambda g: g.get_entropy(), 1000, "entropy"),
                expect_eq(lambda g: g.get_pci_bridge_class(), "0x060000", "PCI bridge class"),
            ],
        ),
        Scenario(
            name="multi_cpu",
            title="Two vCPUs are visible to the guest",
            spec=make_spec(cpus=2),
            checks=[expect_eq(cpu_count, 2, "cpu count")],
        ),
        Scenario(
            name="large_memory",
            title="5120M of guest memory",
            spec=make_spec(memory_size="5120M"),
            checks=[expect_gt(total_memory, 5_063_000, "total memory KiB")],
        ),
        Scenario(
            name="pci_msi",
            title="Devices use PCI MSI",
            spec=make_spec(),
            checks=[expect_eq(lambda g: g.count_pci_msi(), 8, "PCI-MSI interrupts")],
        ),
        Scenario(
            name="vmlinux_boot",
            title="Direct boot of an ELF vmlinux",
            spec=make_spec(kernel="vmlinux", cmdline=DIRECT_KERNEL_CMDLINE),
            checks=list(BASIC_BOOT_CHECKS),
        ),
        Scenario(
            name="bzimage_boot",
            title="Direct boot of a bzImage",
            spec=make_spec(kernel="bzImage", cmdline=DIRECT_KERNEL_CMDLINE),
            checks=list(BASIC_BOOT_CHECKS),
        ),
        Scenario(
            name="split_irqchip",
            title="Timer and cascade are not routed through the IO-APIC",
            spec=make_spec(),
            checks=[
                expect_eq(lambda g: g.count_ioapic("timer"), 0, "IO-APIC timer"),
                expect_eq(lambda g: g.count_ioapic("cascade"), 0, "IO-APIC cascade"),
            ],
        ),
        Scenario(
            name="virtio_fs",
            title="Shared directory mounted through virtio-fs",
            spec=make_spec(memory_file="/dev/shm", fs=True, **direct),
            checks=[
                expect_eq(
                    output_of(
                        "mkdir -p mount_dir && sudo mount -t virtio_fs /dev/null mount_dir/ "
                        "-o tag=virtiofs,rootmode=040000,user_id=1001,group_id=1001 "
                        "&& echo ok"
                    ),
                    "ok",
                    "virtio-fs mount",
                ),
                expect_eq(output_of("cat mount_dir/file1"), "foo", "mount_dir/file1"),
                expect_ne(output_of("ls mount_dir/file2"), "mount_dir/file2", "mount_dir/file2"),
                expect_eq(output_of("cat mount_dir/file3"), "bar", "mount_dir/file3"),
            ],
        ),
        Scenario(
            name="virtio_pmem",
            title="Guest reads and writes a pmem device backed by a host file",
            spec=make_spec(pmem=PmemSpec(source="scratch", size=0x1000, content="foo"), **direct),
            checks=[
                expect_eq(output_of("ls /dev/pmem0"), "/dev/pmem0", "/dev/pmem0"),
                expect_eq(
                    lambda g: output_of("sudo cat /dev/pmem0")(g)[:3], "foo", "pmem content"
                ),
                run_command("sudo bash -c 'echo bar > /dev/pmem0' && sudo sync /dev/pmem0"),
                pmem_host_content_is("bar"),
            ],
        ),
        Scenario(
            name="boot_from_virtio_pmem",
            title="Root filesystem on a pmem device",
            spec=make_spec(
                disks=[ArtifactRole.cloudinit],
                pmem=PmemSpec(source="os_disk_raw"),
                **direct,
            ),
            checks=[
                expect_eq(cpu_count, 1, "cpu count"),
                expect_gt(total_memory, 496_000, "total memory KiB"),
            ],
        ),
        Scenario(
            name="multiple_network_interfaces",
            title="Three NICs plus loopback",
            spec=make_spec(
                extra_nets=[
                    "tap=,mac=8a:6b:6f:5a:de:ac,ip=192.168.3.1,mask=255.255.255.0",
                    "tap=,mac=fe:1f:9e:e1:60:f2,ip=192.168.4.1,mask=255.255.255.0",
                ]
            ),
            checks=[expect_eq(lambda g: g.count_links(), 4, "network links")],
        ),
        Scenario(
            name="serial_disable",
            title="No legacy serial port when serial is off",
            spec=make_spec(serial="off"),
            checks=[
                expect_eq(lambda g: g.count_ioapic("ttyS0"), 0, "IO-APIC ttyS0"),
                expect_eq(lambda g: g.count_ioapic(), 0, "IO-APIC interrupts"),
            ],
        ),
        Scenario(
            name="serial_file",
            title="Serial console captured to a host file",
            spec=make_spec(serial="file"),
            checks=[expect_eq(lambda g: g.count_ioapic("ttyS0"), 1, "IO-APIC ttyS0")],
            post_checks=[serial_log_contains("cloud login:")],
        ),
    ]
    return scs


def apply_overrides(scenarios: List[Scenario], overrides: Optional[List[str]] = None) -> None:
    """Apply 'key=value' ScenarioSpec overrides to every scenario, re-validating each."""
    parsed: Dict[str, str] = {}
    for item in overrides or []:
        if "=" not in item:
            raise ConfigurationError(f"Override without '=': {item}")
        k, v = item.split("=", 1)
        parsed[k.strip()] = v.strip()

    for k in parsed:
        if k not in ScenarioSpec.model_fields:
            raise ConfigurationError(f"Unknown scenario parameter: {k}")

    for sc in scenarios:
        data = sc.spec.model_dump()
        data.update(parsed)
        sc.spec = make_spec(**data)


def find_scenarios(scenarios: List[Scenario], names: Optional[List[str]]) -> List[Scenario]:
    if not names:
        return list(scenarios)
    known = {s.name: s for s in scenarios}
    missing = [n for n in names if n not in known]
    if missing:
        raise ConfigurationError(f"Unknown scenario(s): {', '.join(missing)}")
    return [known[n] for n in names]
