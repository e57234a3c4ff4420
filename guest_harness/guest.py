from typing import Optional

from .models import GuestDescriptor
from .ssh_probe import GuestProbe


class Guest:
    """A booted guest: its descriptor plus the probe used to talk to it."""

    def __init__(self, descriptor: GuestDescriptor, probe: Optional[GuestProbe] = None):
        self.descriptor = descriptor
        self.probe = probe or GuestProbe()

    def ssh_command(self, command: str) -> str:
        return self.probe.run(self.descriptor.guest_ip, command)

    def _int(self, command: str) -> int:
        out = self.ssh_command(command).strip()
        try:
            return int(out)
        except ValueError:
            raise AssertionError(f"Expected an integer from {command!r}, got {out!r}")

    def get_cpu_count(self) -> int:
        return self._int("grep -c processor /proc/cpuinfo")

    def get_initial_apicid(self) -> int:
        return self._int('grep "initial apicid" /proc/cpuinfo | grep -o "[0-9]*"')

    def get_total_memory(self) -> int:
        """MemTotal in KiB."""
        return self._int('grep MemTotal /proc/meminfo | grep -o "[0-9]*"')

    def get_entropy(self) -> int:
        return self._int("cat /proc/sys/kernel/random/entropy_avail")

    def get_pci_bridge_class(self) -> str:
        return self.ssh_command("cat /sys/bus/pci/devices/0000:00:00.0/class").strip()

    def count_pci_msi(self) -> int:
        return self._int("grep -c PCI-MSI /proc/interrupts")

    def count_ioapic(self, pattern: str = "") -> int:
        if pattern:
            return self._int(
                f"cat /proc/interrupts | grep 'IO-APIC' | grep -c '{pattern}'"
            )
        return self._int("cat /proc/interrupts | grep -c 'IO-APIC'")

    def count_links(self) -> int:
        return self._int("ip -o link | wc -l")
