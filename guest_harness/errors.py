from enum import Enum


class HarnessError(Exception):
    """Base class for every fatal scenario error."""

    kind = "harness"


class ConfigurationError(HarnessError):
    """Invalid or missing parameters for the hypervisor under test."""

    kind = "configuration"


class BootError(HarnessError):
    """The hypervisor under test failed to start or died during boot."""

    kind = "boot"


class ResourceError(HarnessError):
    """An image could not be composed or a process could not be spawned."""

    kind = "resource"


class ProbeErrorKind(str, Enum):
    connection = "connection"
    authentication = "authentication"
    command = "command"


class ProbeError(HarnessError):
    """Raised once the probe retry budget is exhausted."""

    def __init__(
        self,
        kind: ProbeErrorKind,
        attempts: int,
        address: str = "",
        command: str = "",
    ):
        self.probe_kind = kind
        self.attempts = attempts
        self.address = address
        self.command = command
        super().__init__(
            f"Took too many attempts ({attempts}) to run {command!r} on "
            f"{address}. Last error: {kind.value}"
        )

    @property
    def kind(self) -> str:  # type: ignore[override]
        return f"probe:{self.probe_kind.value}"
