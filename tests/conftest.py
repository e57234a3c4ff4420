# conftest.py
import socket
import sys
import pathlib
import types

import paramiko
import pytest

# ----------------------
# Path setup: ensure the repo root is importable as top-level
# so imports like `import settings` resolve to ./settings.py
# ----------------------
_THIS_DIR = pathlib.Path(__file__).resolve().parent
_PKG_ROOT = _THIS_DIR.parent
if str(_PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(_PKG_ROOT))

import settings  # noqa: E402
import guest_harness.ssh_probe as ssh_probe  # noqa: E402


# ----------------------
# Test Utilities / Fakes
# ----------------------
class FakeChannel:
    def __init__(self, raise_on_close: bool = False):
        self.closed = False
        self._raise_on_close = raise_on_close

    def close(self):
        if self._raise_on_close:
            raise EOFError("channel already gone")
        self.closed = True


class FakeFile:
    def __init__(self, data: bytes, raise_on_read: bool = False):
        self._data = data
        self._raise_on_read = raise_on_read
        self.channel = FakeChannel()

    def read(self) -> bytes:
        if self._raise_on_read:
            raise paramiko.SSHException("connection reset while reading")
        return self._data


class FakeTransport:
    def __init__(self, authenticated: bool = True):
        self._authenticated = authenticated

    def is_authenticated(self) -> bool:
        return self._authenticated


class FakeSSHClient:
    """
    Scripted SSHClient. Each instance consumes the next outcome from the
    shared `script` list:
      "refused" | "handshake" | "auth" | "exec" | "read" | "unauthenticated"
    or any other string, returned as the command output.
    """

    script: list[str] = []
    instances: list["FakeSSHClient"] = []

    def __init__(self):
        self.outcome = self.script.pop(0) if self.script else ""
        self.connect_args = {}
        self.exec_calls = []
        self.closed = False
        self._policy = None
        FakeSSHClient.instances.append(self)

    def set_missing_host_key_policy(self, policy):
        self._policy = policy

    def connect(self, hostname, **kwargs):
        self.connect_args = dict(hostname=hostname, **kwargs)
        if self.outcome == "refused":
            raise ConnectionRefusedError(111, "Connection refused")
        if self.outcome == "handshake":
            raise paramiko.SSHException("Error reading SSH protocol banner")
        if self.outcome == "auth":
            raise paramiko.AuthenticationException("Authentication failed.")

    def get_transport(self):
        return FakeTransport(authenticated=self.outcome != "unauthenticated")

    def exec_command(self, command: str):
        self.exec_calls.append(command)
        if self.outcome == "exec":
            raise paramiko.SSHException("Unable to open channel")
        if self.outcome == "read":
            return None, FakeFile(b"", raise_on_read=True), FakeFile(b"")
        return None, FakeFile(self.outcome.encode()), FakeFile(b"")

    def close(self):
        self.closed = True


# ----------------------
# Shared Fixtures
# ----------------------
@pytest.fixture
def sleeps(monkeypatch):
    """Record time.sleep calls instead of sleeping."""
    calls: list[float] = []
    monkeypatch.setattr(ssh_probe.time, "sleep", lambda s: calls.append(s))
    return calls


@pytest.fixture
def fake_ssh(monkeypatch):
    """
    Patch paramiko.SSHClient with a scripted fake; returns a function that
    sets the per-attempt script.
    """
    FakeSSHClient.script = []
    FakeSSHClient.instances = []
    monkeypatch.setattr(ssh_probe.paramiko, "SSHClient", FakeSSHClient)

    def _script(*outcomes: str):
        FakeSSHClient.script = list(outcomes)
        return FakeSSHClient

    return _script


@pytest.fixture
def free_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


@pytest.fixture
def workloads(tmp_path, monkeypatch):
    """A fake workloads directory with tiny OS images and firmware."""
    wl = tmp_path / "workloads"
    wl.mkdir()
    (wl / "clear-29810-cloud.img").write_bytes(b"qcow-image")
    (wl / "clear-29810-cloud-raw.img").write_bytes(b"r" * 8192)
    (wl / "hypervisor-fw").write_bytes(b"fw")
    monkeypatch.setattr(settings, "WORKLOADS_DIR", str(wl), raising=False)
    return wl


@pytest.fixture
def fake_tools(monkeypatch):
    """
    Replace subprocess.run for the external image tools: mkdosfs creates the
    image file, mcopy is recorded.
    """
    import guest_harness.proc as proc_mod

    calls: list[list[str]] = []

    def fake_run(args, check=False, capture_output=False, text=False):
        calls.append(list(args))
        if args[0] == "mkdosfs":
            pathlib.Path(args[args.index("-C") + 1]).write_bytes(b"\0" * 16)
        return types.SimpleNamespace(returncode=0, stdout="", stderr="")

    monkeypatch.setattr(proc_mod.subprocess, "run", fake_run)
    return calls
