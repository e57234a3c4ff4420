import socket
import time
from enum import Enum
from typing import Callable, Optional

import paramiko

import settings

from .errors import ProbeError, ProbeErrorKind


class ReadyState(str, Enum):
    ready = "ready"
    timeout = "timeout"
    process_exited = "process_exited"


class _AttemptFailed(Exception):
    def __init__(self, kind: ProbeErrorKind, cause: BaseException):
        super().__init__(f"{kind.value}: {cause}")
        self.kind = kind
        self.cause = cause


class GuestProbe:
    """
    Runs commands inside a booted guest over SSH with password auth.

    Each attempt walks connect -> authenticate -> execute. Any classified
    failure restarts from connect after `backoff_step_s * attempt` seconds,
    until `max_attempts` failures have been seen; the last failure is then
    raised as a ProbeError. Output is captured best-effort: read or close
    errors after the command started do not trigger a retry.
    """

    def __init__(
        self,
        user: Optional[str] = None,
        password: Optional[str] = None,
        port: Optional[int] = None,
        max_attempts: Optional[int] = None,
        backoff_step_s: Optional[float] = None,
        connect_timeout: Optional[float] = None,
    ):
        self.user = user or settings.GUEST_SSH_USER
        self.password = password if password is not None else settings.GUEST_SSH_PASSWORD
        self.port = port or settings.GUEST_SSH_PORT
        self.max_attempts = max_attempts or settings.PROBE_MAX_ATTEMPTS
        self.backoff_step_s = (
            backoff_step_s if backoff_step_s is not None else settings.PROBE_BACKOFF_STEP_S
        )
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.PROBE_CONNECT_TIMEOUT_S
        )

    def _connect(self, address: str) -> paramiko.SSHClient:
        cli = paramiko.SSHClient()
        cli.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            cli.connect(
                address,
                port=self.port,
                username=self.user,
                password=self.password,
                timeout=self.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as e:
            cli.close()
            raise _AttemptFailed(ProbeErrorKind.authentication, e) from e
        except (paramiko.SSHException, OSError) as e:
            cli.close()
            raise _AttemptFailed(ProbeErrorKind.connection, e) from e

        transport = cli.get_transport()
        if transport is None or not transport.is_authenticated():
            cli.close()
            raise RuntimeError(
                f"SSH session to {address} is not authenticated after auth succeeded"
            )
        return cli

    def _attempt(self, address: str, command: str) -> str:
        cli = self._connect(address)
        try:
            try:
                _, stdout, _ = cli.exec_command(command)
            except (paramiko.SSHException, OSError) as e:
                raise _AttemptFailed(ProbeErrorKind.command, e) from e

            output = ""
            try:
                output = stdout.read().decode(errors="ignore")
                stdout.channel.close()
            except (paramiko.SSHException, OSError, EOFError) as e:
                print(f"Partial output for {command!r} on {address}", e)
            return output
        finally:
            cli.close()

    def run(self, address: str, command: str) -> str:
        attempts = 0
        while True:
            try:
                return self._attempt(address, command)
            except _AttemptFailed as e:
                attempts += 1
                print(f"Probe attempt {attempts} on {address} failed", e)
                if attempts >= self.max_attempts:
                    raise ProbeError(e.kind, attempts, address, command) from e.cause
            time.sleep(self.backoff_step_s * attempts)

    def wait_ready(
        self,
        address: str,
        timeout: float,
        is_alive: Optional[Callable[[], bool]] = None,
    ) -> ReadyState:
        """
        Poll until an authenticated session to `address` can run a no-op,
        the deadline passes, or the process behind the guest dies.
        """
        print("Start waiting for the guest to accept SSH...")
        start = time.time()

        while time.time() - start < timeout:
            try:
                with socket.create_connection((address, self.port), timeout=1.0):
                    pass
                self._attempt(address, "true")
                print(f"Guest READY! TIME TAKEN: {time.time() - start}")
                return ReadyState.ready
            except (_AttemptFailed, OSError) as e:
                waited = time.time() - start
                if str(e).strip() != "":
                    print("Guest not ready yet", e)
                if is_alive is not None and not is_alive():
                    print("Hypervisor process died while waiting for SSH")
                    return ReadyState.process_exited
                time.sleep(0.15 if waited < 5 else 0.5)

        return ReadyState.timeout
