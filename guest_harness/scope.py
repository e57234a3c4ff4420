import os
import shutil
import tempfile
from typing import Optional

import settings

from .errors import ResourceError
from .proc import ProcessSupervisor

_live_roots: set[str] = set()


class ResourceScope:
    """
    Ephemeral workspace for one scenario.

    Every file the scenario writes lives under `root`, and every process it
    launches goes through `supervisor`. `teardown` kills and reaps those
    processes first, then removes the directory. Use it as a context
    manager so teardown runs on every exit path.
    """

    def __init__(self, root: str):
        root = os.path.realpath(root)
        if root in _live_roots:
            raise ResourceError(f"Workspace already owned by a live scope: {root}")
        _live_roots.add(root)
        self.root = root
        self.supervisor = ProcessSupervisor()
        self.closed = False

    @classmethod
    def acquire(cls, prefix: Optional[str] = None) -> "ResourceScope":
        try:
            root = tempfile.mkdtemp(prefix=f"{prefix or settings.SCOPE_PREFIX}-")
        except OSError as e:
            raise ResourceError(f"Could not create workspace: {e}") from e
        print("Workspace created", root)
        return cls(root)

    def path(self, *parts: str) -> str:
        return os.path.join(self.root, *parts)

    def teardown(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.supervisor.terminate_all()
        finally:
            _live_roots.discard(self.root)
            try:
                shutil.rmtree(self.root)
                print("Workspace removed", self.root)
            except FileNotFoundError:
                pass
            except OSError as e:
                print("Error removing workspace", self.root, e)

    def __enter__(self) -> "ResourceScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()


def acquire(prefix: Optional[str] = None) -> ResourceScope:
    return ResourceScope.acquire(prefix)


def teardown(scope: ResourceScope) -> None:
    scope.teardown()
