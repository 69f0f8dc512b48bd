"""Disposable per-target working directories."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import sys
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

from pgxn_build.errors import SandboxCreationFailed

SANDBOX_PREFIX = "pgxn-build-"
WORKDIR_NAME = "src"

LOGGER = logging.getLogger(__name__)


def _make_writable_and_retry(func: Callable[[str], Any], path: str, _exc: object) -> None:
    """Retry a failed removal after clearing read-only bits."""
    parent = os.path.dirname(path)
    for candidate in (parent, path):
        try:
            mode = os.lstat(candidate).st_mode
        except OSError:
            continue
        if not stat.S_ISLNK(mode):
            os.chmod(candidate, mode | stat.S_IWUSR | stat.S_IRUSR | stat.S_IXUSR)
    func(path)


def _remove_tree(path: Path) -> None:
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_make_writable_and_retry)
    else:
        shutil.rmtree(path, onerror=_make_writable_and_retry)


@dataclass
class Sandbox:
    """An isolated copy of a source tree owned by one build attempt."""

    root: Path
    source: Path
    warnings: list[str] = field(default_factory=list)
    released: bool = False

    @property
    def path(self) -> Path:
        """Return the working directory holding the copied source tree."""
        return self.root / WORKDIR_NAME

    def resolve(self, offset: str | os.PathLike[str]) -> Path:
        """Resolve a working-directory offset, refusing paths outside the sandbox."""
        base = self.path.resolve()
        candidate = (base / offset).resolve()
        if candidate != base and base not in candidate.parents:
            raise ValueError(f"Working directory escapes sandbox: {offset}")
        return candidate

    def release(self) -> None:
        """Delete the sandbox directory; failures become warnings."""
        if self.released:
            return
        self.released = True
        if not self.root.exists():
            return
        try:
            _remove_tree(self.root)
        except OSError as exc:
            message = f"Failed to remove sandbox {self.root}: {exc}"
            LOGGER.warning(message)
            self.warnings.append(message)


def create_sandbox(source_path: Path, *, root: Path | None = None) -> Sandbox:
    """Create a sandbox holding a copy of ``source_path``."""
    source = Path(source_path)
    if not source.is_dir():
        raise SandboxCreationFailed(source, "source tree not found")
    try:
        if root is not None:
            root.mkdir(parents=True, exist_ok=True)
        sandbox_root = Path(tempfile.mkdtemp(prefix=SANDBOX_PREFIX, dir=root))
    except OSError as exc:
        raise SandboxCreationFailed(source, str(exc)) from exc

    sandbox = Sandbox(root=sandbox_root, source=source)
    try:
        shutil.copytree(source, sandbox.path, symlinks=True)
    except (OSError, shutil.Error) as exc:
        sandbox.release()
        reason = "; ".join([str(exc), *sandbox.warnings])
        raise SandboxCreationFailed(source, reason) from exc
    LOGGER.debug("Created sandbox %s from %s", sandbox.root, source)
    return sandbox


@contextmanager
def acquire(source_path: Path, *, root: Path | None = None) -> Iterator[Sandbox]:
    """Yield a fresh sandbox and remove it on every exit path."""
    sandbox = create_sandbox(source_path, root=root)
    try:
        yield sandbox
    finally:
        sandbox.release()
