"""Run-scoped scratch directories for repository clones.

Every clone made while generating a changelog lives in its own temporary
directory. The workspace hands those directories out and removes all of
them when the run ends, whether it ends normally or with an exception.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)

TMP_PREFIX = "knife-changelog"


class ScratchWorkspace:
    """Tracks scratch directories and removes them on exit.

    Usage:
        with ScratchWorkspace() as workspace:
            clone_dir = workspace.acquire()
            ...
        # every acquired directory is gone here
    """

    def __init__(self, prefix: str = TMP_PREFIX) -> None:
        self.prefix = prefix
        self.dirs: list[Path] = []

    def acquire(self) -> Path:
        """Create a fresh temporary directory owned by this workspace."""
        path = Path(tempfile.mkdtemp(prefix=self.prefix))
        self.dirs.append(path)
        return path

    def cleanup(self) -> None:
        """Remove every directory acquired so far."""
        while self.dirs:
            path = self.dirs.pop()
            logger.debug("Removing %s", path)
            shutil.rmtree(path, ignore_errors=True)

    def __enter__(self) -> ScratchWorkspace:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()
