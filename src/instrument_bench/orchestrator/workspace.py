"""
Scoped artifact directory.

    with ArtifactWorkspace(keep=config.keep_artifacts) as workspace:
        run = run_tool(invocation, config, workspace)
        ...
    # directory is gone here, whatever happened inside the block
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class ArtifactWorkspace:
    """A temporary directory removed on every exit path unless `keep` is set."""

    def __init__(
        self,
        keep: bool = False,
        parent: Path | str | None = None,
        prefix: str = "instrument-bench-",
    ):
        self.keep = keep
        self._parent = Path(parent) if parent is not None else None
        self._prefix = prefix
        self._path: Path | None = None

    @property
    def path(self) -> Path:
        if self._path is None:
            raise RuntimeError("ArtifactWorkspace used outside of its 'with' block")
        return self._path

    def __enter__(self) -> ArtifactWorkspace:
        if self._parent is not None:
            self._parent.mkdir(parents=True, exist_ok=True)
        self._path = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._parent))
        logger.debug(f"Created artifact workspace {self._path}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._path is None:
            return
        if self.keep:
            logger.info(f"Keeping artifacts in {self._path}")
        else:
            shutil.rmtree(self._path, ignore_errors=True)
            logger.debug(f"Removed artifact workspace {self._path}")
        self._path = None
