"""Per-run isolated working directories."""

from __future__ import annotations

import re
import shutil
from collections.abc import Callable
from pathlib import Path

from shipline.kernel.exceptions import ConfigurationError
from shipline.kernel.logging import get_logger
from shipline.kernel.orchestration.context import LOG_DIR

logger = get_logger(__name__)

_SAFE_RUN_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_IGNORED = (".git", ".shipline")


class WorkspaceManager:
    """Creates a clean workspace per run and reclaims it afterwards.

    Parameters
    ----------
    root : Path
        Directory holding one ``<run_id>`` subdirectory per run.
    source : Path | None
        Optional source tree copied into every new workspace (checkout
        analog). ``.git`` and ``.shipline`` directories are not copied.
    keep : bool
        Keep workspaces when :meth:`reclaim` is called.
    """

    def __init__(self, root: Path, source: Path | None = None, keep: bool = False) -> None:
        self.root = Path(root)
        self.source = Path(source) if source is not None else None
        self.keep = keep

    def path_for(self, run_id: str) -> Path:
        if not _SAFE_RUN_ID.match(run_id):
            raise ConfigurationError("workspace", f"unsafe run id {run_id!r}")
        return self.root / run_id

    def prepare(self, run_id: str) -> Path:
        """Create (or reset) the workspace for ``run_id``.

        Anything left over from a previous run with the same id is deleted
        first.
        """
        path = self.path_for(run_id)
        if path.exists():
            logger.warning("Resetting existing workspace {}", path)
            shutil.rmtree(path)

        if self.source is not None:
            if not self.source.is_dir():
                raise ConfigurationError("workspace", f"source tree {self.source} does not exist")
            root = self.root.resolve()
            shutil.copytree(self.source, path, ignore=self._ignore(root), symlinks=True)
        else:
            path.mkdir(parents=True)

        (path / LOG_DIR).mkdir(parents=True, exist_ok=True)
        logger.debug("Prepared workspace {}", path)
        return path

    def reclaim(self, path: Path) -> None:
        """Delete a run's workspace unless workspaces are kept."""
        if self.keep:
            logger.info("Keeping workspace {}", path)
            return
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning("Failed to reclaim workspace {}: {}", path, e)
            return
        logger.debug("Reclaimed workspace {}", path)

    @staticmethod
    def _ignore(workspace_root: Path) -> Callable[[str, list[str]], set[str]]:
        def ignore(directory: str, names: list[str]) -> set[str]:
            skipped = {name for name in names if name in _IGNORED}
            # never copy the workspace root into itself
            for name in names:
                if (Path(directory) / name).resolve() == workspace_root:
                    skipped.add(name)
            return skipped

        return ignore
