from __future__ import annotations

import os
import tempfile
from pathlib import Path
from types import TracebackType
from typing import List, Optional, Type

from tubely.core.errors import StagingError
from tubely.core.logging import get_logger


class StagingArea:
    """Request-scoped registry of transient files.

    Every file created through :meth:`create` or registered through
    :meth:`track` is removed when the context exits, whichever way it exits.
    """

    def __init__(self, root: Path, *, prefix: str = "tubely-upload-"):
        self.root = root
        self.prefix = prefix
        self._paths: List[Path] = []
        self.logger = get_logger(component="staging_area")

    def __enter__(self) -> "StagingArea":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.cleanup()

    @property
    def paths(self) -> tuple[Path, ...]:
        return tuple(self._paths)

    def create(self, suffix: str = "") -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix=self.prefix, suffix=suffix, dir=self.root)
        except OSError as exc:
            raise StagingError("Unable to create temp file") from exc
        os.close(fd)
        path = Path(name)
        self._paths.append(path)
        return path

    def track(self, path: Path) -> Path:
        self._paths.append(path)
        return path

    def cleanup(self) -> None:
        while self._paths:
            path = self._paths.pop()
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                self.logger.warning("staging_cleanup_failed", path=str(path), error=str(exc))
            else:
                self.logger.debug("staging_file_removed", path=str(path))


__all__ = ["StagingArea"]
