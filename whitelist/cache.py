from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class DocumentCache:
    """Local copy of the remote whitelist document with in-memory fallback.

    The file on disk survives restarts; the in-memory copy covers a cache
    directory that became unreadable after the last successful write.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._mem: Optional[bytes] = None

    def read(self) -> Optional[bytes]:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return self._mem
        except OSError as exc:
            logger.warning(
                "Failed to read cached whitelist",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return self._mem
        self._mem = data
        return data

    def write(self, data: Union[str, bytes]) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._mem = data
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=".whitelist-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Wrote cached whitelist", extra={"path": str(self.path), "size_bytes": len(data)})

    def exists(self) -> bool:
        return self.path.exists() or self._mem is not None

    def invalidate(self) -> None:
        self._mem = None
        self.path.unlink(missing_ok=True)
