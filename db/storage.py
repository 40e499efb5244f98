"""
Dataset storage collaborators: fetch a dataset to a local path, release it afterwards.
The core only needs fetch_to_local_path / release_local_path; remote backends subclass TempFileStorage.
"""
import errno
import logging
import os
import shutil
import tempfile
import time
import uuid
from typing import Optional

from dotenv import load_dotenv

from utils.errors import DataSourceUnreadable

load_dotenv()

CHART_TEMP_DIR = os.getenv("CHART_TEMP_DIR") or os.path.join(tempfile.gettempdir(), "chart-query")

# Cleanup tolerates a brief OS lock after the engine finishes reading
CLEANUP_ATTEMPTS = 3
CLEANUP_BACKOFF_SECONDS = 0.1

BUSY_ERRNOS = {errno.EBUSY, errno.EACCES, errno.EPERM, errno.ETXTBSY}

logger = logging.getLogger(__name__)


def cleanup_local_file(path: Optional[str], attempts: int = CLEANUP_ATTEMPTS,
                       backoff: float = CLEANUP_BACKOFF_SECONDS) -> bool:
    """
    Delete a temporary file. Retries transient busy/permission errors with increasing backoff.
    Returns True when the file is gone; never raises.
    """
    if not path:
        return True
    for attempt in range(1, attempts + 1):
        try:
            os.remove(path)
            logger.info("storage: removed temp file %s", path)
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            busy = isinstance(e, PermissionError) or e.errno in BUSY_ERRNOS
            if not busy or attempt == attempts:
                logger.warning("storage: failed to remove temp file %s after %d attempt(s): %s", path, attempt, e)
                return False
            time.sleep(backoff * attempt)
    return False


class LocalStorage:
    """Dataset locations are already local paths; nothing to fetch or release."""

    def fetch_to_local_path(self, identifier: str) -> str:
        if not identifier or not os.path.isfile(identifier):
            raise DataSourceUnreadable("The dataset file could not be found.", detail=f"missing local file: {identifier}")
        return identifier

    def release_local_path(self, local_path: str) -> None:
        return None


class TempFileStorage:
    """
    Copies (or, in subclasses, downloads) the dataset into a unique temp file.
    release_local_path removes it with busy-tolerant retries.
    """

    def __init__(self, temp_dir: str = CHART_TEMP_DIR):
        self.temp_dir = temp_dir

    def _temp_path(self, identifier: str) -> str:
        os.makedirs(self.temp_dir, exist_ok=True)
        name = os.path.basename(str(identifier).replace("\\", "/")) or "dataset"
        return os.path.join(self.temp_dir, f"{uuid.uuid4().hex}_{name}")

    def download(self, identifier: str, local_path: str) -> None:
        if not os.path.isfile(identifier):
            raise DataSourceUnreadable("The dataset file could not be found.", detail=f"missing source: {identifier}")
        shutil.copyfile(identifier, local_path)

    def fetch_to_local_path(self, identifier: str) -> str:
        local_path = self._temp_path(identifier)
        try:
            self.download(identifier, local_path)
        except DataSourceUnreadable:
            cleanup_local_file(local_path)
            raise
        except OSError as e:
            cleanup_local_file(local_path)
            raise DataSourceUnreadable(detail=f"fetch failed for {identifier}: {e}") from e
        logger.info("storage: fetched %s -> %s", identifier, local_path)
        return local_path

    def release_local_path(self, local_path: str) -> None:
        cleanup_local_file(local_path)
