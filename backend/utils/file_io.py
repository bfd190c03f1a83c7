"""
Atomic file writes.

Configuration files are replaced in one step: the new content goes to a
temporary file in the same directory, is fsynced, and is moved over the
target with os.replace. Readers see either the old file or the new one.
"""

import logging
import os
import tempfile

logger = logging.getLogger(__name__)


def atomic_write_text(path: str, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to path atomically.

    Raises:
        OSError: If the temporary file cannot be written or moved into place
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError as cleanup_error:
            logger.debug(f"Could not remove temp file {tmp_path}: {cleanup_error}")
        raise

    logger.debug(f"Wrote {len(content)} bytes to {path}")
