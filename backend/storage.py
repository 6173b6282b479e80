"""
Byte storage for task file attachments.

Files live on the local filesystem under one root directory, grouped by task.
Only the database row knows a file's original name and owner; the stored name
is a random UUID so client-supplied names never reach the filesystem.
"""

import logging
import uuid
from pathlib import Path

from fastapi import UploadFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB chunks (max memory footprint per upload)


class FileTooLargeError(Exception):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        super().__init__(f"File too large. Maximum size: {max_size / (1024 * 1024):.0f}MB")


class LocalFileStorage:
    def __init__(self, root: Path, max_file_size: int):
        self.root = Path(root)
        self.max_file_size = max_file_size

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    async def save(self, task_id: int, file: UploadFile) -> tuple[str, str, int]:
        """
        Save an uploaded file using chunked streaming to prevent memory DoS.

        Reads the file in 1MB chunks, validating size incrementally, and aborts
        as soon as the limit is exceeded. The partial file is removed on any failure.

        Returns:
            tuple: (stored filename, storage path, size in bytes)

        Raises:
            FileTooLargeError: if the payload exceeds max_file_size
            OSError: if the bytes could not be written
        """
        task_dir = self.root / str(task_id)
        task_dir.mkdir(parents=True, exist_ok=True)

        file_ext = Path(file.filename or "").suffix.lower()
        unique_filename = f"{uuid.uuid4()}{file_ext}"
        filepath = task_dir / unique_filename

        total_size = 0
        try:
            with open(filepath, "wb") as f:
                while True:
                    chunk = await file.read(CHUNK_SIZE)
                    if not chunk:
                        break

                    total_size += len(chunk)
                    if total_size > self.max_file_size:
                        raise FileTooLargeError(self.max_file_size)

                    f.write(chunk)
        except BaseException:
            filepath.unlink(missing_ok=True)
            raise

        logger.debug(f"Stored {total_size} bytes at {filepath}")
        return unique_filename, str(filepath), total_size

    def resolve(self, path: str) -> Path:
        return Path(path)

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def delete(self, path: str) -> bool:
        """
        Best-effort removal of a stored payload.

        Returns:
            True if the file was removed, False if it was already gone or could
            not be removed (the failure is logged, never raised)
        """
        file_path = self.resolve(path)
        try:
            file_path.unlink()
        except FileNotFoundError:
            logger.info(f"Stored file already missing: {file_path}")
            return False
        except OSError as e:
            logger.error(f"Failed to delete file from disk: {file_path}: {e}")
            return False

        logger.debug(f"Deleted file from disk: {file_path}")
        return True
