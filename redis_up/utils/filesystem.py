"""Filesystem helpers for atomic writes and safe reads."""

import os
import tempfile
from pathlib import Path
from typing import Union
from ..core.errors import FilesystemError, PathError, AtomicWriteError
from ..core.log import get_logger

logger = get_logger(__name__)


def atomic_write(path: Path, data: Union[str, bytes], mode: str = "w") -> None:
    """Atomically write data to a file.

    Data goes to a temporary file in the same directory, is fsynced, and is
    then renamed over the target, so readers see either the old or the new
    content and never a partial write.
    """
    path = Path(path)
    is_binary = isinstance(data, bytes) or "b" in mode
    write_mode = mode if is_binary else mode.replace("b", "")
    tmp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode=write_mode,
            dir=path.parent,
            delete=False,
            prefix=f".{path.name}.tmp",
            encoding=None if is_binary else "utf-8",
        ) as tmp_file:
            tmp_path = Path(tmp_file.name)
            tmp_file.write(data)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        tmp_path.replace(path)
        logger.debug(
            "Atomically wrote %s %s to %s",
            len(data),
            "bytes" if is_binary else "chars",
            path,
        )
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass
        raise AtomicWriteError(
            f"Failed to atomically write to {path}: {e}", details={"path": str(path)}
        ) from e


def read_text(path: Path, encoding: str = "utf-8") -> str:
    """Read text file with proper error handling."""
    try:
        return Path(path).read_text(encoding=encoding)
    except FileNotFoundError as e:
        raise PathError(f"File not found: {path}", details={"path": str(path)}) from e
    except PermissionError as e:
        raise FilesystemError(
            f"Permission denied reading {path}", details={"path": str(path)}
        ) from e
    except UnicodeDecodeError as e:
        raise FilesystemError(
            f"Encoding error reading {path}: {e}", details={"path": str(path)}
        ) from e
    except OSError as e:
        raise FilesystemError(f"Error reading {path}: {e}", details={"path": str(path)}) from e


def ensure_dir(path: Path) -> Path:
    """Ensure directory exists and return it."""
    try:
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        return path
    except PermissionError as e:
        raise FilesystemError(f"Permission denied creating directory {path}") from e
    except OSError as e:
        raise FilesystemError(f"Error creating directory {path}: {e}") from e
