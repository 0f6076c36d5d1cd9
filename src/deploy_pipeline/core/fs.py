import os
import tempfile
from pathlib import Path


def safe_unlink(path: os.PathLike[str] | str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError:
        return


def fsync_dir(parent: Path) -> None:
    """
    Ensure directory entry durability after atomic rename.
    """
    fd: int | None = None
    try:
        fd = os.open(parent, os.O_RDONLY)
        os.fsync(fd)
    finally:
        if fd is not None:
            os.close(fd)


def atomic_write_text(
    path: Path,
    text: str,
    *,
    encoding: str = "utf-8",
    newline: str = "\n",
    mode: int = 0o644,
) -> None:
    """
    Atomically write text to `path`.

    Readers see either the previous report or the new one, never a truncated
    file. The temp file lives in the target directory so os.replace stays on
    one filesystem.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd: int | None = None
    tmp_path: Path | None = None

    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.",
            suffix=".tmp",
            dir=str(path.parent),
            text=True,
        )
        tmp_path = Path(tmp_name)

        with os.fdopen(fd, "w", encoding=encoding, newline=newline) as f:
            fd = None
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
        fsync_dir(path.parent)

    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None and tmp_path.exists():
            safe_unlink(tmp_path)
