"""Atomic file writes for the snapshot store."""

import contextlib
import os
import secrets
from pathlib import Path
from typing import Generator


DEFAULT_FILE_PERMS = 0o644


class AtomicFileWriter:
    """Atomic file writer using temp file and rename.

    Ensures file is either completely written or not modified at all.
    """

    def __init__(
        self,
        target_path: Path,
        permissions: int = DEFAULT_FILE_PERMS,
    ) -> None:
        """Initialize atomic writer.

        Args:
            target_path: Final destination path
            permissions: File permissions to set (applied regardless of umask)
        """
        self.target_path = Path(target_path)
        self.permissions = permissions

    @contextlib.contextmanager
    def open(self, mode: str = "w") -> Generator:
        """Open for atomic writing.

        Usage:
            with AtomicFileWriter(path).open() as f:
                f.write("content")
            # File is atomically replaced here
        """
        self.target_path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

        # Temp file in the same directory so the rename stays on one filesystem
        random_suffix = secrets.token_hex(8)
        tmp_path = self.target_path.with_name(f".{self.target_path.name}.tmp_{random_suffix}")

        success = False
        fd = None

        try:
            fd = os.open(
                tmp_path,
                os.O_WRONLY | os.O_CREAT | os.O_EXCL,
                self.permissions,
            )

            with os.fdopen(fd, mode) as f:
                fd = None  # fdopen takes ownership
                yield f
                f.flush()
                os.fsync(f.fileno())

            os.chmod(tmp_path, self.permissions)
            os.rename(tmp_path, self.target_path)
            success = True

        finally:
            if fd is not None:
                os.close(fd)
            if not success and tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass


def write_atomic(path: Path, content: str | bytes, permissions: int = DEFAULT_FILE_PERMS) -> None:
    """Write text or bytes to ``path`` atomically."""
    mode = "wb" if isinstance(content, bytes) else "w"
    with AtomicFileWriter(path, permissions=permissions).open(mode) as f:
        f.write(content)
