"""
easyk8s/utils/ephemeral_file.py

Provides an async context manager yielding a throwaway file path inside a
private directory, preferably in `/dev/shm` so that secrets (SSH private keys,
raw kubeconfigs) never touch persistent disk. On hosts without `/dev/shm`
(macOS) the system temp directory is used instead.
"""

import os
import tempfile
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional


def _default_parent_dir() -> str:
    return "/dev/shm" if os.path.isdir("/dev/shm") else tempfile.gettempdir()


@asynccontextmanager
async def ephemeral_manager(
    file_name: str,
    *,
    prefix: str = "ephemeral-",
    parent_dir: Optional[str] = None,
) -> AsyncGenerator[str, None]:
    """
    Create a private ephemeral directory and yield the path of `file_name` in it.

    The file itself is not created; the caller writes it. Everything in the
    ephemeral directory is removed on exit, whether or not the body raised.

    Args:
        file_name: The ephemeral filename.
        prefix: Prefix for the ephemeral directory name.
        parent_dir: Where to place the ephemeral directory. Defaults to
            `/dev/shm` when present.

    Yields:
        str: Absolute path of the ephemeral file.
    """
    ephemeral_dir = tempfile.mkdtemp(
        dir=parent_dir or _default_parent_dir(), prefix=prefix
    )

    try:
        yield os.path.join(ephemeral_dir, file_name)
    finally:
        if os.path.isdir(ephemeral_dir):
            for item in os.listdir(ephemeral_dir):
                item_path = os.path.join(ephemeral_dir, item)
                if os.path.isfile(item_path) or os.path.islink(item_path):
                    os.remove(item_path)
            os.rmdir(ephemeral_dir)
