"""
Small helpers shared by the fixture modules and the tests.

Usage:
    from ltfixture.utils import wait_for, sha1_file

    assert wait_for(lambda: handle.status().is_seeding, timeout=5)
    assert sha1_file(downloaded) == sha1_file(original)
"""
import hashlib
import os
import time
from datetime import datetime

from .errors import FileTooLargeError


def time_now_string() -> str:
    """Wall clock with milliseconds, used to prefix every log line."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def load_file(path: str, limit: int = 8000000) -> bytes:
    """Read a whole file, refusing anything larger than `limit` bytes."""
    size = os.path.getsize(path)
    if size > limit:
        raise FileTooLargeError(f"{path} is {size} bytes (limit {limit})")
    with open(path, "rb") as f:
        return f.read()


# =============================================================================
# Wait Helpers
# =============================================================================

def wait_for(
    condition,
    timeout: float = 10.0,
    interval: float = 0.5,
    description: str = "condition"
) -> bool:
    """Wait for condition() to return truthy. Returns True if met, False if timeout."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            if condition():
                return True
        except Exception as e:
            print(f"  {description}: {e}")
        time.sleep(interval)
    print(f"  Timeout waiting for {description}")
    return False


# =============================================================================
# File Utilities
# =============================================================================

def sha1_file(path: str) -> str:
    """Calculate SHA1 hash of file."""
    h = hashlib.sha1()
    with open(path, 'rb') as f:
        while chunk := f.read(65536):
            h.update(chunk)
    return h.hexdigest()


def file_size(path: str) -> int:
    """Get file size, 0 if doesn't exist."""
    try:
        return os.path.getsize(path)
    except OSError:
        return 0
