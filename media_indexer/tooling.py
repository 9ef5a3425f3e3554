"""
Startup probing for the external tools the pipeline shells out to.
"""
import logging
import subprocess
from typing import List


def is_exec_working(path: str, *args: str, timeout: float = 15.0) -> bool:
    """True if `path args...` runs and exits successfully."""
    cmd: List[str] = [path, *args]
    try:
        subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, timeout=timeout, check=True)
        return True
    except (OSError, subprocess.SubprocessError) as e:
        logging.debug(f"Probe of {' '.join(cmd)} failed: {e}")
        return False
