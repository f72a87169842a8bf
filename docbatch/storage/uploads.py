"""On-disk storage for uploaded batch files, one directory per task."""

import logging
import os
import re
import shutil
import time

logger = logging.getLogger(__name__)


class UploadStore:
    """Keeps each task's uploads under <base_dir>/<task_id>/ with TTL-based cleanup."""

    def __init__(self, base_dir: str, ttl_hours: int = 24):
        self._base_dir = base_dir
        os.makedirs(self._base_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    def get_task_dir(self, task_id: str) -> str:
        """Get or create directory for a task's uploaded files."""
        task_dir = os.path.join(self._base_dir, task_id)
        os.makedirs(task_dir, exist_ok=True)
        return task_dir

    def upload_path(self, task_id: str, index: int, filename: str) -> str:
        """Path for the index-th upload of a task, keeping the original extension."""
        base = os.path.basename(filename or "upload")
        stem, ext = os.path.splitext(base)
        stem = re.sub(r"[^A-Za-z0-9_-]+", "_", stem).strip("_") or "file"
        return os.path.join(self.get_task_dir(task_id), f"{index:03d}_{stem}{ext.lower()}")

    def remove_task(self, task_id: str) -> bool:
        task_dir = os.path.join(self._base_dir, task_id)
        if not os.path.isdir(task_dir):
            return False
        shutil.rmtree(task_dir, ignore_errors=True)
        return True

    def cleanup_expired(self) -> int:
        """Remove task directories older than TTL. Returns count of removed dirs."""
        now = time.time()
        removed = 0
        if not os.path.exists(self._base_dir):
            return 0
        for entry in os.listdir(self._base_dir):
            task_dir = os.path.join(self._base_dir, entry)
            if not os.path.isdir(task_dir):
                continue
            if now - os.path.getmtime(task_dir) > self._ttl_seconds:
                shutil.rmtree(task_dir, ignore_errors=True)
                removed += 1
        if removed:
            logger.info("Removed %d expired upload director%s", removed, "y" if removed == 1 else "ies")
        return removed
