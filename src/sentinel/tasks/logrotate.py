"""Log file maintenance handler (``logrotate``).

Rotates every ``*.log`` file in the log directory that has grown past the
minimum size into numbered generations, and deletes ``backup_*.log``
files older than the backup threshold.

::

    sentinel.log  (> min size)
      ├── sentinel.log.2.gz  → sentinel.log.3.gz   (oldest beyond N dropped)
      ├── sentinel.log.1.gz  → sentinel.log.2.gz
      └── sentinel.log       → sentinel.log.1.gz   (original truncated)

Task params override the matching settings: ``log_dir``,
``log_rotate_files``, ``log_rotate_compress``, ``log_rotate_min_size``,
``log_backup_threshold``.
"""

from __future__ import annotations

import gzip
import shutil
import time
from pathlib import Path
from typing import Any

from sentinel.scheduling.callback import AbstractCallback, as_task
from sentinel.scheduling.models import Task
from sentinel.scheduling.status import Status

BACKUP_PREFIX = "backup_"
SECONDS_PER_DAY = 86400


def _generation(path: Path, number: int, compress: bool) -> Path:
    suffix = f".{number}.gz" if compress else f".{number}"
    return path.with_name(path.name + suffix)


def rotate_file(path: Path, generations: int, compress: bool = True) -> Path:
    """Rotate ``path`` into generation 1, shifting older generations up.

    The original file is truncated in place so writers holding it open
    keep working.  Returns the path of the new generation 1.
    """
    oldest = _generation(path, generations, compress)
    oldest.unlink(missing_ok=True)
    for number in range(generations - 1, 0, -1):
        source = _generation(path, number, compress)
        if source.exists():
            source.replace(_generation(path, number + 1, compress))

    target = _generation(path, 1, compress)
    if compress:
        with path.open("rb") as src, gzip.open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
    else:
        shutil.copyfile(path, target)
    with path.open("r+b") as fh:
        fh.truncate(0)
    return target


@as_task("logrotate", "Rotate log files and remove old backup logs")
class LogRotate(AbstractCallback):
    """Rotate oversized logs and prune old backup logs."""

    def _option(self, task: Task, name: str) -> Any:
        if name in task.params:
            return task.params[name]
        return getattr(self.context.settings, name)

    def invoke(self, task: Task, storage: dict[str, Any]) -> Status:
        log_dir = Path(self._option(task, "log_dir"))
        rotate_files = int(self._option(task, "log_rotate_files"))
        compress = bool(self._option(task, "log_rotate_compress"))
        min_size = int(self._option(task, "log_rotate_min_size"))
        backup_threshold = int(self._option(task, "log_backup_threshold"))

        if rotate_files <= 0 and backup_threshold <= 0:
            self.logger.info("logrotate.nothing_to_do")
            return Status.OK
        if not log_dir.is_dir():
            self.logger.warning("logrotate.missing_dir", log_dir=str(log_dir))
            return Status.OK

        self.logger.info("logrotate.scanning", log_dir=str(log_dir))
        now = time.time()

        for path in sorted(log_dir.iterdir()):
            if not path.is_file() or path.suffix != ".log":
                continue

            if path.name.startswith(BACKUP_PREFIX):
                if backup_threshold <= 0:
                    continue
                age_days = (now - path.stat().st_mtime) // SECONDS_PER_DAY
                if age_days > backup_threshold:
                    try:
                        path.unlink()
                    except OSError as e:
                        self.logger.warning("logrotate.delete_failed", file=str(path), error=str(e))
                    else:
                        self.logger.info("logrotate.backup_deleted", file=str(path))
                continue

            if rotate_files <= 0:
                continue
            if path.stat().st_size < min_size:
                self.logger.debug("logrotate.below_min_size", file=path.name)
                continue
            try:
                target = rotate_file(path, rotate_files, compress)
            except OSError as e:
                self.logger.warning("logrotate.rotate_failed", file=str(path), error=str(e))
            else:
                self.logger.info("logrotate.rotated", file=str(path), target=target.name)

        return Status.OK
