"""Archival copy of the original file.

Started when a run begins and polled at pipeline checkpoints. The copy is
written to a ``.partial`` file and renamed when complete, so a half-written
archive is never mistaken for a finished one. A destination that already
exists with the same size counts as backed up. Failure is a warning, never
a run failure.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from encodegate.jobs.background import BackgroundTask, TaskState

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"
COPY_CHUNK_BYTES = 8 * 1024 * 1024


def archive_path_for(source: Path, archive_dir: Path) -> Path:
    return archive_dir / source.name


def is_already_archived(source: Path, destination: Path) -> bool:
    """True when ``destination`` exists with the same size as ``source``."""
    try:
        return destination.stat().st_size == source.stat().st_size
    except FileNotFoundError:
        return False


class ArchiveCopyTask(BackgroundTask):
    """Copy ``source`` into ``archive_dir`` on a background thread."""

    def __init__(self, source: Path, archive_dir: Path) -> None:
        super().__init__("archive")
        self.source = source
        self.destination = archive_path_for(source, archive_dir)

    def _run(self) -> None:
        source = self.source
        destination = self.destination

        if is_already_archived(source, destination):
            logger.info("Archive copy already present at %s", destination)
            self._set_status(TaskState.COMPLETED, "already backed up")
            return

        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
        total = source.stat().st_size
        copied = 0
        logger.info("Archiving %s to %s", source.name, destination.parent)
        try:
            with source.open("rb") as src, partial.open("wb") as dst:
                while True:
                    if self.stop_requested:
                        self._set_status(TaskState.STOPPED, "archive copy cancelled")
                        return
                    chunk = src.read(COPY_CHUNK_BYTES)
                    if not chunk:
                        break
                    dst.write(chunk)
                    copied += len(chunk)
                    self._set_status(
                        TaskState.RUNNING,
                        "copying",
                        bytes_copied=copied,
                        bytes_total=total,
                    )
            shutil.copystat(source, partial)
            partial.replace(destination)
        finally:
            if partial.exists():
                partial.unlink(missing_ok=True)

        if not is_already_archived(source, destination):
            raise OSError(f"archive size mismatch at {destination}")
        logger.info("Archive copy complete (%d bytes)", copied)
        self._set_status(TaskState.COMPLETED, "archived", bytes_copied=copied)
