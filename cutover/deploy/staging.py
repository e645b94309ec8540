"""
Stage the built project into the running directory.

- running directory is removed and recreated
- large, read-only directories are linked with relative symlinks
- everything else is copied (rsync into existing dirs, batched copy otherwise)
- missing critical files only warn; the start phase decides
"""

import logging
import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from cutover.common.commands import CommandResult, run_command
from cutover.common.config import StagingSettings
from cutover.common.errors import CommandError, StagingError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

STREAM_CHUNK_BYTES = 1024 * 1024


def _reraise(error: OSError) -> None:
    # os.walk skips unreadable directories unless told otherwise
    raise error


@dataclass
class StageReport:
    symlinked: List[str] = field(default_factory=list)
    copied: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    missing_critical: List[str] = field(default_factory=list)


class Stager:
    def __init__(
        self,
        settings: Optional[StagingSettings] = None,
        runner: Callable[..., CommandResult] = run_command,
    ):
        self.settings = settings or StagingSettings()
        self._run = runner

    def symlink(self, src: PathLike, dest: PathLike) -> None:
        """Replace dest with a relative symlink to src."""
        src, dest = Path(src), Path(dest)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if dest.is_symlink() or dest.is_file():
                dest.unlink()
            elif dest.exists():
                shutil.rmtree(dest)
            relative = os.path.relpath(src.resolve(), dest.parent.resolve())
            os.symlink(relative, dest, target_is_directory=src.is_dir())
        except OSError as e:
            raise StagingError(f"symlink {dest} -> {src} failed: {e}") from e

    def copy_tree(self, src: PathLike, dest: PathLike) -> None:
        """Mirror a directory with rsync, falling back to `cp -R`."""
        src_arg = f"{Path(src)}/"
        dest_arg = f"{Path(dest)}/"
        timeout = self.settings.command_timeout_s
        try:
            self._run(["rsync", "-a", "--delete", src_arg, dest_arg], timeout_s=timeout)
            return
        except CommandError as rsync_error:
            logger.debug("rsync failed, trying cp: %s", rsync_error.message)
            try:
                self._run(["cp", "-R", f"{src_arg}.", dest_arg], timeout_s=timeout)
            except CommandError as cp_error:
                raise StagingError(
                    f"copy {src} failed: {rsync_error.message}; cp fallback failed: {cp_error.message}"
                ) from cp_error

    def copy_recursive(self, src: PathLike, dest: PathLike) -> int:
        """
        Copy a file or directory tree.

        Files in a directory are copied in batches of `copy_batch_size`;
        files above `stream_threshold_bytes` are streamed in chunks.

        Returns:
            Number of files copied
        """
        src, dest = Path(src), Path(dest)
        try:
            if not src.is_dir() or src.is_symlink():
                dest.parent.mkdir(parents=True, exist_ok=True)
                self._copy_file(src, dest)
                return 1

            count = 0
            batch_size = self.settings.copy_batch_size
            with ThreadPoolExecutor(max_workers=min(8, batch_size)) as pool:
                for root, dirs, files in os.walk(src, onerror=_reraise):
                    root_path = Path(root)
                    target_root = dest / root_path.relative_to(src)
                    target_root.mkdir(parents=True, exist_ok=True)

                    # os.walk does not descend into symlinked dirs; copy them as links
                    linked = [d for d in dirs if (root_path / d).is_symlink()]
                    dirs[:] = [d for d in dirs if d not in linked]
                    entries = sorted(files + linked)

                    for i in range(0, len(entries), batch_size):
                        batch = entries[i:i + batch_size]
                        # list() re-raises the first worker exception
                        list(pool.map(
                            lambda name: self._copy_file(root_path / name, target_root / name),
                            batch,
                        ))
                        count += len(batch)
            return count
        except OSError as e:
            raise StagingError(f"copy {src} -> {dest} failed: {e}") from e

    def _copy_file(self, src: Path, dest: Path) -> None:
        if src.is_symlink():
            if dest.is_symlink() or dest.exists():
                dest.unlink()
            os.symlink(os.readlink(src), dest)
            return
        if src.stat().st_size > self.settings.stream_threshold_bytes:
            with open(src, "rb") as fin, open(dest, "wb") as fout:
                shutil.copyfileobj(fin, fout, STREAM_CHUNK_BYTES)
            shutil.copystat(src, dest)
        else:
            shutil.copy2(src, dest)

    def stage(self, project_dir: PathLike, running_dir: PathLike) -> StageReport:
        """
        Recreate running_dir from project_dir.

        Raises:
            StagingError: unsafe target, or any filesystem / copy failure
        """
        project = Path(project_dir).resolve()
        running = Path(running_dir).resolve()
        if running == project or running in project.parents or project in running.parents:
            raise StagingError(f"running dir {running} overlaps project dir {project}")

        s = self.settings
        report = StageReport()

        logger.info("Recreating %s", running)
        try:
            if running.is_symlink() or running.is_file():
                running.unlink()
            elif running.exists():
                shutil.rmtree(running)
            running.mkdir(parents=True)
        except OSError as e:
            raise StagingError(f"cannot recreate {running}: {e}") from e

        for name in s.symlink_paths:
            src = project / name
            if not src.exists():
                logger.warning("Symlink source missing: %s", name)
                report.missing.append(name)
                continue
            self.symlink(src, running / name)
            report.symlinked.append(name)
            logger.info("Linked %s", name)

        for name in s.copy_paths:
            src = project / name
            dest = running / name
            if not src.exists():
                logger.warning("Copy source missing: %s", name)
                report.missing.append(name)
                continue
            if src.is_dir() and dest.exists():
                self.copy_tree(src, dest)
                logger.info("Synced %s", name)
            else:
                files = self.copy_recursive(src, dest)
                logger.info("Copied %s (%d file(s))", name, files)
            report.copied.append(name)

        for name in s.critical_files:
            if not (running / name).exists():
                logger.error("Critical file missing in running dir: %s", name)
                report.missing_critical.append(name)
        if report.missing_critical:
            logger.warning("Some critical files are missing; the running instance may fail to start")

        logger.info("Staging complete: %d linked, %d copied", len(report.symlinked), len(report.copied))
        return report
