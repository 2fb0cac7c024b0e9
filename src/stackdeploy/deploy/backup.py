"""Pre-deployment backup and restore.

A backup is a timestamped directory under ``backup_root``
(``backups/20250114_031500/``) holding copies of the compose files and env
file in use, plus one ``<volume>.tar.gz`` per named data volume. The
archives are produced by a throwaway ``alpine`` container running ``tar``
(see :meth:`ComposeRuntime.archive_volume`).

Backup is best-effort: a file that cannot be copied or a volume that
cannot be archived is recorded in ``BackupReport.failed`` and the
deployment carries on. Volumes that do not exist yet (first deployment)
are recorded in ``skipped_volumes``.

Restore is the reverse and is not best-effort: services are stopped, every
archive found in the directory is extracted into its volume, and the stack
is started again. Any failure propagates.

Related Modules:
    - :mod:`stackdeploy.deploy.orchestrator` runs backup as a stage
    - :mod:`stackdeploy.cli.stack` exposes ``backup`` and ``restore``

Tags:
    backup, restore, volumes, tar, best-effort
"""

from __future__ import annotations

import shutil
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from stackdeploy.core.errors import RuntimeCommandError, StackDeployError
from stackdeploy.core.logging import get_logger
from stackdeploy.deploy.compose import ContainerRuntime
from stackdeploy.deploy.config import ComposeLayer, DeployConfig
from stackdeploy.deploy.results import BackupReport

logger = get_logger(__name__)

BACKUP_DIR_FORMAT = "%Y%m%d_%H%M%S"


def resolve_backup_root(config: DeployConfig) -> Path:
    root = config.backup_root
    return root if root.is_absolute() else config.project_dir / root


class BackupManager:
    """Creates and restores stack backups.

    Parameters
    ----------
    config
        Supplies ``backup_root``, project directory and volume names.
    runtime
        Archives and restores volumes.
    layers
        Compose files to copy alongside the volume archives.
    now
        Clock for the directory timestamp (injectable for tests).
    """

    def __init__(
        self,
        config: DeployConfig,
        runtime: ContainerRuntime,
        layers: list[ComposeLayer],
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.layers = layers
        self._now = now

    @property
    def root(self) -> Path:
        return resolve_backup_root(self.config)

    def _config_files(self) -> list[Path]:
        files = [layer.path for layer in self.layers]
        if self.config.env_file is not None:
            files.append(self.config.env_file)
        return files

    def backup(self) -> BackupReport:
        """Copy config files and archive existing volumes."""
        directory = self.root / self._now().strftime(BACKUP_DIR_FORMAT)
        report = BackupReport(directory=str(directory))
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("backup.directory_failed", directory=str(directory), error=str(exc))
            report.failed.append(str(directory))
            return report

        logger.info("backup.started", directory=str(directory))

        for path in self._config_files():
            if not path.is_file():
                continue
            try:
                shutil.copy2(path, directory / path.name)
            except OSError as exc:
                logger.warning("backup.file_failed", file=str(path), error=str(exc))
                report.failed.append(path.name)
            else:
                report.config_files.append(path.name)

        for short_name in self.config.volumes:
            volume = self.config.volume_name(short_name)
            try:
                if not self.runtime.volume_exists(volume):
                    logger.info("backup.volume_skipped", volume=volume)
                    report.skipped_volumes.append(volume)
                    continue
                self.runtime.archive_volume(volume, directory)
            except StackDeployError as exc:
                logger.warning("backup.volume_failed", volume=volume, error=str(exc))
                report.failed.append(volume)
            else:
                logger.info("backup.volume_archived", volume=volume)
                report.volumes.append(volume)

        logger.info(
            "backup.completed",
            directory=str(directory),
            files=len(report.config_files),
            volumes=len(report.volumes),
            failed=report.failed,
        )
        return report

    def restore(self, directory: Path) -> list[str]:
        """Stop the stack, restore every archived volume, start again.

        Returns the names of the restored volumes.
        """
        if not directory.is_dir():
            raise StackDeployError(f"Backup directory not found: {directory}")

        archives = {
            self.config.volume_name(v): directory / f"{self.config.volume_name(v)}.tar.gz"
            for v in self.config.volumes
        }
        present = {volume: path for volume, path in archives.items() if path.is_file()}
        if not present:
            raise StackDeployError(f"No volume archives found in {directory}")

        logger.info("restore.started", directory=str(directory), volumes=sorted(present))
        self.runtime.stop_all()
        restored: list[str] = []
        for volume, archive in present.items():
            try:
                self.runtime.restore_volume(volume, archive)
            except RuntimeCommandError:
                logger.error("restore.volume_failed", volume=volume, archive=str(archive))
                raise
            restored.append(volume)
            logger.info("restore.volume_restored", volume=volume)
        self.runtime.start([layer.path for layer in self.layers])
        logger.info("restore.completed", volumes=restored)
        return restored


def list_backups(config: DeployConfig) -> list[Path]:
    """Existing backup directories, newest first."""
    root = resolve_backup_root(config)
    if not root.is_dir():
        return []
    return sorted((p for p in root.iterdir() if p.is_dir()), reverse=True)


__all__ = ["BACKUP_DIR_FORMAT", "resolve_backup_root", "BackupManager", "list_backups"]
