"""
Backup/Restore Module

Timestamped copies of the gallery file, and merge or replace imports from
those copies back into the live gallery.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import GalleryFormatError
from .gallery import EmbeddingRecord, IdentityGallery, backup_path_for, read_document

logger = logging.getLogger(__name__)


class RestoreMode(Enum):
    MERGE = 'merge'
    REPLACE = 'replace'

    @classmethod
    def parse(cls, value: Union['RestoreMode', str]) -> 'RestoreMode':
        """Accept a RestoreMode, its value, or its initial ('m' / 'r')."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for mode in cls:
            if text in (mode.value, mode.value[0]):
                return mode
        raise ValueError(f"Unknown restore mode: {value!r}")


@dataclass(frozen=True)
class BackupInfo:
    path: Path
    modified: datetime
    size_bytes: int

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class RestoreResult:
    success: bool
    mode: RestoreMode
    source: Path
    before_count: int = 0
    after_count: int = 0
    imported: int = 0
    skipped_duplicates: List[str] = field(default_factory=list)
    skipped_invalid: List[str] = field(default_factory=list)
    saved: bool = False
    error: Optional[str] = None


class BackupManager:
    """Creates, lists and restores gallery backups."""

    def __init__(self, gallery: IdentityGallery, config: Optional[Dict[str, Any]] = None):
        """
        Initialize backup manager.

        Args:
            gallery: Gallery whose file is backed up and which receives restores
            config: Configuration dictionary with storage settings
        """
        config = config or {}
        storage_config = config.get('storage', {})
        self.gallery = gallery

        backup_dir = storage_config.get('backup_dir')
        self.backup_dir = Path(backup_dir) if backup_dir else gallery.database_file.parent
        self.max_listed = storage_config.get('max_listed_backups', 10)
        self.prefix = f"{gallery.database_file.stem}_backup_"
        self.suffix = gallery.database_file.suffix or '.json'

    def _backup_path(self, now: datetime) -> Path:
        return backup_path_for(self.gallery.database_file, self.backup_dir, now)

    def backup(self) -> Optional[Path]:
        """
        Copy the gallery file to a new timestamped backup.

        Returns:
            Path of the new backup, or None if there was nothing to copy or the copy failed
        """
        source = self.gallery.database_file
        if not source.exists():
            logger.info(f"No database file at {source}; nothing to back up")
            return None

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            target = self._backup_path(datetime.now())
            shutil.copyfile(source, target)
        except OSError as e:
            logger.error(f"Backup failed: {e}")
            return None

        logger.info(f"Database backed up to: {target}")
        return target

    def list_backups(self, limit: Optional[int] = None) -> List[BackupInfo]:
        """
        Backup files, most recently modified first.

        Args:
            limit: Maximum number of entries (defaults to the configured maximum; 0 for all)
        """
        if limit is None:
            limit = self.max_listed

        backups = []
        if self.backup_dir.is_dir():
            for path in self.backup_dir.glob(f"{self.prefix}*{self.suffix}"):
                try:
                    stat = path.stat()
                except OSError:
                    continue
                backups.append(BackupInfo(
                    path=path,
                    modified=datetime.fromtimestamp(stat.st_mtime),
                    size_bytes=int(stat.st_size),
                ))

        backups.sort(key=lambda b: b.modified, reverse=True)
        return backups[:limit] if limit else backups

    def restore(self, source: Union[str, Path, BackupInfo],
                mode: Union[RestoreMode, str] = RestoreMode.MERGE) -> RestoreResult:
        """
        Import records from a backup file into the gallery.

        Replace mode makes the gallery exactly the imported set. Merge mode
        imports a record only if no record with the same name was in the
        gallery before the import started; every skipped name is reported.
        A successful restore saves the gallery.

        Args:
            source: Backup file path or BackupInfo
            mode: RestoreMode, 'merge' or 'replace'

        Returns:
            RestoreResult
        """
        mode = RestoreMode.parse(mode)
        path = source.path if isinstance(source, BackupInfo) else Path(source)
        result = RestoreResult(success=False, mode=mode, source=path, before_count=len(self.gallery))

        try:
            document = read_document(path)
        except (GalleryFormatError, OSError) as e:
            logger.error(f"Import failed: {e}")
            result.error = str(e)
            result.after_count = result.before_count
            return result

        result.skipped_invalid.extend(document.skipped)

        to_import: List[EmbeddingRecord] = []
        if mode == RestoreMode.REPLACE:
            to_import = list(document.records)
            self.gallery.replace(to_import)
        else:
            existing = self.gallery.names()
            dimension = self.gallery.dimension
            for record in document.records:
                if record.name in existing:
                    logger.info(f"Skipping duplicate: {record.name}")
                    result.skipped_duplicates.append(record.name)
                    continue
                if dimension is not None and record.dimension != dimension:
                    result.skipped_invalid.append(
                        f"'{record.name}': dimension {record.dimension} != {dimension}"
                    )
                    continue
                to_import.append(record)
            self.gallery.extend(to_import)

        result.imported = len(to_import)
        result.after_count = len(self.gallery)
        result.success = True
        logger.info(
            f"Imported {result.imported} faces from {path.name} ({mode.value}); "
            f"total faces: {result.before_count} -> {result.after_count}"
        )

        result.saved = self.gallery.save()
        return result
