import json
import logging
import os
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from exceptions import NotFoundError, StorageError

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup_"
BACKUP_SUFFIX = ".json"


class DocumentStore:
    """Reads and writes the whole ledger document as one JSON file.

    Every save first copies the file currently on disk into the backup
    directory, keeping at most ``max_backups`` copies there.
    """

    def __init__(self, data_file: str, backup_dir: str) -> None:
        self.data_file = Path(data_file)
        self.backup_dir = Path(backup_dir)

    # ------------------------- Load / save ------------------------- #
    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None on first run."""
        if not self.data_file.exists():
            return None
        try:
            with open(self.data_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Could not read {self.data_file}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self.data_file} does not contain a ledger document.")
        return data

    def save(self, document: Dict[str, Any], max_backups: int) -> bool:
        """Rotate backups, back up the current file and write the new document.

        Failures are logged and reported through the return value only.
        """
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            self._rotate(max_backups)
            if self.data_file.exists():
                shutil.copy2(self.data_file, self.backup_dir / self._backup_name())
            self._write_atomic(document)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Saving {self.data_file} failed: {e}")
            return False
        logger.info(f"Document saved to {self.data_file}")
        return True

    def _rotate(self, max_backups: int) -> None:
        # Make room for the copy that is about to be added
        names = self._backup_names()
        keep = max(max_backups - 1, 0)
        for name in names[keep:]:
            (self.backup_dir / name).unlink()
            logger.info(f"Removed old backup {name}")

    def _write_atomic(self, document: Dict[str, Any]) -> None:
        if self.data_file.parent and not self.data_file.parent.exists():
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.data_file.with_suffix(self.data_file.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.data_file)

    def _backup_name(self) -> str:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        name = f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"
        counter = 1
        while (self.backup_dir / name).exists():
            name = f"{BACKUP_PREFIX}{stamp}_{counter}{BACKUP_SUFFIX}"
            counter += 1
        return name

    # ------------------------- Backups ------------------------- #
    def _backup_names(self) -> List[str]:
        """Backup file names, newest first."""
        if not self.backup_dir.exists():
            return []
        names = [
            p.name for p in self.backup_dir.iterdir()
            if p.is_file() and p.name.startswith(BACKUP_PREFIX) and p.name.endswith(BACKUP_SUFFIX)
        ]
        return sorted(names, reverse=True)

    def list_backups(self) -> List[Dict[str, Any]]:
        backups = []
        for name in self._backup_names():
            stat = (self.backup_dir / name).stat()
            backups.append({
                "name": name,
                "size": stat.st_size,
                "modified": datetime.fromtimestamp(stat.st_mtime),
            })
        return backups

    def read_backup(self, name: str) -> Dict[str, Any]:
        # Only bare file names inside the backup directory are accepted
        path = self.backup_dir / Path(name).name
        if not path.is_file():
            raise NotFoundError(f"Backup {name} not found.")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Could not read backup {name}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Backup {name} does not contain a ledger document.")
        return data

    def clean_old_backups(self, days: int, now: Optional[datetime] = None) -> int:
        """Delete backups last modified more than ``days`` days ago."""
        cutoff = (now or datetime.now()) - timedelta(days=days)
        deleted = 0
        for backup in self.list_backups():
            if backup["modified"] < cutoff:
                try:
                    (self.backup_dir / backup["name"]).unlink()
                    deleted += 1
                except OSError as e:
                    logger.error(f"Could not delete backup {backup['name']}: {e}")
        logger.info(f"Deleted {deleted} backups older than {days} days")
        return deleted
