import os
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Storage
    data_file: str = os.getenv("LIBRARY_DATA_FILE", "library_data.json")
    backup_dir: str = os.getenv("LIBRARY_BACKUP_DIR", "backups")

    # Circulation defaults
    max_borrow_days: int = int(os.getenv("MAX_BORROW_DAYS", "14"))
    max_books_per_user: int = int(os.getenv("MAX_BOOKS_PER_USER", "5"))
    fine_per_day: int = int(os.getenv("FINE_PER_DAY", "2000"))
    auto_save: bool = _env_bool("AUTO_SAVE", "True")
    max_backup_files: int = int(os.getenv("MAX_BACKUP_FILES", "10"))

    # Notifications
    upcoming_due_days: int = int(os.getenv("UPCOMING_DUE_DAYS", "3"))

    # Display
    currency_symbol: str = os.getenv("CURRENCY_SYMBOL", "Rp")
    app_name: str = os.getenv("APP_NAME", "Library Circulation Ledger")
    app_version: str = os.getenv("APP_VERSION", "2.0.0")
    debug: bool = _env_bool("DEBUG", "False")


settings = Settings()


@dataclass
class LedgerSettings:
    """Options that can be changed while the program runs.

    They are stored inside the document so a restart keeps them.
    """

    max_borrow_days: int = settings.max_borrow_days
    max_books_per_user: int = settings.max_books_per_user
    fine_per_day: int = settings.fine_per_day
    auto_save: bool = settings.auto_save
    max_backup_files: int = settings.max_backup_files

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]], base: Optional["LedgerSettings"] = None) -> "LedgerSettings":
        # Stored values are layered over the configured defaults; unknown keys are dropped
        merged = (base or LedgerSettings()).to_dict()
        known = {f.name for f in fields(LedgerSettings)}
        for key, value in (data or {}).items():
            if key in known and value is not None:
                merged[key] = _coerce(value, merged[key])
        return LedgerSettings(**merged)


def _coerce(value: Any, default: Any) -> Any:
    """Convert a stored value to the type of its default; ValueError when it cannot."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("true", "1", "yes", "on"):
            return True
        if text in ("false", "0", "no", "off"):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    return int(value)
