import pytest

from config import LedgerSettings
from library import Library
from utils.ui_helpers import OUTPUT_MODE_ENV


@pytest.fixture
def lib(tmp_path, monkeypatch):
    # A fresh data file and backup directory per test, with fixed circulation rules
    import main

    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    library = Library(
        data_file=str(tmp_path / "library_data.json"),
        backup_dir=str(tmp_path / "backups"),
    )
    library.settings = LedgerSettings(
        max_borrow_days=14,
        max_books_per_user=5,
        fine_per_day=2000,
        auto_save=True,
        max_backup_files=10,
    )
    library.refresh_stats()
    monkeypatch.setattr(main.LibraryManager, "_instance", library)
    yield library
