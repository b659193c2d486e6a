import re
from typing import Optional


class ISBNValidator:
    """Lenient ISBN check: 10 or 13 digits once dashes and spaces are removed.

    Books with an invalid ISBN are still catalogued; callers only warn.
    """

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return re.sub(r"[-\s]", "", raw)

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        return bool(re.fullmatch(r"\d{10}(\d{3})?", s))
