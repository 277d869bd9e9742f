"""Display name validation for published lists."""

import json
import logging
from pathlib import Path

from flickswiper.errors import InvalidDisplayName

logger = logging.getLogger(__name__)

MIN_LENGTH = 2
MAX_LENGTH = 30
DEFAULT_DISPLAY_NAME = "FlickSwiper User"

DEFAULT_BLOCKED_TERMS = frozenset({"fuck", "shit", "bitch", "admin", "moderator"})


class DisplayNameValidator:
    """Checks length, line breaks and a substring blocklist.

    Names are not required to be unique; the user ID is the identity.
    """

    def __init__(self, blocked_terms: set[str] | frozenset[str] | None = None):
        terms = DEFAULT_BLOCKED_TERMS if blocked_terms is None else blocked_terms
        self.blocked_terms = frozenset(t.lower() for t in terms if t)

    @classmethod
    def from_file(cls, path: str) -> "DisplayNameValidator":
        """Load the blocklist from a JSON array of terms."""
        try:
            terms = json.loads(Path(path).expanduser().read_text())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load blocked terms from {path}: {e}")
            return cls(frozenset())
        return cls(set(terms))

    def validate(self, raw_name: str) -> str:
        """Return the trimmed name or raise InvalidDisplayName."""
        name = raw_name.strip(" \t")
        if not name.strip():
            raise InvalidDisplayName("Name cannot be blank.")
        if "\n" in name or "\r" in name:
            raise InvalidDisplayName("Name cannot contain line breaks.")
        name = name.strip()
        if len(name) < MIN_LENGTH:
            raise InvalidDisplayName(f"Name must be at least {MIN_LENGTH} characters.")
        if len(name) > MAX_LENGTH:
            raise InvalidDisplayName(f"Name must be {MAX_LENGTH} characters or fewer.")

        lowered = name.lower()
        if any(term in lowered for term in self.blocked_terms):
            raise InvalidDisplayName("This name contains language that isn't allowed.")
        return name

    def is_valid(self, raw_name: str) -> bool:
        try:
            self.validate(raw_name)
        except InvalidDisplayName:
            return False
        return True

    @staticmethod
    def default_for(name: str | None) -> str:
        """Fallback display name when none was provided."""
        if not name or not name.strip():
            return DEFAULT_DISPLAY_NAME
        return name.strip()[:MAX_LENGTH]
