"""Share links for published lists and parsing them back."""

import logging
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEEP_LINK_HOST = "mit112.github.io"
DEEP_LINK_BASE = f"https://{DEEP_LINK_HOST}/FlickSwiper"


def share_link(doc_id: str) -> str:
    """Public URL for a published list document."""
    return f"{DEEP_LINK_BASE}/list/{doc_id}"


def parse_deep_link(url: str) -> str | None:
    """Extract the published list document ID from a share link.

    Returns None for foreign hosts and unrecognized paths.
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or parsed.hostname != DEEP_LINK_HOST:
        logger.warning(f"Unrecognized deep link host: {parsed.hostname}")
        return None

    parts = [p for p in parsed.path.split("/") if p]
    # Expected: FlickSwiper / list / {doc_id}
    if len(parts) == 3 and parts[0] == "FlickSwiper" and parts[1] == "list" and parts[2]:
        return parts[2]

    logger.warning(f"No matching route for path: {parsed.path}")
    return None
