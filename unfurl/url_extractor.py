"""Find web links in free-form chat text."""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

_LABEL = r"[a-z\d\u00a1-\uffff]+(?:-[a-z\d\u00a1-\uffff]+)*"

URL_REGEX = re.compile(
    r"https?://"
    # userinfo may not contain anything that could start the host or path
    r"(?:[^\s/?#@:]+(?::[^\s/?#@]*)?@)?"
    r"(?:"
    r"\d{1,3}(?:\.\d{1,3}){3}"
    rf"|{_LABEL}(?:\.{_LABEL})*\.[a-z\u00a1-\uffff]{{2,6}}"
    r")"
    r"(?::\d+)?"
    r"\S*",
    re.IGNORECASE,
)

BLOCKED_HOST_MARKERS = ("localhost", "127.0.0.1")


def _is_blocked(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in BLOCKED_HOST_MARKERS)


def extract_urls(text: str) -> List[str]:
    """Return every http(s) URL in *text* in order of appearance.

    Matches pointing at ``localhost`` or ``127.0.0.1`` are dropped. This only
    catches the obvious cases; other private ranges, IPv6 loopback and
    redirects are not checked here.
    """
    if not text:
        return []

    urls = []
    for match in URL_REGEX.finditer(text):
        url = match.group(0)
        if _is_blocked(url):
            logger.warning("Ignoring suspected unsafe URL: %s", url)
            continue
        logger.debug("Found URL %s", url)
        urls.append(url)
    return urls


__all__ = ["URL_REGEX", "extract_urls"]
