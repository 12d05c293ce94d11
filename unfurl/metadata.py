import logging
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


class MetadataParseError(Exception):
    """Raised when a page's description tag carries no ``content`` value."""


@dataclass(frozen=True)
class PageMetadata:
    title: str = ""
    description: str = ""


def parse_metadata(page: str) -> Optional[PageMetadata]:
    """Scrape the ``<title>`` and meta description out of *page*.

    Returns ``None`` when neither tag is present. When only one of them is
    found the other field is left as an empty string. Broken markup is
    tolerated and simply yields fewer matches.
    """
    soup = BeautifulSoup(page or "", "html.parser")

    title_tag = soup.find("title")
    desc_tag = soup.find("meta", attrs={"name": "description"})

    if title_tag is None and desc_tag is None:
        logger.warning("No metadata found in page")
        return None

    title = ""
    description = ""

    if title_tag is not None:
        title = "".join(title_tag.strings)
    else:
        logger.warning("Failed to parse title HTML")

    if desc_tag is not None:
        content = desc_tag.get("content")
        if content is None:
            raise MetadataParseError("description meta tag has no content attribute")
        description = content
    else:
        logger.warning("Failed to parse description HTML")

    return PageMetadata(title=title, description=description)


__all__ = ["MetadataParseError", "PageMetadata", "parse_metadata"]
