# apps/scrapers/external.py

import re
import logging
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from apps.common.handles import normalize_handle
from apps.crawler.base import ListingParser, ListingResult

logger = logging.getLogger(__name__)


# Instagram paths that are not profiles
RESERVED_PATHS = {
    "p", "reel", "reels", "tv", "explore", "stories", "accounts", "about",
    "developer", "legal", "direct", "tags", "locations", "web", "api",
}

VALID_HANDLE = re.compile(r"^[a-z0-9._]{1,30}$")
INSTAGRAM_LINK = re.compile(r"instagram\.com/([A-Za-z0-9._]+)/?", re.IGNORECASE)


def clean_handle(value: str) -> str:
    """Normalized handle if it is a plausible Instagram username, else ""."""
    handle = normalize_handle(value)
    if not handle or handle in RESERVED_PATHS or not VALID_HANDLE.match(handle):
        return ""
    return handle


class InstagramLinkParser(ListingParser):
    """
    Fallback parser: every link to an Instagram profile on the page.
    """

    @property
    def source_domain(self) -> str:
        return "instagram.com"

    def can_handle(self, url: str) -> bool:
        return True

    def parse(self, html: str, url: str) -> ListingResult:
        soup = BeautifulSoup(html, "lxml")
        result = ListingResult()
        try:
            for handle in self._profile_links(soup, url):
                if handle not in result.handles:
                    result.handles.append(handle)
        except Exception as e:
            logger.error(f"Error parsing {url}: {e}")
            result.errors.append(str(e))
        return result

    def _profile_links(self, soup: BeautifulSoup, url: str) -> list[str]:
        handles = []
        for link in soup.find_all("a", href=True):
            match = INSTAGRAM_LINK.search(urljoin(url, link["href"]))
            if match:
                handle = clean_handle(match.group(1))
                if handle:
                    handles.append(handle)
        return handles


class SocialBladeParser(InstagramLinkParser):
    """
    Parser for Social Blade country top lists.
    Ranked rows link to /instagram/user/<handle>.
    """

    USER_PATH = re.compile(r"/instagram/user/([A-Za-z0-9._]+)", re.IGNORECASE)

    @property
    def source_domain(self) -> str:
        return "socialblade.com"

    def can_handle(self, url: str) -> bool:
        return self.source_domain in url.lower()

    def _profile_links(self, soup: BeautifulSoup, url: str) -> list[str]:
        handles = []
        for link in soup.find_all("a", href=True):
            match = self.USER_PATH.search(link["href"])
            if match:
                handle = clean_handle(match.group(1))
                if handle:
                    handles.append(handle)
        return handles + super()._profile_links(soup, url)


class KlearParser(InstagramLinkParser):
    """
    Parser for Klear influencer directory pages.
    Cards carry the handle as "@handle" text next to the profile link.
    """

    HANDLE_TEXT = re.compile(r"^\s*@([A-Za-z0-9._]{1,30})\s*$")

    @property
    def source_domain(self) -> str:
        return "klear.com"

    def can_handle(self, url: str) -> bool:
        return self.source_domain in url.lower()

    def _profile_links(self, soup: BeautifulSoup, url: str) -> list[str]:
        handles = []
        for node in soup.find_all(string=self.HANDLE_TEXT):
            handle = clean_handle(node.strip())
            if handle:
                handles.append(handle)
        return handles + super()._profile_links(soup, url)
