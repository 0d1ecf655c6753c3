# apps/crawler/base.py

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
import logging

logger = logging.getLogger(__name__)


@dataclass
class ProfileData:
    """
    Full profile of one account as fetched from the platform.
    Maps to the Candidate enrichment fields.
    """
    handle: str
    full_name: str = ""
    bio: str = ""
    followers: int = 0
    following: int = 0
    posts: int = 0
    is_private: bool = False
    is_verified: bool = False
    is_business: bool = False
    category: str = ""
    external_url: str = ""
    profile_pic_url: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict:
        """Profile blob stored on the candidate (raw payload excluded)."""
        return {
            "handle": self.handle,
            "full_name": self.full_name,
            "bio": self.bio,
            "followers": self.followers,
            "following": self.following,
            "posts": self.posts,
            "is_private": self.is_private,
            "is_verified": self.is_verified,
            "is_business": self.is_business,
            "category": self.category,
            "external_url": self.external_url,
            "profile_pic_url": self.profile_pic_url,
        }


@dataclass
class ListingResult:
    """Handles extracted from one external listing page."""
    handles: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class PlatformClient(ABC):
    """
    Rate-limited fetch client for one social platform.

    Every method either returns structured data or raises FetchError;
    `fetch_profile` raises ProfileNotFound for accounts that do not exist.
    """

    @property
    @abstractmethod
    def platform(self) -> str:
        """Platform value from apps.common.enums.Platform."""
        pass

    @abstractmethod
    def fetch_tag(self, tag: str) -> list[str]:
        """Handles of the authors of top and recent posts for a tag."""
        pass

    @abstractmethod
    def fetch_followers(self, handle: str, limit: int) -> list[str]:
        """Up to `limit` follower handles of an account."""
        pass

    @abstractmethod
    def fetch_location(self, name: str) -> list[str]:
        """Handles of recent posters at a named place."""
        pass

    @abstractmethod
    def fetch_profile(self, handle: str) -> ProfileData:
        pass

    def is_private(self, handle: str) -> bool:
        """
        Cheap private-account check before a full fetch.
        Clients with a lighter endpoint for this should override it.
        """
        return self.fetch_profile(handle).is_private

    def close(self) -> None:
        """Release network resources held by the client."""
        pass


class ListingParser(ABC):
    """
    Parser for one external listing site (rankings, directories).
    """

    @property
    @abstractmethod
    def source_domain(self) -> str:
        """The domain this parser handles (e.g., 'socialblade.com')."""
        pass

    @abstractmethod
    def parse(self, html: str, url: str) -> ListingResult:
        """
        Extract account handles from a listing page.

        Args:
            html: Raw HTML content
            url: The URL this content came from
        """
        pass

    def can_handle(self, url: str) -> bool:
        return self.source_domain in url.lower()


class ClientRegistry:
    """
    Maps platforms to client classes and listing domains to parsers.
    """

    _clients: dict[str, type[PlatformClient]] = {}
    _parsers: dict[str, type[ListingParser]] = {}

    @classmethod
    def register_client(cls, platform: str, client_class: type[PlatformClient]):
        cls._clients[platform] = client_class
        logger.info(f"Registered client for {platform}: {client_class.__name__}")

    @classmethod
    def register_parser(cls, source_domain: str, parser_class: type[ListingParser]):
        cls._parsers[source_domain] = parser_class
        logger.info(f"Registered parser for {source_domain}: {parser_class.__name__}")

    @classmethod
    def get_client(cls, platform: str, **kwargs) -> PlatformClient | None:
        client_class = cls._clients.get(platform)
        if client_class:
            return client_class(**kwargs)
        return None

    @classmethod
    def get_parser_for_url(cls, url: str) -> ListingParser | None:
        for domain, parser_class in cls._parsers.items():
            if domain in url.lower():
                return parser_class()
        return None

    @classmethod
    def list_clients(cls) -> list[str]:
        return list(cls._clients.keys())

    @classmethod
    def list_parsers(cls) -> list[str]:
        return list(cls._parsers.keys())
