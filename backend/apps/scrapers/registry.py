# apps/scrapers/registry.py

"""
Client registry - registers the platform clients and listing parsers.
Import this module to ensure everything is registered.
"""

from apps.crawler.base import ClientRegistry
from apps.common.enums import Platform

from .instagram import InstagramClient
from .external import SocialBladeParser, KlearParser


def register_all():
    """Register all available clients and parsers."""

    # Instagram (public web API through the connection pool)
    ClientRegistry.register_client(Platform.INSTAGRAM, InstagramClient)

    # External listing sites
    ClientRegistry.register_parser("socialblade.com", SocialBladeParser)
    ClientRegistry.register_parser("klear.com", KlearParser)


# Auto-register when module is imported
register_all()
