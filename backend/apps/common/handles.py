# apps/common/handles.py

"""
Handle and contact normalization shared by the crawler, the import
entry point and the identity resolver.
"""

import re
from urllib.parse import urlparse

from .enums import Platform

# Bare "domain.tld/..." values without a scheme
_DOMAIN_PREFIX = re.compile(r"^(?:[a-z0-9-]+\.)+[a-z]{2,}/", re.IGNORECASE)

# Path segments that prefix the handle rather than being the handle
_PATH_PREFIXES = {"c", "user", "channel", "u"}

EMAIL_PATTERNS = [
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    re.compile(r"(?:email|mail|contact)[:\s]*([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})", re.IGNORECASE),
]
_VALID_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PROFILE_URL_TEMPLATES = {
    Platform.INSTAGRAM: "https://www.instagram.com/{handle}/",
    Platform.TIKTOK: "https://www.tiktok.com/@{handle}",
    Platform.YOUTUBE: "https://www.youtube.com/@{handle}",
}


def looks_like_url(value: str) -> bool:
    value = value.strip()
    return "://" in value or bool(_DOMAIN_PREFIX.match(value))


def normalize_handle(value: str | None) -> str:
    """
    Reduce a handle or profile URL to its bare lowercase handle.

    "@Foo", "https://www.instagram.com/foo/" and "foo" all become "foo".
    Normalizing an already-normalized handle returns it unchanged.
    """
    value = (value or "").strip()
    if not value:
        return ""

    if looks_like_url(value):
        parsed = urlparse(value if "://" in value else f"https://{value}")
        segments = [s for s in parsed.path.split("/") if s]
        while segments and segments[0].lower() in _PATH_PREFIXES:
            segments = segments[1:]
        value = segments[0] if segments else ""

    value = value.split("?")[0].split("#")[0]
    return value.strip().strip("/").lstrip("@").lower()


def handle_from_profile_url(url: str, domain: str = "instagram.com") -> str:
    """Handle from a profile URL on `domain`, or "" if the URL points elsewhere."""
    if domain not in (url or "").lower():
        return ""
    return normalize_handle(url)


def profile_url_for(platform: str, handle: str) -> str:
    template = PROFILE_URL_TEMPLATES.get(platform)
    if not template or not handle:
        return ""
    return template.format(handle=handle)


def extract_email(text: str | None) -> str:
    """First plausible email address found in free text (e.g. a bio)."""
    if not text:
        return ""

    for pattern in EMAIL_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        candidate = (match.group(1) if match.groups() else match.group(0)).strip().lower()
        if _VALID_EMAIL.match(candidate):
            return candidate

    return ""
