# apps/scrapers/instagram.py

import logging
from urllib.parse import quote

from django.conf import settings

from apps.common.enums import Platform
from apps.common.exceptions import FetchError, ProfileNotFound
from apps.connections.pool import ConnectionPoolManager
from apps.crawler.base import PlatformClient, ProfileData
from apps.crawler.http_client import HttpClient, HttpClientConfig, FetchResponse
from apps.crawler.rate_limit import DomainRateLimiters

logger = logging.getLogger(__name__)


API_BASE = "https://i.instagram.com/api/v1"
WEB_BASE = "https://www.instagram.com"

PROFILE_URL = API_BASE + "/users/web_profile_info/"
TAG_URL = API_BASE + "/tags/web_info/"
FOLLOWERS_URL = API_BASE + "/friendships/{user_id}/followers/"
PLACE_SEARCH_URL = WEB_BASE + "/web/search/topsearch/"
LOCATION_URL = API_BASE + "/locations/web_info/"

# Statuses that say something about the endpoint, not about the account
ENDPOINT_FAILURE_STATUSES = {401, 403, 429}


def _media_authors(sections: list | None) -> list[str]:
    """Usernames of media authors in a tag/location "sections" payload."""
    handles = []
    for section in sections or []:
        if not isinstance(section, dict):
            continue
        layout = section.get("layout_content") or {}
        items = list(layout.get("medias") or []) + list(layout.get("fill_items") or [])
        for item in items:
            if not isinstance(item, dict):
                continue
            media = item.get("media") or {}
            username = ((media.get("user") or {}).get("username") or "").lower()
            if username and username not in handles:
                handles.append(username)
    return handles


class InstagramClient(PlatformClient):
    """
    Instagram fetch client over the public web API.

    Every request goes through an endpoint chosen by the connection pool,
    and its outcome is reported back to the pool. Responses that point at
    a blocked or rate-limited endpoint count as failures; a 404 is a
    healthy answer about a missing account.
    """

    def __init__(
        self,
        pool: ConnectionPoolManager | None = None,
        http_client: HttpClient | None = None,
        rate_limiters: DomainRateLimiters | None = None,
        app_id: str | None = None,
        session_id: str | None = None,
    ):
        if pool is None:
            from apps.connections.services import get_connection_pool
            pool = get_connection_pool()
        self.pool = pool
        self.http_client = http_client or HttpClient(HttpClientConfig(timeout=20.0))
        self.rate_limiters = rate_limiters or DomainRateLimiters()
        self.app_id = app_id or getattr(settings, "INSTAGRAM_APP_ID", "")
        self.session_id = session_id if session_id is not None else getattr(settings, "INSTAGRAM_SESSION_ID", "")
        # Profile fetched by the last is_private() call, reused by fetch_profile()
        self._checked: ProfileData | None = None

    @property
    def platform(self) -> str:
        return Platform.INSTAGRAM

    def get_headers(self) -> dict[str, str]:
        headers = {
            "X-IG-App-ID": self.app_id,
            "X-Requested-With": "XMLHttpRequest",
            "Referer": WEB_BASE + "/",
            "Accept": "application/json",
        }
        if self.session_id:
            headers["Cookie"] = f"sessionid={self.session_id}"
        return headers

    # === Transport ===

    def _request(self, url: str, params: dict | None = None) -> FetchResponse:
        """
        One request through the pool. Returns 2xx and 404 responses;
        everything else is reported as an endpoint failure and raised.
        """
        endpoint = self.pool.select_endpoint()
        self.rate_limiters.wait_if_needed(url)

        response = self.http_client.get(
            url,
            headers=self.get_headers(),
            params=params,
            proxy=endpoint.proxy_url,
        )

        if response.status_code is None:
            error = response.error or "no response"
            self.pool.report_outcome(endpoint, success=False, latency_ms=response.duration_ms, error=error)
            raise FetchError(f"Request to {url} failed via {endpoint.label}: {error}")

        if response.status_code == 404 or response.ok:
            if response.ok and "json" not in response.content_type:
                # Login wall or challenge page served with 200
                self.pool.report_outcome(endpoint, success=False, latency_ms=response.duration_ms, error="login wall")
                raise FetchError(f"Non-JSON response from {url} (login wall)", status_code=response.status_code)
            self.pool.report_outcome(endpoint, success=True, latency_ms=response.duration_ms)
            return response

        error = f"HTTP {response.status_code}"
        self.pool.report_outcome(endpoint, success=False, latency_ms=response.duration_ms, error=error)
        if response.status_code in ENDPOINT_FAILURE_STATUSES:
            raise FetchError(f"Blocked or rate limited on {url}: {error}", status_code=response.status_code)
        raise FetchError(f"Unexpected response from {url}: {error}", status_code=response.status_code)

    def _json(self, response: FetchResponse) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {response.url}: {e}", status_code=response.status_code)
        if not isinstance(data, dict):
            raise FetchError(f"Unexpected payload from {response.url}")
        return data

    def close(self) -> None:
        self.http_client.close()

    # === Operations ===

    def is_private(self, handle: str) -> bool:
        profile = self._fetch_profile(handle)
        self._checked = profile
        return profile.is_private

    def fetch_profile(self, handle: str) -> ProfileData:
        checked, self._checked = self._checked, None
        if checked is not None and checked.handle == handle.lower():
            return checked
        return self._fetch_profile(handle)

    def _fetch_profile(self, handle: str) -> ProfileData:
        response = self._request(PROFILE_URL, params={"username": handle})
        if response.status_code == 404:
            raise ProfileNotFound(f"@{handle} does not exist")

        user = (self._json(response).get("data") or {}).get("user")
        if not user:
            raise ProfileNotFound(f"@{handle} is unavailable")

        return ProfileData(
            handle=(user.get("username") or handle).lower(),
            full_name=user.get("full_name") or "",
            bio=user.get("biography") or "",
            followers=(user.get("edge_followed_by") or {}).get("count") or 0,
            following=(user.get("edge_follow") or {}).get("count") or 0,
            posts=(user.get("edge_owner_to_timeline_media") or {}).get("count") or 0,
            is_private=bool(user.get("is_private")),
            is_verified=bool(user.get("is_verified")),
            is_business=bool(user.get("is_business_account")),
            category=user.get("category_name") or "",
            external_url=user.get("external_url") or "",
            profile_pic_url=user.get("profile_pic_url_hd") or user.get("profile_pic_url") or "",
            raw={"id": user.get("id"), "user": user},
        )

    def fetch_tag(self, tag: str) -> list[str]:
        response = self._request(TAG_URL, params={"tag_name": tag})
        if response.status_code == 404:
            logger.info(f"Tag #{tag} not found")
            return []

        data = self._json(response).get("data") or {}
        handles = _media_authors((data.get("top") or {}).get("sections"))
        for handle in _media_authors((data.get("recent") or {}).get("sections")):
            if handle not in handles:
                handles.append(handle)
        logger.info(f"Tag #{tag}: {len(handles)} authors")
        return handles

    def fetch_followers(self, handle: str, limit: int) -> list[str]:
        if not self.session_id:
            raise FetchError("Follower listings require INSTAGRAM_SESSION_ID")

        profile = self._fetch_profile(handle)
        user_id = profile.raw.get("id")
        if not user_id or profile.is_private:
            return []

        response = self._request(FOLLOWERS_URL.format(user_id=quote(str(user_id))), params={"count": limit})
        if response.status_code == 404:
            return []

        users = self._json(response).get("users") or []
        return [u["username"].lower() for u in users if u.get("username")][:limit]

    def fetch_location(self, name: str) -> list[str]:
        response = self._request(PLACE_SEARCH_URL, params={"query": name, "context": "place"})
        if response.status_code == 404:
            return []

        places = self._json(response).get("places") or []
        if not places:
            logger.info(f"No place found for {name}")
            return []
        location_id = ((places[0].get("place") or {}).get("location") or {}).get("pk")
        if not location_id:
            return []

        response = self._request(LOCATION_URL, params={"location_id": location_id})
        if response.status_code == 404:
            return []

        data = self._json(response).get("native_location_data") or {}
        handles = _media_authors((data.get("ranked") or {}).get("sections"))
        for handle in _media_authors((data.get("recent") or {}).get("sections")):
            if handle not in handles:
                handles.append(handle)
        logger.info(f"Location {name}: {len(handles)} authors")
        return handles
