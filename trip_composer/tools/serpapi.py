from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
import json
import os

import httpx
from dotenv import load_dotenv

from trip_composer.errors import ExternalFetchError
from trip_composer.tools.booking_cache import link_identity

import logging

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("TRIP_COMPOSER_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

load_dotenv()


class SerpApiClient:
    """
    Fetches Google Hotels property details through the provider's
    ``serpapi_property_details_link``. Only the fetch lives here; caching is
    the caller's concern (see ``BookingOptionCache``).
    """

    def __init__(self, *, api_key: Optional[str] = None, timeout: float = 10.0):
        self.api_key = (api_key or os.getenv("SERPAPI_KEY") or "").strip()
        self.timeout = timeout

    async def property_details(self, detail_link: str) -> Dict[str, Any]:
        """Return the decoded property payload or raise ``ExternalFetchError``.

        The link's ``api_key`` parameter is replaced with the configured key,
        so links captured from search results can be replayed as-is.
        """
        if not self.api_key:
            raise ExternalFetchError("SERPAPI_KEY environment variable not configured")

        url = self._with_api_key(detail_link)
        logger.info("Fetching property details: %s", link_identity(url))

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
        except httpx.TimeoutException as exc:
            logger.warning("Timed out fetching property details after %.1fs", self.timeout)
            raise ExternalFetchError(
                f"timed out while contacting SerpAPI: {exc}", status_code=504
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Network error fetching property details", exc_info=True)
            raise ExternalFetchError(f"network error while contacting SerpAPI: {exc}") from exc

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning("Property details response was not valid JSON (status %s)", response.status_code)
            raise ExternalFetchError(
                "invalid response format from SerpAPI", status_code=response.status_code
            ) from exc

        if isinstance(data, dict) and data.get("error"):
            raise ExternalFetchError(str(data["error"]), status_code=response.status_code)
        if response.status_code >= 400:
            raise ExternalFetchError(
                f"SerpAPI returned HTTP {response.status_code}", status_code=response.status_code
            )
        if not isinstance(data, dict):
            raise ExternalFetchError("unexpected property details payload", status_code=response.status_code)

        logger.debug("Property details keys: %s", ", ".join(sorted(data.keys())))
        return data

    def _with_api_key(self, detail_link: str) -> str:
        try:
            parts = urlsplit((detail_link or "").strip())
        except ValueError as exc:
            raise ExternalFetchError("invalid property details link") from exc
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ExternalFetchError("invalid property details link")
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "api_key"]
        query.append(("api_key", self.api_key))
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
