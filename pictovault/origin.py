import asyncio
import logging
from urllib.parse import quote

import aiohttp

from .constants import ARASAAC_API_BASE
from .errors import InternalError, NotFound, RateLimited
from .models import OriginPictogram

logger = logging.getLogger("PictoVault")

DEFAULT_ORIGIN_CONFIG = {
    "origin_api_base": ARASAAC_API_BASE,
    "origin_timeout": 12,
    "user_agent": "PictoVault/1.0 (+https://localhost)",
}


def _segment(value):
    return quote(str(value), safe="")


def _parse_pictograms(data, url):
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise InternalError(f"Unexpected ARASAAC payload from {url}: {type(data).__name__}")
    out = []
    for item in data:
        try:
            out.append(OriginPictogram.from_json(item))
        except (TypeError, ValueError) as exc:
            raise InternalError(f"Failed to parse ARASAAC response from {url}: {exc}") from exc
    return out


class OriginClient:
    """Thin client for the ARASAAC pictogram API.

    Every call distinguishes three outcomes: items (a 404 means "no matches" and
    yields an empty list), throttling (429 -> RateLimited), and everything else
    that is not a success (InternalError). Nothing is retried here.
    """

    def __init__(self, config=None):
        self.config = {**DEFAULT_ORIGIN_CONFIG, **(config or {})}
        self.api_base = str(self.config["origin_api_base"]).rstrip("/")

    def _session(self):
        timeout = aiohttp.ClientTimeout(total=self.config.get("origin_timeout", 12))
        headers = {"User-Agent": self.config["user_agent"], "Accept": "application/json"}
        return aiohttp.ClientSession(timeout=timeout, headers=headers, trust_env=False)

    async def _get_json(self, session, url):
        """Return decoded JSON, or None when the origin answers 404."""
        try:
            async with session.get(url) as resp:
                if resp.status == 429:
                    logger.warning("ARASAAC rate limit hit: %s", url)
                    raise RateLimited()
                if resp.status == 404:
                    return None
                if resp.status < 200 or resp.status >= 300:
                    text = await resp.text()
                    raise InternalError(
                        f"ARASAAC request failed with status {resp.status}: {text[:200] if text.strip() else '(empty)'}"
                    )
                try:
                    return await resp.json(content_type=None)
                except ValueError as exc:
                    raise InternalError(f"Failed to parse ARASAAC response: {exc}") from exc
        except aiohttp.ClientError as exc:
            raise InternalError(f"ARASAAC request failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise InternalError(f"ARASAAC request timed out: {url}") from exc

    async def _get_pictograms(self, session, url):
        data = await self._get_json(session, url)
        if data is None:
            return []
        return _parse_pictograms(data, url)

    async def search(self, language, query):
        """Best-match search, widened to the plain search endpoint when it finds nothing."""
        encoded = _segment(query)
        best_url = f"{self.api_base}/pictograms/{_segment(language)}/bestsearch/{encoded}"
        search_url = f"{self.api_base}/pictograms/{_segment(language)}/search/{encoded}"
        async with self._session() as session:
            best = await self._get_pictograms(session, best_url)
            if best:
                return best
            logger.debug("bestsearch empty for %r, trying search", query)
            return await self._get_pictograms(session, search_url)

    async def fetch_by_id(self, language, arasaac_id):
        url = f"{self.api_base}/pictograms/{_segment(language)}/{int(arasaac_id)}"
        async with self._session() as session:
            items = await self._get_pictograms(session, url)
        if not items:
            raise NotFound(f"ARASAAC has no pictogram {arasaac_id}")
        return items[-1]

    async def fetch_newest(self, language, n):
        url = f"{self.api_base}/pictograms/{_segment(language)}/new/{int(n)}"
        async with self._session() as session:
            return await self._get_pictograms(session, url)

    async def fetch_keywords(self, language):
        url = f"{self.api_base}/keywords/{_segment(language)}"
        async with self._session() as session:
            data = await self._get_json(session, url)
        if data is None:
            return []
        words = data.get("words") if isinstance(data, dict) else None
        if not isinstance(words, list):
            return []
        return [w for w in words if isinstance(w, str)]
