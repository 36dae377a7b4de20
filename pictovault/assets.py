import asyncio
import io
import logging
import os
import posixpath
import uuid

import aiohttp
from PIL import Image, UnidentifiedImageError

from .constants import ARASAAC_STATIC_BASE, ASSET_PUBLIC_PREFIX
from .errors import InternalError
from .utils import slugify

logger = logging.getLogger("PictoVault")

VECTOR_EXT = "svg"
RASTER_EXT = "png"


def _is_vector_content_type(content_type):
    ct = (content_type or "").lower()
    return "svg" in ct or "xml" in ct


def _verify_raster(data):
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return False
    return True


def _write_atomic(disk_path, data):
    os.makedirs(os.path.dirname(disk_path), exist_ok=True)
    tmp = f"{disk_path}.{uuid.uuid4().hex}.tmp"
    try:
        with open(tmp, "wb") as fh:
            fh.write(data)
        os.replace(tmp, disk_path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


class AssetMaterializer:
    """Downloads pictogram images into ``<asset_dir>/<category-slug>/<id>.<ext>``.

    Public references look like ``/assets/pictograms/<slug>/<id>.svg``; the disk
    path is the asset dir joined with whatever follows the public prefix.
    """

    def __init__(self, asset_dir, public_prefix=ASSET_PUBLIC_PREFIX, static_base=ARASAAC_STATIC_BASE,
                 timeout=12, user_agent="PictoVault/1.0"):
        self.asset_dir = os.path.abspath(asset_dir)
        self.public_prefix = "/" + public_prefix.strip("/")
        self.static_base = static_base.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent

    @classmethod
    def from_config(cls, config):
        return cls(
            asset_dir=config["asset_dir"],
            public_prefix=config["asset_public_prefix"],
            static_base=config["origin_static_base"],
            timeout=config["origin_timeout"],
            user_agent=config["user_agent"],
        )

    # ── path mapping ──

    def public_path(self, category_slug, arasaac_id, ext):
        return f"{self.public_prefix}/{category_slug}/{int(arasaac_id)}.{ext}"

    def disk_path(self, public_path):
        """Map a public reference to its file, or None if it is outside the asset tree."""
        if not public_path or not public_path.startswith(self.public_prefix + "/"):
            return None
        suffix = public_path[len(self.public_prefix) + 1:]
        normalized = posixpath.normpath(suffix)
        if not suffix or normalized.startswith("..") or posixpath.isabs(normalized):
            return None
        return os.path.join(self.asset_dir, *normalized.split("/"))

    async def exists(self, public_path):
        disk = self.disk_path(public_path)
        if disk is None:
            return False
        return await asyncio.to_thread(os.path.isfile, disk)

    def svg_url(self, arasaac_id):
        return f"{self.static_base}/{int(arasaac_id)}/{int(arasaac_id)}.svg"

    def png_url(self, arasaac_id):
        return f"{self.static_base}/{int(arasaac_id)}/{int(arasaac_id)}_500.png"

    # ── downloads ──

    def _session(self):
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        return aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": self.user_agent}, trust_env=False)

    async def _existing(self, category_slug, arasaac_id):
        for ext in (VECTOR_EXT, RASTER_EXT):
            public = self.public_path(category_slug, arasaac_id, ext)
            if await self.exists(public):
                return ext, public
        return None

    async def materialize(self, arasaac_id, category_hint=None):
        """Return ``(origin_url, public_path)``; ``public_path`` is None when no binary could be stored."""
        slug = slugify(category_hint)
        found = await self._existing(slug, arasaac_id)
        if found is not None:
            ext, public = found
            url = self.svg_url(arasaac_id) if ext == VECTOR_EXT else self.png_url(arasaac_id)
            return url, public

        svg_url = self.svg_url(arasaac_id)
        png_url = self.png_url(arasaac_id)
        async with self._session() as session:
            svg = await self._fetch_vector(session, svg_url)
            if svg is not None:
                public = self.public_path(slug, arasaac_id, VECTOR_EXT)
                await self._write(public, svg)
                return svg_url, public

            png = await self._fetch_raster(session, png_url)
        if png is None:
            return png_url, None

        public = self.public_path(slug, arasaac_id, RASTER_EXT)
        await self._write(public, png)
        return png_url, public

    async def hydrate(self, arasaac_id, public_path):
        """Download the asset a seeded card already points at. Returns True if a file was written."""
        disk = self.disk_path(public_path)
        if disk is None:
            return False
        ext = os.path.splitext(disk)[1].lstrip(".").lower() or RASTER_EXT

        async with self._session() as session:
            if ext == VECTOR_EXT:
                data = await self._fetch_vector(session, self.svg_url(arasaac_id))
            else:
                data = await self._fetch_raster(session, self.png_url(arasaac_id))
        if data is None:
            return False
        await self._write(public_path, data)
        return True

    async def _fetch_vector(self, session, url):
        try:
            async with session.get(url) as resp:
                if resp.status < 200 or resp.status >= 300:
                    return None
                if not _is_vector_content_type(resp.headers.get("Content-Type")):
                    logger.debug("SVG rejected for %s: content-type=%s", url, resp.headers.get("Content-Type"))
                    return None
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.debug("SVG download failed for %s: %s", url, exc)
            return None

    async def _fetch_raster(self, session, url):
        try:
            async with session.get(url) as resp:
                if resp.status < 200 or resp.status >= 300:
                    logger.info("PNG unavailable (%d): %s", resp.status, url)
                    return None
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise InternalError(f"Failed downloading ARASAAC PNG: {exc}") from exc

        if not _verify_raster(data):
            logger.warning("PNG from %s is not a readable image; keeping metadata only", url)
            return None
        return data

    async def _write(self, public_path, data):
        disk = self.disk_path(public_path)
        if disk is None:
            raise InternalError(f"Refusing to write outside the asset tree: {public_path}")
        try:
            await asyncio.to_thread(_write_atomic, disk, data)
        except OSError as exc:
            raise InternalError(f"Failed writing pictogram file {disk}: {exc}") from exc
        logger.debug("Stored pictogram asset %s (%d bytes)", public_path, len(data))
