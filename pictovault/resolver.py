import logging
import sqlite3

from .errors import BadRequest
from .models import PictogramRecord
from .ranking import rank_by_fuzzy_score
from .utils import clamp, normalize_language, normalize_text

logger = logging.getLogger("PictoVault")

MAX_NEWEST = 100


def _validate_id(arasaac_id):
    if isinstance(arasaac_id, bool):
        raise BadRequest("Invalid pictogram id")
    try:
        value = int(arasaac_id)
    except (TypeError, ValueError):
        raise BadRequest("Invalid pictogram id") from None
    if value <= 0:
        raise BadRequest("Invalid pictogram id")
    return value


class PictogramResolver:
    """Local-first pictogram lookup.

    The local store answers whenever it can; the origin is consulted on a miss and
    its results are written back (asset downloaded, row upserted) before the store
    is re-read. A broken store degrades every call to remote-only.
    """

    def __init__(self, store, origin, assets, config=None):
        self.store = store
        self.origin = origin
        self.assets = assets
        self.license = (config or {}).get("license", store.license)

    def _store_ready(self):
        try:
            self.store.ensure_ready()
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Local pictogram store unavailable, using ARASAAC only: %s", exc)
            return False
        return True

    def _read_local(self, reader, *args):
        try:
            return reader(*args)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Local pictogram read failed: %s", exc)
            return None

    async def _write_back(self, language, pic):
        """Materialize the asset and upsert the row. Returns the failure, or None."""
        try:
            local_path = None
            image_url = None
            existing = self._read_local(self.store.get_local_path, pic.id)
            if existing and await self.assets.exists(existing):
                local_path = existing
                image_url = self.assets.svg_url(pic.id) if existing.endswith(".svg") else self.assets.png_url(pic.id)
            else:
                image_url, local_path = await self.assets.materialize(pic.id, pic.primary_category)
            self.store.upsert_pictogram(language, pic, image_url=image_url, local_file_path=local_path)
        except Exception as exc:
            return exc
        return None

    def _direct(self, language, pic):
        return PictogramRecord.from_origin(language, pic, license=self.license)

    async def _write_back_and_reread(self, language, pics, store_ok):
        if not store_ok:
            return [self._direct(language, p) for p in pics]
        for pic in pics:
            err = await self._write_back(language, pic)
            if err is not None:
                logger.warning("Write-back failed for pictogram %s: %s", pic.id, err)
        records = self._read_local(self.store.get_pictograms_by_ids, [p.id for p in pics])
        return records or [self._direct(language, p) for p in pics]

    async def search(self, language, query):
        q = normalize_text(query)
        if not q:
            raise BadRequest("Query must not be empty")
        language = normalize_language(language)

        store_ok = self._store_ready()
        if store_ok:
            local = self._read_local(self.store.search_pictograms, language, q)
            if local:
                return rank_by_fuzzy_score(local, q)

        pics = await self.origin.search(language, q)
        if not pics:
            return []

        records = await self._write_back_and_reread(language, pics, store_ok)
        return rank_by_fuzzy_score(records, q)

    async def is_cached(self, arasaac_id):
        """Return the local record if it points at an asset that is present on disk."""
        record = self._read_local(self.store.get_pictogram, arasaac_id)
        if record is None or not record.local_file_path:
            return None
        if not await self.assets.exists(record.local_file_path):
            return None
        return record

    async def resolve_by_id(self, language, arasaac_id):
        picto_id = _validate_id(arasaac_id)
        language = normalize_language(language)

        store_ok = self._store_ready()
        if store_ok:
            cached = await self.is_cached(picto_id)
            if cached is not None:
                return cached

        pic = await self.origin.fetch_by_id(language, picto_id)
        if not store_ok:
            return self._direct(language, pic)

        err = await self._write_back(language, pic)
        if err is not None:
            logger.warning("Write-back failed for pictogram %s: %s", picto_id, err)
            return self._direct(language, pic)

        record = self._read_local(self.store.get_pictogram, pic.id)
        return record or self._direct(language, pic)

    async def get_newest(self, language, n):
        try:
            n = int(n)
        except (TypeError, ValueError):
            raise BadRequest("n must be an integer") from None
        n = clamp(n, 1, MAX_NEWEST)
        language = normalize_language(language)

        pics = await self.origin.fetch_newest(language, n)
        if not pics:
            return []
        return await self._write_back_and_reread(language, pics, self._store_ready())

    async def get_keyword_list(self, language):
        return await self.origin.fetch_keywords(normalize_language(language))
