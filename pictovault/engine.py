import logging

from .assets import AssetMaterializer
from .bookmarks import BookmarkTracker
from .config import load_config
from .db import PictogramStore
from .origin import OriginClient
from .prefetch import ActivityClock, IdlePrefetchScheduler
from .resolver import PictogramResolver

logger = logging.getLogger("PictoVault")


class PictogramEngine:
    """Owns every component and exposes the foreground operations.

    Each foreground call resets the shared activity clock before doing any work;
    the prefetch scheduler reads the same clock to decide whether the app is idle.
    """

    def __init__(self, config=None, store=None, origin=None, assets=None, clock=None):
        self.config = config if config is not None else load_config()
        self.store = store or PictogramStore.from_config(self.config)
        self.origin = origin or OriginClient(self.config)
        self.assets = assets or AssetMaterializer.from_config(self.config)
        self.clock = clock or ActivityClock()
        self.resolver = PictogramResolver(self.store, self.origin, self.assets, self.config)
        self.bookmarks = BookmarkTracker(self.store)
        self.scheduler = IdlePrefetchScheduler(self.store, self.resolver, self.assets, self.clock, self.config)

    def mark_activity(self):
        self.clock.mark()

    def idle_seconds(self):
        return self.clock.idle_seconds()

    # ── pictograms ──

    async def search(self, language, query):
        self.mark_activity()
        return await self.resolver.search(language, query)

    async def resolve_by_id(self, language, arasaac_id):
        self.mark_activity()
        return await self.resolver.resolve_by_id(language, arasaac_id)

    async def get_newest(self, language, n):
        self.mark_activity()
        return await self.resolver.get_newest(language, n)

    async def get_keyword_list(self, language):
        self.mark_activity()
        return await self.resolver.get_keyword_list(language)

    # ── bookmarks ──

    def list_saved(self, user_id, language):
        self.mark_activity()
        return self.bookmarks.list(user_id, language)

    def saved_ids(self, user_id):
        self.mark_activity()
        return self.bookmarks.saved_ids(user_id)

    def save(self, user_id, arasaac_id, label=None):
        self.mark_activity()
        self.bookmarks.save(user_id, arasaac_id, label)

    def unsave(self, user_id, arasaac_id):
        self.mark_activity()
        return self.bookmarks.unsave(user_id, arasaac_id)

    def record_use(self, user_id, arasaac_id):
        self.mark_activity()
        return self.bookmarks.record_use(user_id, arasaac_id)

    # ── prefetch administration ──

    def get_settings(self):
        return self.scheduler.get_settings()

    def update_settings(self, enabled=None, idle_minutes=None, batch_size=None):
        return self.scheduler.update_settings(enabled=enabled, idle_minutes=idle_minutes, batch_size=batch_size)

    async def run_now(self):
        return await self.scheduler.run_now()

    async def startup(self):
        try:
            hydrated = await self.scheduler.hydrate_seeded_assets()
        except Exception as exc:
            logger.warning("Seeded pictogram hydration failed at startup: %s", exc)
        else:
            if hydrated:
                logger.info("Hydrated %d seeded pictogram asset(s)", hydrated)
        self.scheduler.start()

    async def shutdown(self):
        await self.scheduler.stop()
