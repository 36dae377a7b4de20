import asyncio
import enum
import logging
import sqlite3
import time

from .config import MAX_BATCH_SIZE, MAX_IDLE_MINUTES, MIN_INTERVAL_SECONDS
from .errors import BadRequest
from .models import PrefetchRunResult
from .utils import clamp

logger = logging.getLogger("PictoVault")


class ActivityClock:
    """Last foreground activity, in ``now()`` seconds. Starts counting on first access."""

    def __init__(self, now=time.monotonic):
        self._now = now
        self._last = None

    def mark(self):
        self._last = self._now()

    def idle_seconds(self):
        if self._last is None:
            self._last = self._now()
        return max(0, int(self._now() - self._last))


class SchedulerState(enum.Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    RUNNING = "running"


def _optional_int(name, value, low, high):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise BadRequest(f"{name} must be a number")
    return clamp(int(value), low, high)


class IdlePrefetchScheduler:
    """Warms the cache with previously referenced pictograms while nobody is using the app.

    A single background task ticks every ``prefetch_interval_seconds``. A tick
    only runs a batch when prefetch is enabled and the activity clock has been
    quiet for at least ``idle_minutes``. ``run_now`` bypasses the gate but shares
    the tick lock, so two batches never overlap.
    """

    def __init__(self, store, resolver, assets, clock, config):
        self.store = store
        self.resolver = resolver
        self.assets = assets
        self.clock = clock
        self.config = config
        self.interval = max(MIN_INTERVAL_SECONDS, int(config.get("prefetch_interval_seconds", 60)))
        self.language = config.get("prefetch_language", "en")
        self.state = SchedulerState.IDLE
        self._lock = asyncio.Lock()
        self._task = None

    # ── settings ──

    def settings_defaults(self):
        return {
            "enabled": bool(self.config.get("prefetch_default_enabled", False)),
            "idle_minutes": clamp(int(self.config.get("prefetch_idle_minutes", 20)), 1, MAX_IDLE_MINUTES),
            "batch_size": clamp(int(self.config.get("prefetch_batch_size", 50)), 1, MAX_BATCH_SIZE),
        }

    def get_settings(self):
        return self.store.get_prefetch_settings(self.settings_defaults())

    def update_settings(self, enabled=None, idle_minutes=None, batch_size=None):
        if enabled is not None and not isinstance(enabled, bool):
            raise BadRequest("enabled must be a boolean")
        idle_minutes = _optional_int("idle_minutes", idle_minutes, 1, MAX_IDLE_MINUTES)
        batch_size = _optional_int("batch_size", batch_size, 1, MAX_BATCH_SIZE)
        settings = self.store.update_prefetch_settings(
            self.settings_defaults(),
            enabled=enabled,
            idle_minutes=idle_minutes,
            batch_size=batch_size,
        )
        logger.info(
            "Prefetch settings updated: enabled=%s idle_minutes=%d batch_size=%d",
            settings.enabled,
            settings.idle_minutes,
            settings.batch_size,
        )
        return settings

    # ── batches ──

    async def hydrate_seeded_assets(self):
        """Download missing files for system cards that point into the asset tree."""
        hydrated = 0
        for arasaac_id, public_path in self.store.list_seeded_card_assets(self.assets.public_prefix):
            if await self.assets.exists(public_path):
                continue
            try:
                ok = await self.assets.hydrate(arasaac_id, public_path)
            except Exception as exc:
                logger.warning("Failed hydrating seeded pictogram %s at %s: %s", arasaac_id, public_path, exc)
                continue
            if ok:
                hydrated += 1
            else:
                logger.warning("Seeded pictogram %s at %s could not be hydrated", arasaac_id, public_path)
        return hydrated

    async def run_batch(self, idle_seconds):
        try:
            hydrated = await self.hydrate_seeded_assets()
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Seeded asset hydration skipped: %s", exc)
            hydrated = 0

        settings = self.get_settings()
        ids = self.store.prefetch_candidate_ids(clamp(settings.batch_size, 1, MAX_BATCH_SIZE))
        result = PrefetchRunResult(hydrated_seeded=hydrated, idle_seconds=int(idle_seconds))

        for arasaac_id in ids:
            result.processed_ids += 1
            if await self.resolver.is_cached(arasaac_id) is not None:
                result.already_cached += 1
                continue
            try:
                record = await self.resolver.resolve_by_id(self.language, arasaac_id)
            except Exception as exc:
                result.failed += 1
                logger.debug("Prefetch skipped pictogram %s: %s", arasaac_id, exc)
                continue
            if record.local_file_path and await self.assets.exists(record.local_file_path):
                result.downloaded += 1

        self.store.record_prefetch_run(result.to_dict())
        logger.info(
            "Prefetch run: processed=%d downloaded=%d cached=%d seeded=%d failed=%d",
            result.processed_ids,
            result.downloaded,
            result.already_cached,
            result.hydrated_seeded,
            result.failed,
        )
        return result

    async def run_now(self):
        async with self._lock:
            self.state = SchedulerState.RUNNING
            try:
                return await self.run_batch(self.clock.idle_seconds())
            finally:
                self.state = SchedulerState.IDLE

    async def tick(self):
        """One scheduler step. Returns the run result, or None when the tick was skipped."""
        async with self._lock:
            self.state = SchedulerState.EVALUATING
            try:
                try:
                    settings = self.get_settings()
                except (sqlite3.Error, OSError) as exc:
                    logger.warning("Unable to load prefetch settings: %s", exc)
                    return None
                if not settings.enabled:
                    return None
                idle = self.clock.idle_seconds()
                if idle < settings.idle_minutes * 60:
                    return None

                self.state = SchedulerState.RUNNING
                try:
                    return await self.run_batch(idle)
                except (sqlite3.Error, OSError) as exc:
                    logger.warning("Idle prefetch run failed: %s", exc)
                    return None
            finally:
                self.state = SchedulerState.IDLE

    # ── background loop ──

    async def run_forever(self):
        loop = asyncio.get_running_loop()
        next_at = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            try:
                await self.tick()
            except Exception:
                logger.exception("Prefetch tick failed")
            next_at += self.interval
            now = loop.time()
            if next_at <= now:
                skipped = int((now - next_at) // self.interval) + 1
                next_at += skipped * self.interval
                logger.debug("Prefetch loop skipped %d tick(s) after a long run", skipped)

    def start(self):
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.create_task(self.run_forever())
        logger.info("Pictogram prefetch worker started (interval=%ds)", self.interval)
        return self._task

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Pictogram prefetch worker stopped")
