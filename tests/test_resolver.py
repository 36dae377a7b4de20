import asyncio
import os
import sqlite3
import tempfile
import unittest
from unittest import mock

from fake_origin import FakeOrigin, make_config

from pictovault.engine import PictogramEngine
from pictovault.errors import BadRequest, InternalError, NotFound, RateLimited


class ResolverTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.fake = FakeOrigin()
        self.fake.add(2462, ["apple"], ["fruit"], ["food"])
        self.fake.add(2463, ["apple pie"], ["dessert"], image="png")
        self.fake.add(2464, ["green apple tree"], ["plants"], image="none")
        await self.fake.start()
        self.engine = PictogramEngine(make_config(self.temp_dir.name, self.fake))
        self.resolver = self.engine.resolver

    async def asyncTearDown(self):
        await self.fake.close()
        self.temp_dir.cleanup()

    def _disk(self, record):
        return self.engine.assets.disk_path(record.local_file_path)

    async def test_resolve_by_id_is_idempotent(self):
        first = await self.resolver.resolve_by_id("en", 2462)
        calls = self.fake.total_calls

        second = await self.resolver.resolve_by_id("en", 2462)

        self.assertEqual(self.fake.total_calls, calls)
        self.assertEqual(first.to_dict(), second.to_dict())
        self.assertEqual(first.local_file_path, "/assets/pictograms/fruit/2462.svg")
        self.assertTrue(os.path.isfile(self._disk(first)))
        self.assertEqual(first.category, "fruit")

    async def test_missing_file_is_refetched(self):
        first = await self.resolver.resolve_by_id("en", 2462)
        os.remove(self._disk(first))

        again = await self.resolver.resolve_by_id("en", 2462)

        self.assertEqual(self.fake.calls["by_id"], 2)
        self.assertTrue(os.path.isfile(self._disk(again)))

    async def test_concurrent_resolves_converge(self):
        self.fake.delay = 0.02

        a, b = await asyncio.gather(
            self.resolver.resolve_by_id("en", 2463),
            self.resolver.resolve_by_id("en", 2463),
        )

        self.assertEqual(self.engine.store.count_pictograms(2463), 1)
        self.assertEqual(a.local_file_path, b.local_file_path)
        stored = self.engine.store.get_pictogram(2463)
        self.assertTrue(os.path.isfile(self.engine.assets.disk_path(stored.local_file_path)))
        leftovers = [n for n in os.listdir(os.path.dirname(self._disk(a))) if n.endswith(".tmp")]
        self.assertEqual(leftovers, [])

    async def test_resolve_without_binary_keeps_metadata(self):
        record = await self.resolver.resolve_by_id("en", 2464)

        self.assertIsNone(record.local_file_path)
        self.assertTrue(record.image_url.endswith("2464_500.png"))
        self.assertEqual(self.engine.store.count_pictograms(2464), 1)

    async def test_invalid_ids(self):
        for bad in (0, -3, "abc", None, True):
            with self.assertRaises(BadRequest):
                await self.resolver.resolve_by_id("en", bad)
        self.assertEqual(self.fake.total_calls, 0)

    async def test_unknown_id_raises_not_found(self):
        with self.assertRaises(NotFound):
            await self.resolver.resolve_by_id("en", 999)

    async def test_rate_limit_propagates(self):
        self.fake.fail["by_id"] = 429
        with self.assertRaises(RateLimited):
            await self.resolver.resolve_by_id("en", 2462)

    async def test_search_writes_back_then_answers_locally(self):
        results = await self.resolver.search("en", "apple")
        self.assertEqual([r.arasaac_id for r in results], [2462])
        self.assertEqual(self.fake.calls["bestsearch"], 1)
        self.assertIsNotNone(results[0].local_file_path)

        calls = self.fake.total_calls
        again = await self.resolver.search("EN", "  apple ")

        self.assertEqual(self.fake.total_calls, calls)
        self.assertEqual([r.arasaac_id for r in again], [2462])

    async def test_search_ranks_origin_hits(self):
        self.fake.fail["bestsearch"] = 404

        results = await self.resolver.search("en", "apple")

        self.assertEqual([r.arasaac_id for r in results], [2462, 2463, 2464])

    async def test_search_empty_query(self):
        with self.assertRaises(BadRequest):
            await self.resolver.search("en", "   ")

    async def test_search_without_matches_returns_empty(self):
        self.assertEqual(await self.resolver.search("en", "zebra"), [])

    async def test_short_language_defaults_to_english(self):
        await self.resolver.search("x", "apple")
        self.assertEqual(self.engine.store.get_pictogram(2462).language, "en")

    async def test_write_back_failure_does_not_fail_search(self):
        with mock.patch.object(self.engine.assets, "materialize", side_effect=InternalError("disk full")):
            with self.assertLogs("PictoVault", level="WARNING"):
                results = await self.resolver.search("en", "apple")

        self.assertEqual([r.arasaac_id for r in results], [2462])
        self.assertIsNone(results[0].local_file_path)
        self.assertEqual(self.engine.store.count_pictograms(), 0)

    async def test_write_back_returns_error_value(self):
        pic = await self.engine.origin.fetch_by_id("en", 2462)
        with mock.patch.object(self.engine.store, "upsert_pictogram", side_effect=sqlite3.OperationalError("locked")):
            err = await self.resolver._write_back("en", pic)
        self.assertIsInstance(err, sqlite3.OperationalError)
        self.assertIsNone(await self.resolver._write_back("en", pic))

    async def test_resolve_by_id_serves_origin_when_upsert_fails(self):
        with mock.patch.object(self.engine.store, "upsert_pictogram", side_effect=sqlite3.OperationalError("locked")):
            with self.assertLogs("PictoVault", level="WARNING") as logs:
                record = await self.resolver.resolve_by_id("en", 2462)

        self.assertEqual(record.arasaac_id, 2462)
        self.assertEqual(record.keywords, ["apple"])
        self.assertEqual(record.category, "fruit")
        self.assertIsNone(record.local_file_path)
        self.assertEqual(self.engine.store.count_pictograms(), 0)
        self.assertIn("Write-back failed for pictogram 2462", "\n".join(logs.output))

    async def test_degraded_read_when_store_unavailable(self):
        with mock.patch.object(
            self.engine.store, "ensure_ready", side_effect=sqlite3.OperationalError("unable to open database file")
        ):
            with self.assertLogs("PictoVault", level="WARNING"):
                results = await self.resolver.search("en", "apple")
            record = await self.resolver.resolve_by_id("en", 2463)

        self.assertEqual([r.arasaac_id for r in results], [2462])
        self.assertIsNone(results[0].local_file_path)
        self.assertEqual(record.arasaac_id, 2463)
        self.assertEqual(record.keywords, ["apple pie"])

    async def test_get_newest_clamps_and_caches(self):
        items = await self.resolver.get_newest("en", 500)

        self.assertEqual(self.fake.last_new_n, 100)
        self.assertEqual(sorted(r.arasaac_id for r in items), [2462, 2463, 2464])
        self.assertEqual(self.engine.store.count_pictograms(), 3)

        await self.resolver.get_newest("en", 0)
        self.assertEqual(self.fake.last_new_n, 1)

    async def test_keyword_list(self):
        self.assertEqual(await self.resolver.get_keyword_list("EN"), ["apple", "banana", "pear"])


if __name__ == "__main__":
    unittest.main()
