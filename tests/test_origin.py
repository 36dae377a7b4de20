import unittest

from fake_origin import FakeOrigin

from pictovault.errors import InternalError, NotFound, RateLimited
from pictovault.models import OriginPictogram
from pictovault.origin import OriginClient, _parse_pictograms


class OriginClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fake = FakeOrigin()
        self.fake.add(2462, ["apple"], ["fruit"], ["food"], desc="An apple")
        self.fake.add(2463, ["apple pie"], ["dessert"])
        await self.fake.start()
        self.client = OriginClient({"origin_api_base": self.fake.api_base, "origin_timeout": 5})

    async def asyncTearDown(self):
        await self.fake.close()

    async def test_bestsearch_hit_skips_broad_search(self):
        items = await self.client.search("en", "apple")

        self.assertEqual([p.id for p in items], [2462])
        self.assertEqual(self.fake.calls["bestsearch"], 1)
        self.assertEqual(self.fake.calls["search"], 0)

    async def test_empty_bestsearch_falls_back_to_search(self):
        items = await self.client.search("en", "pie")

        self.assertEqual([p.id for p in items], [2463])
        self.assertEqual(self.fake.calls["search"], 1)

    async def test_no_matches_is_empty_not_error(self):
        self.assertEqual(await self.client.search("en", "zebra"), [])

    async def test_fetch_by_id(self):
        pic = await self.client.fetch_by_id("en", 2462)

        self.assertEqual(pic.id, 2462)
        self.assertEqual(pic.categories, ["fruit"])
        self.assertEqual(pic.desc, "An apple")

    async def test_fetch_by_id_missing_raises_not_found(self):
        with self.assertRaises(NotFound):
            await self.client.fetch_by_id("en", 1)

    async def test_rate_limit_is_distinct(self):
        self.fake.fail["by_id"] = 429
        with self.assertRaises(RateLimited) as ctx:
            await self.client.fetch_by_id("en", 2462)
        self.assertEqual(ctx.exception.status, 429)

    async def test_server_error_is_internal(self):
        self.fake.fail["bestsearch"] = 500
        with self.assertRaises(InternalError):
            await self.client.search("en", "apple")

    async def test_transport_failure_is_internal(self):
        client = OriginClient({"origin_api_base": "http://127.0.0.1:9", "origin_timeout": 2})
        with self.assertRaises(InternalError):
            await client.fetch_newest("en", 5)

    async def test_keywords(self):
        self.assertEqual(await self.client.fetch_keywords("en"), ["apple", "banana", "pear"])
        self.assertEqual(await self.client.fetch_keywords("xx"), [])

    async def test_fetch_newest(self):
        items = await self.client.fetch_newest("en", 1)
        self.assertEqual([p.id for p in items], [2463])
        self.assertEqual(self.fake.last_new_n, 1)


class ParsePictogramsTests(unittest.TestCase):
    def test_single_object_is_wrapped(self):
        items = _parse_pictograms({"_id": 5, "keywords": []}, "u")
        self.assertEqual([p.id for p in items], [5])

    def test_malformed_payload_is_internal(self):
        with self.assertRaises(InternalError):
            _parse_pictograms("nope", "u")
        with self.assertRaises(InternalError):
            _parse_pictograms([{"keywords": []}], "u")

    def test_round_trips_raw_payload(self):
        pic = OriginPictogram.from_json({"_id": "9", "keywords": [{"keyword": "sun"}], "categories": ["", " sky "]})
        self.assertEqual(pic.id, 9)
        self.assertEqual(pic.categories, ["sky"])
        self.assertEqual(pic.to_json()["keywords"][0]["keyword"], "sun")


if __name__ == "__main__":
    unittest.main()
