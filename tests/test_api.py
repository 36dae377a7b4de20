import tempfile
import unittest

from aiohttp import test_utils
from fake_origin import FakeOrigin, make_config

from pictovault.app import create_app
from pictovault.engine import PictogramEngine

USER = {"X-User-Id": "therapist-1"}


class PictoVaultApiTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.fake = FakeOrigin()
        self.fake.add(2462, ["apple"], ["fruit"])
        self.fake.add(2463, ["apple pie"], ["dessert"], image="png")
        await self.fake.start()
        self.engine = PictogramEngine(make_config(self.temp_dir.name, self.fake))
        self.client = test_utils.TestClient(test_utils.TestServer(create_app(engine=self.engine, start_background=False)))
        await self.client.start_server()

    async def asyncTearDown(self):
        await self.client.close()
        await self.fake.close()
        self.temp_dir.cleanup()

    async def test_health(self):
        resp = await self.client.get("/api/v1/health")
        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["name"], "PictoVault")

    async def test_search_returns_records(self):
        resp = await self.client.get("/api/v1/pictograms/search/en/apple")
        self.assertEqual(resp.status, 200)
        items = await resp.json()
        self.assertEqual([i["arasaac_id"] for i in items], [2462])
        self.assertEqual(items[0]["local_file_path"], "/assets/pictograms/fruit/2462.svg")

    async def test_search_errors_become_empty_list(self):
        self.fake.fail["bestsearch"] = 500
        resp = await self.client.get("/api/v1/pictograms/search/en/apple")
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.json(), [])

    async def test_get_by_id_and_static_asset(self):
        resp = await self.client.get("/api/v1/pictograms/en/id/2463")
        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertEqual(body["local_file_path"], "/assets/pictograms/dessert/2463.png")

        asset = await self.client.get(body["local_file_path"])
        self.assertEqual(asset.status, 200)
        self.assertTrue((await asset.read()).startswith(b"\x89PNG"))

    async def test_get_by_id_maps_errors_to_status(self):
        resp = await self.client.get("/api/v1/pictograms/en/id/999")
        self.assertEqual(resp.status, 404)
        self.assertIn("error", await resp.json())

        resp = await self.client.get("/api/v1/pictograms/en/id/abc")
        self.assertEqual(resp.status, 400)

        self.fake.fail["by_id"] = 429
        resp = await self.client.get("/api/v1/pictograms/en/id/2462")
        self.assertEqual(resp.status, 429)

        self.fake.fail["by_id"] = 503
        resp = await self.client.get("/api/v1/pictograms/en/id/2462")
        self.assertEqual(resp.status, 502)

    async def test_new_and_keywords(self):
        resp = await self.client.get("/api/v1/pictograms/new", params={"lang": "en", "n": "1"})
        self.assertEqual([i["arasaac_id"] for i in await resp.json()], [2463])

        resp = await self.client.get("/api/v1/pictograms/keywords", params={"lang": "en"})
        self.assertEqual(await resp.json(), ["apple", "banana", "pear"])

        self.fake.fail["keywords"] = 500
        resp = await self.client.get("/api/v1/pictograms/keywords")
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.json(), [])

    async def test_saved_requires_user_header(self):
        resp = await self.client.get("/api/v1/pictograms/saved")
        self.assertEqual(resp.status, 401)

        resp = await self.client.post("/api/v1/pictograms/saved", json={"arasaac_id": 2462})
        self.assertEqual(resp.status, 401)

    async def test_saved_lifecycle(self):
        await self.client.get("/api/v1/pictograms/en/id/2462")

        resp = await self.client.post("/api/v1/pictograms/saved", json={"arasaac_id": 2462, "label": "Snack"}, headers=USER)
        self.assertEqual(await resp.json(), {"ok": True})
        await self.client.post("/api/v1/pictograms/saved", json={"arasaac_id": 2462}, headers=USER)
        await self.client.post("/api/v1/pictograms/saved/2462/use", headers=USER)

        resp = await self.client.get("/api/v1/pictograms/saved", params={"lang": "en"}, headers=USER)
        items = await resp.json()
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["label"], "Snack")
        self.assertEqual(items[0]["used_count"], 1)
        self.assertEqual(items[0]["keywords"], ["apple"])

        resp = await self.client.get("/api/v1/pictograms/saved/ids", headers=USER)
        self.assertEqual(await resp.json(), [2462])

        resp = await self.client.get("/api/v1/pictograms/saved/ids", headers={"X-User-Id": "someone-else"})
        self.assertEqual(await resp.json(), [])

        resp = await self.client.delete("/api/v1/pictograms/saved/2462", headers=USER)
        self.assertEqual(resp.status, 200)
        resp = await self.client.delete("/api/v1/pictograms/saved/2462", headers=USER)
        self.assertEqual(resp.status, 200)
        resp = await self.client.get("/api/v1/pictograms/saved/ids", headers=USER)
        self.assertEqual(await resp.json(), [])

    async def test_save_rejects_bad_bodies(self):
        resp = await self.client.post(
            "/api/v1/pictograms/saved",
            data="{not json",
            headers={**USER, "Content-Type": "application/json"},
        )
        self.assertEqual(resp.status, 400)

        resp = await self.client.post("/api/v1/pictograms/saved", json={"arasaac_id": -1}, headers=USER)
        self.assertEqual(resp.status, 400)

        resp = await self.client.post("/api/v1/pictograms/saved", json=[1, 2], headers=USER)
        self.assertEqual(resp.status, 400)

    async def test_prefetch_admin(self):
        resp = await self.client.get("/api/v1/admin/pictograms/prefetch")
        body = await resp.json()
        self.assertEqual(resp.status, 200)
        self.assertFalse(body["enabled"])
        self.assertEqual(body["idle_minutes"], 20)
        self.assertIn("idle_seconds", body)

        resp = await self.client.put(
            "/api/v1/admin/pictograms/prefetch",
            json={"enabled": True, "idle_minutes": 99999, "batch_size": 5},
        )
        body = await resp.json()
        self.assertTrue(body["enabled"])
        self.assertEqual(body["idle_minutes"], 1440)
        self.assertEqual(body["batch_size"], 5)

        resp = await self.client.put("/api/v1/admin/pictograms/prefetch", json={"batch_size": "lots"})
        self.assertEqual(resp.status, 400)

        self.engine.store.upsert_activity_card("card-1", arasaac_id=2462)
        resp = await self.client.post("/api/v1/admin/pictograms/prefetch/run")
        result = await resp.json()
        self.assertEqual(resp.status, 200)
        self.assertEqual(result["processed_ids"], 1)
        self.assertEqual(result["downloaded"], 1)
        self.assertEqual(
            sorted(result),
            ["already_cached", "downloaded", "failed", "hydrated_seeded", "idle_seconds", "processed_ids"],
        )


if __name__ == "__main__":
    unittest.main()
