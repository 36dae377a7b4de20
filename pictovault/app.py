import logging
import os

from aiohttp import web

from .api import ENGINE_KEY, setup_routes
from .config import load_config
from .engine import PictogramEngine

logger = logging.getLogger("PictoVault")


async def _on_startup(app):
    await app[ENGINE_KEY].startup()


async def _on_cleanup(app):
    await app[ENGINE_KEY].shutdown()


def create_app(config=None, engine=None, start_background=True):
    """Build the aiohttp application.

    The asset tree is served as static files under ``asset_public_prefix`` so the
    ``local_file_path`` values returned by the API are directly fetchable.
    """
    if engine is None:
        engine = PictogramEngine(config if config is not None else load_config())
    cfg = engine.config

    app = web.Application()
    app[ENGINE_KEY] = engine
    setup_routes(app)

    os.makedirs(cfg["asset_dir"], exist_ok=True)
    app.router.add_static(cfg["asset_public_prefix"], cfg["asset_dir"], name="pictogram-assets")

    if start_background:
        app.on_startup.append(_on_startup)
        app.on_cleanup.append(_on_cleanup)
    return app
