import logging
import os

from aiohttp import web

from .app import create_app
from .config import load_config
from .constants import APP_NAME, VERSION

logger = logging.getLogger("PictoVault")


def main():
    logging.basicConfig(
        level=os.environ.get("PICTOVAULT_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    config = load_config()
    logger.info("%s %s: data in %s", APP_NAME, VERSION, config["data_dir"])
    web.run_app(create_app(config), host=config["host"], port=config["port"], print=None)


if __name__ == "__main__":
    main()
