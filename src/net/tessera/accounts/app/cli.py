import json
import logging
import os
from logging.config import dictConfig
from aiohttp import web

DEBUG_VALUES = ("1", "true", "yes")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging():
    """
    Set up logging for the `accounts` script.

    When LOGGING_CONFIG_FILE names a JSON document it is handed to `dictConfig` as is.
    Otherwise records go to stderr at INFO, or at DEBUG when DEBUG is set.
    """
    config_path = os.getenv("LOGGING_CONFIG_FILE", "")
    if config_path:
        with open(config_path) as config_file:
            dictConfig(json.load(config_file))
        return

    debug = os.getenv("DEBUG", "").lower() in DEBUG_VALUES
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)


def invoke():
    configure_logging()

    from net.tessera.accounts.app.config import Settings
    from net.tessera.accounts.app.server import start_web_server

    settings = Settings()  # type: ignore
    web.run_app(start_web_server(settings), port=settings.http_port)


if __name__ == "__main__":
    invoke()
