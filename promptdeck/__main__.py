import argparse
import logging
import os

from aiohttp import web

from .app import create_app
from .constants import APP_NAME


def main(argv=None):
    parser = argparse.ArgumentParser(prog="promptdeck", description=f"{APP_NAME} document store server")
    parser.add_argument("--host", default=os.environ.get("PROMPTDECK_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("PROMPTDECK_PORT", "8080")))
    parser.add_argument("--db", default=None, help="SQLite file (defaults to $PROMPTDECK_DB_PATH or ./data)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.environ.get("PROMPTDECK_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    web.run_app(create_app(args.db), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
