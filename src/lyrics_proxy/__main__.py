import argparse
import logging
import os
import sys

import uvicorn

from .app import create_app
from .config import load_config
from .errors import ConfigError

logger = logging.getLogger("lyrics_proxy")

DEFAULT_CONFIG = "config.toml"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="lyrics-proxy", description="Credential-rotating lyrics proxy")
    parser.add_argument("-c", "--config", help="TOML config file (default: ./config.toml if present)")
    parser.add_argument("--env-file", default=".env", help=".env file with LYRICS_PROXY_* variables")
    parser.add_argument("--host", help="override listen host")
    parser.add_argument("--port", type=int, help="override listen port")
    parser.add_argument("--log-level", default="INFO", help="logging level (default: INFO)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        path = args.config or (DEFAULT_CONFIG if os.path.exists(DEFAULT_CONFIG) else None)
        cfg = load_config(path, env_path=args.env_file)
    except ConfigError as e:
        logger.error(str(e))
        return 2

    host = args.host or cfg.host
    port = args.port or cfg.port
    logger.info(f"Listening on {host}:{port}")
    uvicorn.run(create_app(cfg), host=host, port=port, log_level=args.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
