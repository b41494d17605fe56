"""Entry point - launches the game server.

Usage:
    python main.py                  # Serve on localhost:8765
    python main.py 0.0.0.0 9000     # Serve on custom host/port

LOG_LEVEL and LOG_FILE environment variables control logging.
"""

import os
import sys
import asyncio

from logging_config import setup_logging, get_logger
from shared.constants import DEFAULT_HOST, DEFAULT_PORT


def main():
    args = sys.argv[1:]
    if args and args[0] in ("-h", "--help"):
        print(__doc__)
        sys.exit(0)

    setup_logging(log_level=os.getenv("LOG_LEVEL", "INFO"), log_file=os.getenv("LOG_FILE"))
    logger = get_logger(__name__)

    host = args[0] if len(args) > 0 else DEFAULT_HOST
    try:
        port = int(args[1]) if len(args) > 1 else DEFAULT_PORT
    except ValueError:
        print(__doc__)
        sys.exit(1)

    from server.server import main as server_main
    logger.info(f"Starting Nightfall server on {host}:{port}")
    try:
        asyncio.run(server_main(host, port))
    except KeyboardInterrupt:
        logger.info("Server stopped")


if __name__ == "__main__":
    main()
