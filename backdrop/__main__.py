"""
Server entry point: python -m backdrop

Serves HTTPS with CERTS_PATH/server.crt and server.key, or plain HTTP when
DEV_MODE is set.
"""

import logging
import os
import sys

import uvicorn

from .config import get_settings

logger = logging.getLogger("backdrop")


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    settings = get_settings()

    ssl_options = {}
    if settings.DEV_MODE:
        logger.info("Running in development mode (HTTP)")
    else:
        cert_path = os.path.join(settings.CERTS_PATH, "server.crt")
        key_path = os.path.join(settings.CERTS_PATH, "server.key")
        if not (os.path.exists(cert_path) and os.path.exists(key_path)):
            logger.error("TLS certificates not found: expected %s and %s", cert_path, key_path)
            return 1
        ssl_options = {"ssl_certfile": cert_path, "ssl_keyfile": key_path}
        logger.info("Running in production mode (HTTPS)")

    uvicorn.run(
        "backdrop.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        proxy_headers=True,
        **ssl_options,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
