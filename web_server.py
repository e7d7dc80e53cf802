"""Web server entry point for the storefront API"""

import os
import socket

import uvicorn
from dotenv import load_dotenv

# Load environment variables from .env file BEFORE importing anything else
load_dotenv()

from storefront.core.config import load_settings  # noqa: E402
from storefront.utils.logger import configure_logging, get_logger  # noqa: E402

logger = get_logger(__name__)


def _port_in_use(host: str, port: int) -> bool:
    """Return True if the given port is already in use."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
            return False
        except OSError:
            return True


def _get_available_port(host: str, preferred: int, max_tries: int = 10) -> int:
    """Return preferred port if free, otherwise the first free port in [preferred, preferred+max_tries)."""
    for p in range(preferred, preferred + max_tries):
        if not _port_in_use(host, p):
            return p
    raise RuntimeError(
        f"None of the ports {preferred}-{preferred + max_tries - 1} are available. "
        "Stop the process using the port or set WEB_PORT to a different number."
    )


if __name__ == "__main__":
    settings = load_settings()
    configure_logging(settings.logging.level, settings.logging.format)

    host = os.getenv("WEB_HOST", "0.0.0.0")
    preferred_port = int(os.getenv("WEB_PORT", "8000"))
    port = _get_available_port(host, preferred_port)
    if port != preferred_port:
        logger.warning("Preferred port in use", preferred=preferred_port, port=port)

    logger.info("Starting storefront API", host=host, port=port)
    uvicorn.run(
        "web.app:create_app",
        factory=True,
        host=host,
        port=port,
        workers=int(os.getenv("WEB_WORKERS", "1")),
        reload=False,
    )
