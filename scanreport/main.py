"""Run the Scan Report HTTP API under uvicorn."""

import uvicorn

from scanreport.api.app import app
from scanreport.utils.config import load_config
from scanreport.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def main() -> None:
    """Load configuration, configure logging and serve the API."""
    config = load_config()
    setup_logging(config.log_level)
    logger.info("Serving Scan Report API on %s:%d", config.server.host, config.server.port)
    uvicorn.run(app, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
