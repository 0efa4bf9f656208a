"""Run the admin API with every enabled agent in one process."""

import os

import uvicorn
from dotenv import load_dotenv

from landing_pad.api import create_fastapi_app
from landing_pad.app import Application
from landing_pad.config import PROJECT_ROOT, load_config
from landing_pad.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def main():
    load_dotenv(PROJECT_ROOT / ".env")
    setup_logging()

    config = load_config()
    host = os.getenv("API_HOST", "localhost")
    port = int(os.getenv("API_PORT", "8000"))
    logger.info("Serving admin API on %s:%d (%s)", host, port, config.environment)

    app = create_fastapi_app(Application(config))

    # log_config=None keeps the JSON handlers installed above
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
