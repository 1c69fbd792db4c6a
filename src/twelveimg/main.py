import logging

import uvicorn

from twelveimg import create_app
from twelveimg.core.config import configs
from twelveimg.core.logger import setup_logging
from twelveimg.core.uvicorn_config import uvicorn_settings

setup_logging()
logger = logging.getLogger(__name__)

app = create_app()


def run() -> None:
    logger.info(f"Starting {configs.APP_NAME} on {configs.APP_HOST}:{configs.APP_PORT} ({configs.ENVIRONMENT})")
    uvicorn.run(
        "twelveimg.main:app",
        host=configs.APP_HOST,
        port=configs.APP_PORT,
        **uvicorn_settings,
    )


if __name__ == "__main__":
    run()
