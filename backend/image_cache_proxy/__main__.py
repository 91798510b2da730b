"""Run the image cache proxy with uvicorn: ``python -m image_cache_proxy``."""

import uvicorn

from .app import create_app
from .config import Settings
from .logging_config import setup_logging


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    app = create_app(settings)
    # log_config=None keeps the handlers set up above
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
