"""
Package entry point: ``python -m cloudsync``.
"""

import uvicorn

from .config import EnvironmentLoader
from .main import create_app, setup_logging


def run_main():
    settings = EnvironmentLoader.load_settings()
    setup_logging(settings.log_level)

    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    run_main()
