#!/usr/bin/env python3
"""
MDBList Ratings Main Entry Point

Loads and validates configuration, sets up logging, and serves the cached ratings
lookup API with uvicorn. The rating pipeline itself is started and stopped by the
FastAPI lifespan, so the HTTP session and rate-limit state live exactly as long as
the server.

Environment:
    MDBLIST_CONFIG: Configuration file path (default /app/config/config.json)
    LOG_DIR: Overrides the configured log directory

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import os
import sys

import uvicorn

from .config_models import ConfigurationValidator
from .utils import get_logger, setup_logging
from .web_api import RatingsService, create_app


DEFAULT_CONFIG_PATH = "/app/config/config.json"


class ServiceLauncher:
    """Loads configuration and runs the lookup API server."""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = config_path
        self.logger = get_logger("mdblist_ratings.launcher")

    def run(self) -> None:
        """Main entry point; exits with status 1 on configuration or startup errors."""
        config = ConfigurationValidator().load_and_validate_config(self.config_path)

        setup_logging(
            log_level=config.server.log_level,
            log_dir=os.getenv("LOG_DIR", config.server.log_dir)
        )

        self.logger.info("=" * 60)
        self.logger.info("Starting MDBList Ratings")
        self.logger.info("=" * 60)
        self.logger.info(f"Cache directory: {config.storage.resolved_cache_dir}")
        self.logger.info(f"Rate-limit state: {config.storage.resolved_state_file}")

        try:
            service = RatingsService(config)
            app = create_app(service)
            uvicorn.run(
                app,
                host=config.server.host,
                port=config.server.port,
                log_level=config.server.log_level.lower(),
                access_log=False
            )
        except KeyboardInterrupt:
            self.logger.info("Keyboard interrupt received")
        except Exception as e:
            self.logger.error(f"Launcher error: {e}")
            sys.exit(1)


def main():
    """Main entry point"""
    launcher = ServiceLauncher(os.getenv("MDBLIST_CONFIG", DEFAULT_CONFIG_PATH))
    launcher.run()


if __name__ == "__main__":
    main()
