"""Main entry point for running the altwatch service."""

import asyncio
import contextlib
import logging
import sys

import yaml

import altwatch.entrypoint
from altwatch.core.config import ConfigFileEmptyError, ConfigFileNotFoundError
from altwatch.core.error_handling import (
    install_global_exception_hooks,
    register_asyncio_exception_handler,
)
from altwatch.core.exceptions import AuthenticationFailedError, ConfigError

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2
EXIT_AUTH_FAILED = 3
STARTUP_ERRORS = (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigFileEmptyError,
    yaml.YAMLError,
)


def main(argv: list[str] | None = None) -> int:
    """Run the application entry point and return the exit status."""
    args = sys.argv[1:] if argv is None else argv
    config_filename = args[0] if args else None

    install_global_exception_hooks()
    with asyncio.Runner() as runner:
        register_asyncio_exception_handler(runner.get_loop())
        try:
            runner.run(altwatch.entrypoint.main(config_filename))
        except STARTUP_ERRORS as exc:
            logging.basicConfig(format=altwatch.entrypoint.LOG_FORMAT)
            logger.error("Invalid configuration: %s", exc)  # noqa: TRY400
            return EXIT_CONFIG_ERROR
        except AuthenticationFailedError as exc:
            logger.critical("Authentication failed, exiting: %s", exc)
            return EXIT_AUTH_FAILED
        except KeyboardInterrupt:
            # Only reachable before the entrypoint installs its signal handlers.
            with contextlib.suppress(KeyboardInterrupt):
                logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
