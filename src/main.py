"""Store host launcher: shared store, panic relay and websocket endpoint for tabs."""

import logging
import signal
import time

from app_config import AppConfigurationError, load_app_config, resolve_config_path
from server import ServerConfigurationError, StoreServer, StoreServerConfig
from store import StorePersistenceError


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure logging for the application."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("store_server")


def main() -> int:
    """Run the store host until interrupted."""
    logger = setup_logging()

    try:
        app_config = load_app_config(str(resolve_config_path()))
        config = StoreServerConfig.from_settings(app_config.store)
        server = StoreServer(config=config, logger=logger)
    except (AppConfigurationError, ServerConfigurationError) as error:
        logger.error("Store host configuration error: %s", error)
        return 1
    except StorePersistenceError as error:
        logger.error("Store host could not load persisted data: %s", error)
        return 1

    try:
        server.start()
        logger.info("Press Ctrl+C to stop.")

        shutdown = False

        def handle_signal(signum, frame) -> None:
            del frame
            nonlocal shutdown
            logger.info("Signal %s received, stopping.", signal.Signals(signum).name)
            shutdown = True

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        while not shutdown:
            time.sleep(0.2)

    except KeyboardInterrupt:
        logger.info("Stopping by user request.")
    except RuntimeError as error:
        logger.error("%s", error)
        return 1
    finally:
        server.stop()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
