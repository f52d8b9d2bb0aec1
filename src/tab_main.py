"""Headless tab launcher: one synchronized tab session against a running store host."""

import asyncio
import contextlib
import logging
import signal

from app_config import (
    AppConfigurationError,
    load_app_config,
    resolve_config_path,
    resolve_tab_url,
)
from server import ServerConfigurationError, StoreServerConfig
from store import RemoteSharedStore, StoreClient, StoreUnavailableError
from sync import (
    HeadlessPanelRenderer,
    SyncConfig,
    SyncConfigurationError,
    TabDependencies,
    TabSession,
)

_CONNECTION_POLL_SECONDS = 0.5


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure logging for the application."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("sync.tab")


async def run_tab(
    store_config: StoreServerConfig,
    sync_config: SyncConfig,
    page_url: str,
    logger: logging.Logger,
) -> int:
    remote = RemoteSharedStore(store_config.url)
    try:
        await remote.connect()
    except StoreUnavailableError as error:
        logger.error("%s", error)
        return 1

    client = StoreClient(
        remote,
        hydration_timeout_seconds=sync_config.hydration_timeout_seconds,
        settings_timeout_seconds=sync_config.settings_timeout_seconds,
        write_timeout_seconds=sync_config.write_timeout_seconds,
    )
    session = TabSession(
        TabDependencies(
            store=client,
            broadcast=remote,
            renderer=HeadlessPanelRenderer(),
            logger=logger,
        ),
        page_url=page_url,
        config=sync_config,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop.set)

    try:
        await session.start_up()
        logger.info("Tab running for %s. Press Ctrl+C to stop.", page_url)
        while not stop.is_set():
            if not remote.is_context_valid():
                logger.warning("Store connection lost; tab context invalidated.")
                break
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), _CONNECTION_POLL_SECONDS)
    finally:
        await session.shutdown()
        await remote.close()
    return 0


def main() -> int:
    """Run one headless tab session until interrupted."""
    logger = setup_logging()

    try:
        app_config = load_app_config(str(resolve_config_path()))
        page_url = resolve_tab_url(app_config)
        store_config = StoreServerConfig.from_settings(app_config.store)
        sync_config = SyncConfig.from_settings(app_config.sync)
    except (
        AppConfigurationError,
        ServerConfigurationError,
        SyncConfigurationError,
    ) as error:
        logger.error("Tab configuration error: %s", error)
        return 1

    try:
        return asyncio.run(run_tab(store_config, sync_config, page_url, logger))
    except KeyboardInterrupt:
        logger.info("Stopping by user request.")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
