"""Shared entry-point plumbing for the settlement jobs.

Each job is a one-shot process meant for cron: it builds the gateway and the
store once, runs, and exits 0 on success or 1 when it cannot start.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrail.config import Settings, get_settings
from payrail.errors import ConfigurationError, PayrailError
from payrail.ledger.database import close_db, get_session_factory, init_db
from payrail.providers.base import WalletGateway
from payrail.providers.factory import get_gateway, reset_gateway

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1

JobFn = Callable[
    [WalletGateway, async_sessionmaker[AsyncSession], Settings], Awaitable[object]
]


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Reduce noise from libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def execute_job(
    name: str,
    job: JobFn,
    settings: Settings,
    gateway: Optional[WalletGateway] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> int:
    """Set up dependencies, run the job and map the outcome to an exit code.

    A gateway or session factory passed in is used as-is and left open;
    anything built here is closed before returning.
    """
    logger.debug(f"[{name}] Settings: {settings.get_safe_dict()}")

    owns_gateway = gateway is None
    owns_store = session_factory is None

    async def cleanup() -> None:
        if owns_gateway and gateway is not None:
            await gateway.aclose()
            reset_gateway()
        if owns_store:
            await close_db()

    try:
        if gateway is None:
            gateway = get_gateway(settings)
        if not await gateway.validate_config():
            raise ConfigurationError(f"{gateway.name} gateway rejected the configured credentials")
        if session_factory is None:
            await init_db()
            session_factory = get_session_factory()
    except PayrailError as e:
        logger.error(f"[{name}] Startup failed: {e}")
        await cleanup()
        return EXIT_FATAL

    try:
        await job(gateway, session_factory, settings)
    except PayrailError as e:
        logger.error(f"[{name}] Fatal error: {e}")
        return EXIT_FATAL
    except Exception:
        logger.exception(f"[{name}] Fatal error")
        return EXIT_FATAL
    finally:
        await cleanup()

    return EXIT_OK


def run_job(name: str, job: JobFn, settings: Optional[Settings] = None) -> int:
    """Run a job from a synchronous entry point."""
    load_dotenv()
    try:
        settings = settings or get_settings()
    except ValidationError as e:
        configure_logging()
        logger.error(f"[{name}] Invalid configuration: {e}")
        return EXIT_FATAL

    configure_logging(settings.debug)
    return asyncio.run(execute_job(name, job, settings))
