"""
AC Whisk Identity Core Entry Point.

Bootstraps the dependency graph via constructor injection, connects to
Supabase, runs the backend diagnostics, then keeps the session
reconciler subscribed until interrupted.  Every subsystem is wired
here; there are no module-level client singletons.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import sys

from acwhisk.config import AppConfig, get_config
from acwhisk.database import DatabaseManager
from acwhisk.logger import StructuredLogger, get_logger
from acwhisk.services import create_services


async def run(config: AppConfig) -> None:
    """Wire dependencies, start the identity core and wait for shutdown."""
    logger: StructuredLogger = get_logger("acwhisk.main")
    logger.info("Starting AC Whisk identity core...")

    # ------------------------------------------------------------------
    # 1. Backend connection (offline when credentials are missing)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        logger=get_logger("acwhisk.database"),
    )
    await db.connect()

    # ------------------------------------------------------------------
    # 2. Service container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(db=db, config=config)
    auth = services["auth_service"]

    # ------------------------------------------------------------------
    # 3. Diagnostics + bootstrap
    # ------------------------------------------------------------------
    await services["diagnostics_service"].run()
    await auth.start()

    if auth.user is not None:
        logger.info(
            "Signed in as %s (%s, role: %s).",
            auth.user.name, auth.user.email, auth.user.role,
        )
    else:
        logger.info("No active session.")

    # ------------------------------------------------------------------
    # 4. Stay subscribed until cancelled
    # ------------------------------------------------------------------
    try:
        await asyncio.Event().wait()
    finally:
        auth.close()
        await services["identity_reconciler"].wait_idle()
        await db.close()
        logger.info("AC Whisk identity core shut down.")


def main() -> None:
    """Application entry point."""
    asyncio.run(run(get_config()))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
