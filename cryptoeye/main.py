"""
Entry point: serve the live BTC/USDT chart over SSH.

Usage:
    cryptoeye
    SSH_PORT=2222 SSH_HOST_KEY=/etc/cryptoeye/host_ed25519 cryptoeye

Then connect with: ssh -t -p 23234 anyone@<host>
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from .config import Settings, get_settings
from .server import start_server


logger = logging.getLogger("cryptoeye")


async def serve(settings: Settings) -> None:
    """Run the SSH server until SIGINT/SIGTERM."""
    acceptor, handler = await start_server(settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass

    logger.info(
        f"listening on {settings.ssh_host}:{settings.ssh_port} (ssh). "
        f"Connect with: ssh -t -p {settings.ssh_port} <user>@<host>"
    )
    await stop.wait()

    logger.info("shutting down…")
    acceptor.close()
    await handler.close_all()
    await acceptor.wait_closed()


def main() -> int:
    settings = get_settings()

    # Configure logging
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        asyncio.run(serve(settings))
    except OSError as e:
        logger.error(f"cannot listen on {settings.ssh_host}:{settings.ssh_port}: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
