"""Waiting for a shutdown request: SIGINT, SIGTERM or an explicit trigger."""

from __future__ import annotations

import asyncio
import logging
import os
import signal

log = logging.getLogger(__name__)


class ShutdownTrigger:
    """Requests a shutdown immediately."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    async def shutdown_now(self) -> None:
        """Ask the owning Shutdown to complete its wait."""
        await self._queue.put(None)


def _exit_now() -> None:
    log.info("Double Ctrl+C, exit immediately")
    os._exit(0)


class Shutdown:
    """Completes its wait once a signal arrives or a trigger fires."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)

    def trigger(self) -> ShutdownTrigger:
        """Return a trigger that can start the shutdown at once."""
        return ShutdownTrigger(self._queue)

    async def wait(self) -> None:
        """Return when a shutdown has been requested."""
        loop = asyncio.get_running_loop()
        signaled: asyncio.Future = loop.create_future()

        def on_signal(name: str) -> None:
            if not signaled.done():
                log.info("received signal %s, starting shutdown", name)
                signaled.set_result(name)

        installed = []
        for sig, name in ((signal.SIGINT, "SIGINT"), (signal.SIGTERM, "SIGTERM")):
            try:
                loop.add_signal_handler(sig, on_signal, name)
            except (NotImplementedError, RuntimeError, ValueError):
                continue
            installed.append(sig)

        received = asyncio.ensure_future(self._queue.get())
        try:
            await asyncio.wait(
                {signaled, received}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if not received.done():
                received.cancel()
            for sig in installed:
                loop.remove_signal_handler(sig)

        if signaled.done():
            if signaled.result() == "SIGINT" and signal.SIGINT in installed:
                loop.add_signal_handler(signal.SIGINT, _exit_now)
        else:
            log.info("received explicit shutdown signal")