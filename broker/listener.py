"""
Broker - Network Listener.

============================================================
RESPONSIBILITY
============================================================
Default accept/dispatch loop for client connections.

- Binds a TCP server on the configured port
- Reports the bound port through the ready callback
- Dispatches each connection to a pluggable handler
- Serves until stop() or SIGTERM/SIGINT

A bind failure raises before the caller is ever blocked.

============================================================
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from core.exceptions import ListenerStartupError

from .base import Listener, ReadyCallback


logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]


async def close_connection(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Default handler: log the peer and hang up."""
    peer = writer.get_extra_info("peername")
    logger.debug(f"Connection from {peer}, no protocol handler installed")
    writer.close()
    try:
        await writer.wait_closed()
    except ConnectionError:
        pass


class AsyncioListener(Listener):
    """Asyncio TCP listener running its own event loop."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        connection_handler: Optional[ConnectionHandler] = None,
        install_signal_handlers: bool = True,
    ):
        self._host = host
        self._handler = connection_handler or close_connection
        self._install_signal_handlers = install_signal_handlers

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._bound_port: Optional[int] = None
        self._web_root: Optional[Path] = None
        self._connections = 0

    @property
    def bound_port(self) -> Optional[int]:
        return self._bound_port

    @property
    def web_root(self) -> Optional[Path]:
        return self._web_root

    @property
    def connections(self) -> int:
        return self._connections

    def serve(
        self,
        port: int,
        web_root: Optional[Path] = None,
        on_ready: Optional[ReadyCallback] = None,
    ) -> None:
        asyncio.run(self.serve_async(port, web_root, on_ready))

    async def serve_async(
        self,
        port: int,
        web_root: Optional[Path] = None,
        on_ready: Optional[ReadyCallback] = None,
    ) -> None:
        """Coroutine form of serve() for callers that own a loop."""
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._web_root = Path(web_root) if web_root else None

        try:
            server = await asyncio.start_server(self._dispatch, self._host, port)
        except OSError as e:
            raise ListenerStartupError(
                f"Cannot bind {self._host}:{port}: {e.strerror or e}",
                port=port,
                cause=e,
            ) from e

        self._bound_port = server.sockets[0].getsockname()[1]
        installed = self._add_signal_handlers()
        logger.info(f"Listening on {self._host}:{self._bound_port}")

        try:
            async with server:
                if on_ready is not None:
                    on_ready(self._bound_port)
                await self._stop_event.wait()
        finally:
            for signum in installed:
                self._loop.remove_signal_handler(signum)
            logger.info(f"Listener on port {self._bound_port} stopped")

    def stop(self) -> None:
        loop, event = self._loop, self._stop_event
        if loop is None or event is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(event.set)

    def _add_signal_handlers(self) -> List[int]:
        if not self._install_signal_handlers:
            return []

        installed = []
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                self._loop.add_signal_handler(signum, self._stop_event.set)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug(f"Cannot install {signum.name} handler on listener loop: {e}")
                continue
            installed.append(signum)
        return installed

    async def _dispatch(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._connections += 1
        try:
            await self._handler(reader, writer)
        except Exception:
            logger.exception("Connection handler failed")
            writer.close()


__all__ = ["AsyncioListener", "ConnectionHandler", "close_connection"]
