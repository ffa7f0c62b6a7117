"""Live output transport port.

The lifecycle controller forwards every output chunk to a transport while
it streams. A transport that fails is treated as a disconnected client:
the analysis keeps running and the side-store buffer keeps recording.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from rich.console import Console


class BaseTransport(ABC):
    connected: bool = True

    @abstractmethod
    async def send(self, text: str) -> None:
        """Deliver a chunk of output to the client."""

    async def close(self) -> None:
        self.connected = False


class ConsoleTransport(BaseTransport):
    """Writes the stream to a rich console as-is."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()
        self.connected = True

    async def send(self, text: str) -> None:
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)


class NullTransport(BaseTransport):
    """Discards output; used for background runs with no attached client."""

    def __init__(self):
        self.connected = True

    async def send(self, text: str) -> None:
        return None
