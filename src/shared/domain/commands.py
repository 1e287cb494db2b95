"""Base command type routed by the message bus."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Command:
    """A request handled by exactly one handler. Commands are immutable."""

    @property
    def name(self) -> str:
        return type(self).__name__
