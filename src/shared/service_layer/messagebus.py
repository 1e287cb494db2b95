"""Simple message bus routing commands to their handlers."""

import logging
from typing import Callable, Dict, Type

from shared.domain.commands import Command

logger = logging.getLogger(__name__)


class MessageBus:
    """Routes each command type to exactly one handler and returns its result."""

    def __init__(self):
        self.command_handlers: Dict[Type[Command], Callable] = {}

    def register_handler(self, command_type: Type[Command], handler: Callable):
        """Register a command handler."""
        self.command_handlers[command_type] = handler

    def handle(self, command: Command):
        """Handle a command by calling the registered handler."""
        if not isinstance(command, Command):
            raise TypeError(f"{command!r} is not a Command")

        handler = self.command_handlers.get(type(command))
        if handler is None:
            raise ValueError(f"No handler registered for command {command.name}")

        try:
            logger.debug(f"Handling command {command.name}")
            return handler(command)
        except Exception as e:
            logger.error(f"Error handling command {command.name}: {e}")
            raise
