from specloop.handlers.base import Handler, Result
from specloop.handlers.channels import ChannelHandler
from specloop.handlers.commands import CommandHandler
from specloop.handlers.definitions import DefinitionHandler
from specloop.handlers.scaffold import ScaffoldHandler
from specloop.handlers.shell import TIMEOUT_MARKER, ShellHandler
from specloop.handlers.wiring import WiringHandler

__all__ = [
    "ChannelHandler",
    "CommandHandler",
    "DefinitionHandler",
    "Handler",
    "Result",
    "ScaffoldHandler",
    "ShellHandler",
    "TIMEOUT_MARKER",
    "WiringHandler",
]
