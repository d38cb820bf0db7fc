"""Internal components for the Claude Agents SDK subprocess architecture."""

from .query import Query, Session
from .registry import SessionRegistry, get_registry
from .stream import QueryStream
from .transport import Transport
from .transport.subprocess_cli import SubprocessCLITransport
from . import message_parser

__all__ = [
    "Query",
    "QueryStream",
    "Session",
    "SessionRegistry",
    "Transport",
    "SubprocessCLITransport",
    "get_registry",
    "message_parser",
]
