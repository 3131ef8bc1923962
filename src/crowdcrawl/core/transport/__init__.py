"""Transports for the remote project API."""

from .base import ErrorKind, Page, Transport, TransportError
from .auth import TokenStore, clean_token
from .graphql import GraphQLTransport

__all__ = [
    "ErrorKind",
    "Page",
    "Transport",
    "TransportError",
    "TokenStore",
    "clean_token",
    "GraphQLTransport",
]
