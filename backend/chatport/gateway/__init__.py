"""Persistence gateway: the boundary between the import pipeline and storage."""

from chatport.gateway.base import PersistenceGateway
from chatport.gateway.errors import EntityExistsError, GatewayError, TransientGatewayError
from chatport.gateway.sqlite import SqliteGateway

__all__ = [
    "EntityExistsError",
    "GatewayError",
    "PersistenceGateway",
    "SqliteGateway",
    "TransientGatewayError",
]
