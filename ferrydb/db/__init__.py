from .connector import Connector, Database
from .session import DbSession
from .tx import ChunkTransaction
from .writer import ChunkWriter

__all__ = [
    "Connector",
    "Database",
    "DbSession",
    "ChunkTransaction",
    "ChunkWriter",
]
