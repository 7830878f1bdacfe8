from .codec import TransferCodec
from .cursor import END_OF_TABLE, ChunkCursor
from .models import Chunk, RowRange, TableSpec
from .sizing import ChunkSizer

__all__ = [
    "TransferCodec",
    "ChunkCursor",
    "END_OF_TABLE",
    "Chunk",
    "RowRange",
    "TableSpec",
    "ChunkSizer",
]
