from .config import Direction, TransferConfig
from .db.connector import Connector, Database
from .errors import (
    ConfigurationError,
    ConnectivityError,
    EncodeError,
    FerryError,
    ResumeStateError,
    SchemaApplyError,
    TransferFailed,
    TransferInterrupted,
)

__version__ = "0.1.0"

__all__ = [
    "Connector",
    "Database",
    "Direction",
    "TransferConfig",
    "FerryError",
    "ConfigurationError",
    "ConnectivityError",
    "EncodeError",
    "ResumeStateError",
    "SchemaApplyError",
    "TransferFailed",
    "TransferInterrupted",
    "__version__",
]
