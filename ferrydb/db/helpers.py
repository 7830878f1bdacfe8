from __future__ import annotations

import contextlib
from collections.abc import Iterator

from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import make_url

from ..errors import ConfigurationError, ConnectivityError

# Driver failures worth retrying with a smaller chunk.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    sa_exc.OperationalError,
    sa_exc.DisconnectionError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ConnectivityError):
        return True
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, TRANSIENT_ERRORS)


@contextlib.contextmanager
def translate_db_errors(action: str) -> Iterator[None]:
    """
    Re-raise transient SQLAlchemy failures as ConnectivityError.

    Anything else propagates untouched so callers can decide whether it is
    table-local or fatal.

    Usage:
        with translate_db_errors("reading orders"):
            rows = session.fetch_rows(stmt)
    """
    try:
        yield
    except ConnectivityError:
        raise
    except sa_exc.SQLAlchemyError as exc:
        if is_transient(exc):
            raise ConnectivityError(f"{action}: {exc}") from exc
        raise


def mask_url(database_url: str) -> str:
    """Render a database URL with its password hidden, for logs and errors."""
    try:
        return make_url(database_url).render_as_string(hide_password=True)
    except sa_exc.ArgumentError:
        return "<invalid url>"


def verify_database_url(database_url: str) -> None:
    """
    Check that a URL parses and names a backend.

    Raises:
        ConfigurationError: If the URL is not a valid SQLAlchemy URL
    """
    try:
        url = make_url(database_url)
    except sa_exc.ArgumentError as exc:
        raise ConfigurationError(f"Invalid database URL {database_url!r}: {exc}") from exc
    if not url.drivername:
        raise ConfigurationError(f"Database URL {mask_url(database_url)!r} has no backend")
