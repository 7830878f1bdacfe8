"""
Command line entry point.

    ferrydb pull DUMP_PATH DATABASE_URL [options]
    ferrydb push DUMP_PATH DATABASE_URL [options]
    ferrydb schema dump DATABASE_URL
    ferrydb version
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional, Sequence

from . import __version__
from .config import DEFAULT_CHUNKSIZE, MIN_CHUNKSIZE, Direction, TransferConfig
from .db.connector import Database
from .db.helpers import mask_url, verify_database_url
from .errors import ConfigurationError, FerryError, TransferFailed, TransferInterrupted
from .filters import tables_to_filter
from .operation import factory
from .schema import codec as schema_codec
from .state import SessionStore, merge_resume_options

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def _chunksize(value: str) -> int:
    try:
        size = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid chunksize: {value!r}") from None
    return max(MIN_CHUNKSIZE, size)


def _add_transfer_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("dump_path", help="Dump directory")
    parser.add_argument("database_url", help="SQLAlchemy database URL")
    parser.add_argument("-s", "--skip-schema", action="store_true", help="Transfer data only, not the schema")
    parser.add_argument("-i", "--indexes-first", action="store_true", help="Transfer indexes before data")
    parser.add_argument("-r", "--resume", metavar="FILE", help="Resume from a stored session file")
    parser.add_argument(
        "-c",
        "--chunksize",
        type=_chunksize,
        default=None,
        help=f"Initial chunksize (default {DEFAULT_CHUNKSIZE}, minimum {MIN_CHUNKSIZE})",
    )
    compression = parser.add_mutually_exclusive_group()
    compression.add_argument(
        "-g",
        "--disable-compression",
        dest="compress",
        action="store_false",
        default=None,
        help="Store chunks uncompressed",
    )
    compression.add_argument(
        "--compression",
        dest="compress",
        action="store_true",
        default=None,
        help="Store chunks compressed (the default; turns compression back on when resuming)",
    )
    parser.add_argument("-f", "--filter", help="Regex filter for table names")
    parser.add_argument("-t", "--tables", nargs="+", metavar="TABLE", help="Transfer only these tables")
    parser.add_argument("-e", "--exclude-tables", nargs="+", metavar="TABLE", default=(), help="Tables to skip")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug messages")
    parser.add_argument("-w", "--workers", type=int, default=1, help="Tables transferred in parallel (default 1)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ferrydb", description="Move a database through a portable dump directory")
    commands = parser.add_subparsers(dest="command", required=True)

    pull = commands.add_parser("pull", help="Pull a database into a dump directory")
    _add_transfer_options(pull)
    pull.set_defaults(handler=_transfer, direction=Direction.PULL)

    push = commands.add_parser("push", help="Push a dump directory into a database")
    _add_transfer_options(push)
    push.set_defaults(handler=_transfer, direction=Direction.PUSH)

    version = commands.add_parser("version", help="Show the ferrydb version")
    version.set_defaults(handler=_version)

    schema = commands.add_parser("schema", help="Work with schema documents directly")
    schema_commands = schema.add_subparsers(dest="schema_command", required=True)

    for name, handler, help_text in (
        ("dump", _schema_dump, "Print the schema of every table"),
        ("indexes", _schema_indexes, "Print the indexes of every table"),
        ("indexes-individual", _schema_indexes_individual, "Print indexes keyed by table"),
        ("reset-db-sequences", _schema_reset_sequences, "Reset sequences to max(id) + 1"),
    ):
        sub = schema_commands.add_parser(name, help=help_text)
        sub.add_argument("database_url")
        sub.set_defaults(handler=handler)

    dump_table = schema_commands.add_parser("dump-table", help="Print the schema of one table")
    dump_table.add_argument("database_url")
    dump_table.add_argument("table")
    dump_table.set_defaults(handler=_schema_dump_table)

    for name, handler, help_text in (
        ("load", _schema_load, "Create tables from a schema document"),
        ("load-indexes", _schema_load_indexes, "Create indexes from an index document"),
    ):
        sub = schema_commands.add_parser(name, help=help_text)
        sub.add_argument("database_url")
        sub.add_argument("filename")
        sub.set_defaults(handler=handler)

    return parser


def config_from_args(args: argparse.Namespace) -> TransferConfig:
    """Build the TransferConfig for a pull or push invocation."""
    verify_database_url(args.database_url)

    table_filter = args.filter
    if args.tables:
        table_filter = tables_to_filter(args.tables)

    session_path = None
    if args.resume:
        if not os.path.isfile(args.resume):
            raise ConfigurationError(f"Unable to find resume file {args.resume}")
        session_path = args.resume

    return TransferConfig(
        direction=args.direction,
        database_url=args.database_url,
        dump_path=args.dump_path,
        skip_schema=args.skip_schema,
        indexes_first=args.indexes_first,
        disable_compression=args.compress is False,
        default_chunksize=args.chunksize or DEFAULT_CHUNKSIZE,
        table_filter=table_filter,
        exclude_tables=frozenset(args.exclude_tables or ()),
        debug=args.debug,
        workers=args.workers,
        session_path=session_path,
    )


def _transfer(args: argparse.Namespace) -> int:
    config = config_from_args(args)

    state = None
    database_url = config.database_url
    if args.resume:
        state = SessionStore(config.session_path).load()
        if state is None:
            raise ConfigurationError(f"Unable to find resume file {args.resume}")
        state = merge_resume_options(
            state,
            {
                "default_chunksize": args.chunksize,
                "disable_compression": None if args.compress is None else not args.compress,
                "debug": args.debug or None,
            },
        )
        if os.path.abspath(state.dump_path) != os.path.abspath(config.dump_path):
            logger.warning("Resuming into %s as recorded in the session, not %s", state.dump_path, config.dump_path)
        database_url = state.database_url

    logger.info("%s %s <-> %s", config.direction.value.capitalize(), config.dump_path, mask_url(database_url))
    database = Database.from_url(database_url)
    try:
        report = factory(config, database, state).run()
    finally:
        database.dispose()

    print(f"Transferred {report.total_rows} row(s) across {len(report.tables)} table(s) in {report.elapsed:.1f}s")
    return EXIT_OK


def _version(args: argparse.Namespace) -> int:
    print(__version__)
    return EXIT_OK


def _with_database(database_url: str):
    verify_database_url(database_url)
    return Database.from_url(database_url)


def _read_file(filename: str) -> str:
    try:
        with open(filename, encoding="utf-8") as fh:
            return fh.read()
    except OSError as exc:
        raise ConfigurationError(f"Cannot read {filename}: {exc}") from exc


def _schema_dump(args: argparse.Namespace) -> int:
    database = _with_database(args.database_url)
    try:
        print(schema_codec.dump_schema(database))
    finally:
        database.dispose()
    return EXIT_OK


def _schema_dump_table(args: argparse.Namespace) -> int:
    database = _with_database(args.database_url)
    try:
        if not database.has_table(args.table):
            raise ConfigurationError(f"Table {args.table} does not exist")
        print(schema_codec.dump_table_schema(database, args.table))
    finally:
        database.dispose()
    return EXIT_OK


def _schema_indexes(args: argparse.Namespace) -> int:
    database = _with_database(args.database_url)
    try:
        print(schema_codec.dump_indexes(database))
    finally:
        database.dispose()
    return EXIT_OK


def _schema_indexes_individual(args: argparse.Namespace) -> int:
    database = _with_database(args.database_url)
    try:
        documents = schema_codec.dump_indexes_individual(database)
        print(json.dumps({table: json.loads(doc) for table, doc in documents.items()}, indent=2, sort_keys=True))
    finally:
        database.dispose()
    return EXIT_OK


def _schema_reset_sequences(args: argparse.Namespace) -> int:
    database = _with_database(args.database_url)
    try:
        for column, next_value in schema_codec.reset_sequences(database).items():
            print(f"{column} -> {next_value}")
    finally:
        database.dispose()
    return EXIT_OK


def _schema_load(args: argparse.Namespace) -> int:
    document = _read_file(args.filename)
    database = _with_database(args.database_url)
    try:
        schema_codec.load_schema(database, document)
    finally:
        database.dispose()
    return EXIT_OK


def _schema_load_indexes(args: argparse.Namespace) -> int:
    document = _read_file(args.filename)
    database = _with_database(args.database_url)
    try:
        schema_codec.load_indexes(database, document)
    finally:
        database.dispose()
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "debug", False) else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.handler(args)
    except (KeyboardInterrupt, TransferInterrupted) as exc:
        logger.warning("Interrupted: %s", exc or "keyboard interrupt")
        return EXIT_INTERRUPTED
    except TransferFailed as exc:
        for failure in exc.failures:
            logger.error("%s", failure.describe())
        logger.error("Transfer failed: %s", exc)
        return EXIT_FAILED
    except FerryError as exc:
        logger.error("%s", exc)
        return EXIT_FAILED
    except OSError as exc:
        logger.error("I/O error: %s", exc)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
