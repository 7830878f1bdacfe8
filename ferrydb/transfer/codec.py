"""
Row serialization for chunks.

A payload is a JSON document ``{"columns": [...], "rows": [[...], ...]}``.
JSON-native scalars (None, bool, int, str, finite float) are written as-is;
everything else is wrapped as ``{"$t": tag, "v": text}`` so a value keeps its
type across engines (a source-specific decimal arrives as decimal text, a
timestamp as ISO-8601). Compression is a zlib wrapper around that document.
"""

from __future__ import annotations

import base64
import datetime as dt
import decimal
import hashlib
import json
import math
import uuid
import zlib
from collections.abc import Sequence
from typing import Any

from ..errors import EncodeError

TAG = "$t"


def _encode_timedelta(value: dt.timedelta) -> str:
    return f"{value.days}:{value.seconds}:{value.microseconds}"


def _decode_timedelta(text: str) -> dt.timedelta:
    days, seconds, micros = (int(p) for p in text.split(":"))
    return dt.timedelta(days=days, seconds=seconds, microseconds=micros)


def encode_value(value: Any) -> Any:
    """Encode one value into its JSON-safe, type-tagged form."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if math.isfinite(value):
            return value
        return {TAG: "float", "v": repr(value)}
    if isinstance(value, decimal.Decimal):
        return {TAG: "decimal", "v": str(value)}
    # datetime is a subclass of date; check it first
    if isinstance(value, dt.datetime):
        return {TAG: "datetime", "v": value.isoformat()}
    if isinstance(value, dt.date):
        return {TAG: "date", "v": value.isoformat()}
    if isinstance(value, dt.time):
        return {TAG: "time", "v": value.isoformat()}
    if isinstance(value, dt.timedelta):
        return {TAG: "timedelta", "v": _encode_timedelta(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {TAG: "bytes", "v": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, uuid.UUID):
        return {TAG: "uuid", "v": str(value)}
    if isinstance(value, (dict, list)):
        try:
            json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise EncodeError(f"JSON value is not portable: {exc}") from exc
        return {TAG: "json", "v": value}
    raise EncodeError(f"Unsupported value type {type(value).__name__}")


_DECODERS = {
    "float": float,
    "decimal": decimal.Decimal,
    "datetime": dt.datetime.fromisoformat,
    "date": dt.date.fromisoformat,
    "time": dt.time.fromisoformat,
    "timedelta": _decode_timedelta,
    "bytes": lambda v: base64.b64decode(v.encode("ascii")),
    "uuid": uuid.UUID,
    "json": lambda v: v,
}


def decode_value(value: Any) -> Any:
    """Inverse of ``encode_value``."""
    if not isinstance(value, dict):
        return value
    try:
        decoder = _DECODERS[value[TAG]]
        return decoder(value["v"])
    except KeyError as exc:
        raise EncodeError(f"Unknown value tag in {value!r}") from exc
    except (TypeError, ValueError, decimal.InvalidOperation) as exc:
        raise EncodeError(f"Malformed {value.get(TAG)} value {value.get('v')!r}: {exc}") from exc


def checksum(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


class TransferCodec:
    """
    Encode rows to bytes and back.

    ``decode(encode(columns, rows)) == (columns, rows)`` for every supported
    value set, with or without compression.
    """

    def __init__(self, compress: bool = True, level: int = 6) -> None:
        self.compress = compress
        self.level = level

    def encode(self, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> bytes:
        """
        Raises:
            EncodeError: If a value is outside the representable type set
        """
        width = len(columns)
        encoded_rows = []
        for row in rows:
            if len(row) != width:
                raise EncodeError(f"Row has {len(row)} values, expected {width}")
            encoded_rows.append([encode_value(v) for v in row])

        document = {"columns": list(columns), "rows": encoded_rows}
        raw = json.dumps(document, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")
        if self.compress:
            return zlib.compress(raw, self.level)
        return raw

    def decode(self, payload: bytes) -> tuple[list[str], list[tuple[Any, ...]]]:
        """
        Raises:
            EncodeError: If the payload is not a valid encoded chunk
        """
        try:
            raw = zlib.decompress(payload) if self.compress else payload
            document = json.loads(raw.decode("utf-8"))
            columns = list(document["columns"])
            rows = [tuple(decode_value(v) for v in row) for row in document["rows"]]
        except EncodeError:
            raise
        except (zlib.error, UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
            raise EncodeError(f"Cannot decode chunk payload: {exc}") from exc
        return columns, rows
