from __future__ import annotations

import datetime as dt
import decimal
import json
import math
import uuid
import zlib

import pytest

from ferrydb.errors import EncodeError
from ferrydb.transfer.codec import TransferCodec, checksum, decode_value, encode_value

COLUMNS = ["id", "price", "created", "day", "at", "span", "blob", "ref", "doc", "ratio", "flag", "name"]
ROWS = [
    (
        1,
        decimal.Decimal("19.990"),
        dt.datetime(2024, 5, 17, 13, 45, 12, 123456),
        dt.date(2024, 5, 17),
        dt.time(7, 30),
        dt.timedelta(days=2, seconds=5, microseconds=7),
        b"\x00\xffbinary",
        uuid.UUID("12345678-1234-5678-1234-567812345678"),
        {"tags": ["a", "b"], "n": 1},
        0.25,
        True,
        "Zoë",
    ),
    (2, None, None, None, None, None, None, None, None, None, False, ""),
]


@pytest.mark.parametrize("compress", [True, False])
def test_round_trip_preserves_values_and_types(compress: bool) -> None:
    codec = TransferCodec(compress=compress)

    columns, rows = codec.decode(codec.encode(COLUMNS, ROWS))

    assert columns == COLUMNS
    assert rows == ROWS
    assert type(rows[0][1]) is decimal.Decimal
    assert type(rows[0][2]) is dt.datetime
    assert type(rows[0][3]) is dt.date


def test_compressed_payload_is_zlib_of_plain_payload() -> None:
    plain = TransferCodec(compress=False).encode(COLUMNS, ROWS)
    packed = TransferCodec(compress=True).encode(COLUMNS, ROWS)

    assert zlib.decompress(packed) == plain
    assert json.loads(plain)["columns"] == COLUMNS


def test_encoding_is_deterministic() -> None:
    codec = TransferCodec(compress=False)

    assert codec.encode(COLUMNS, ROWS) == codec.encode(COLUMNS, ROWS)
    assert checksum(codec.encode(COLUMNS, ROWS)) == checksum(codec.encode(COLUMNS, ROWS))


def test_timezone_aware_datetime_keeps_offset() -> None:
    value = dt.datetime(2024, 1, 1, 12, tzinfo=dt.timezone(dt.timedelta(hours=2)))

    assert decode_value(encode_value(value)) == value
    assert decode_value(encode_value(value)).utcoffset() == dt.timedelta(hours=2)


def test_non_finite_floats_are_tagged() -> None:
    assert encode_value(float("inf")) == {"$t": "float", "v": "inf"}
    assert math.isnan(decode_value(encode_value(float("nan"))))


def test_unsupported_value_raises_encode_error() -> None:
    codec = TransferCodec()

    with pytest.raises(EncodeError, match="Unsupported value type"):
        codec.encode(["x"], [(object(),)])


def test_row_width_mismatch_raises_encode_error() -> None:
    with pytest.raises(EncodeError, match="expected 2"):
        TransferCodec().encode(["a", "b"], [(1,)])


def test_corrupt_payload_raises_encode_error() -> None:
    with pytest.raises(EncodeError):
        TransferCodec(compress=True).decode(b"not zlib at all")
    with pytest.raises(EncodeError):
        TransferCodec(compress=False).decode(b'{"columns": ["a"]}')


def test_unknown_tag_raises_encode_error() -> None:
    with pytest.raises(EncodeError, match="Unknown value tag"):
        decode_value({"$t": "mystery", "v": "1"})
