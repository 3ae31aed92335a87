"""
migrator/streamer.py
--------------------
Lazily reads one table and coerces each row to the literals its target
columns expect.

Design Decisions:
    * ``stream`` is a generator over a single fresh scan: it is finite and
      not restartable; streaming the table again opens a new scan.
    * Closing the generator (or an exception escaping it) closes the scan,
      so an aborted table never leaves a source cursor open.
    * Undecodable rows follow an explicit :class:`RowErrorPolicy`. Under
      ``SKIP_ROW`` every skip is logged and counted; nothing is dropped
      silently. A failure of the scan itself cannot be skipped past and
      always aborts the table.
    * A null in a key column is an undecodable row: the target rejects
      null key values.
    * Row offsets are 0-based positions in scan order.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterator

from logger import get_logger
from migrator.errors import RowReadError, StoreError
from migrator.sources import SourceStore
from migrator.synthesizer import TablePlan
from models.policy import RowErrorPolicy
from models.schema import Row

log = get_logger(__name__)

_INT32 = (-(2 ** 31), 2 ** 31 - 1)
_INT64 = (-(2 ** 63), 2 ** 63 - 1)
_TRUE = frozenset({"1", "true", "t", "yes", "y"})
_FALSE = frozenset({"0", "false", "f", "no", "n"})


# ---------------------------------------------------------------------------
# Literal coercion, one function per target type
# ---------------------------------------------------------------------------

def _to_integer(value: Any, bounds: tuple[int, int] | None) -> int:
    if isinstance(value, bool):
        result = int(value)
    elif isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value!r} is not integral")
        result = int(value)
    elif isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValueError(f"{value!r} is not integral")
        result = int(value)
    elif isinstance(value, str):
        result = int(value.strip())
    else:
        raise TypeError(f"cannot read {type(value).__name__} as an integer")
    if bounds and not bounds[0] <= result <= bounds[1]:
        raise ValueError(f"{result} is out of range")
    return result


def _to_double(value: Any) -> float:
    if isinstance(value, (bytes, bytearray, memoryview)):
        raise TypeError("cannot read bytes as a number")
    return float(value)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (bytes, bytearray, memoryview, bool)):
        raise TypeError(f"cannot read {type(value).__name__} as a decimal")
    try:
        # str() keeps 19.99 as written instead of its binary expansion
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"{value!r} is not a decimal number") from exc


def _to_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8")
    text = value if isinstance(value, str) else str(value)
    # Raises on surrogates left behind by lenient decoding at the source.
    text.encode("utf-8")
    return text


def _to_timestamp(value: Any) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time())
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return dt.datetime.fromtimestamp(value, tz=dt.timezone.utc)
    if isinstance(value, str):
        return dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    raise TypeError(f"cannot read {type(value).__name__} as a timestamp")


def _to_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) > 10:
            return _to_timestamp(text).date()
        return dt.date.fromisoformat(text)
    raise TypeError(f"cannot read {type(value).__name__} as a date")


def _to_time(value: Any) -> dt.time:
    if isinstance(value, dt.time):
        return value
    if isinstance(value, dt.timedelta):
        # MySQL hands TIME columns back as timedelta
        return (dt.datetime.min + value).time()
    if isinstance(value, str):
        return dt.time.fromisoformat(value.strip())
    raise TypeError(f"cannot read {type(value).__name__} as a time")


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ValueError(f"{value!r} is not a boolean")


def _to_blob(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8", errors="surrogateescape")
    raise TypeError(f"cannot read {type(value).__name__} as bytes")


COERCERS: dict[str, Callable[[Any], Any]] = {
    "int": lambda v: _to_integer(v, _INT32),
    "bigint": lambda v: _to_integer(v, _INT64),
    "varint": lambda v: _to_integer(v, None),
    "double": _to_double,
    "decimal": _to_decimal,
    "text": _to_text,
    "timestamp": _to_timestamp,
    "date": _to_date,
    "time": _to_time,
    "boolean": _to_boolean,
    "blob": _to_blob,
}


def coerce_value(value: Any, target_type: str) -> Any:
    """
    Convert one source value to the literal bound for *target_type*.

    ``None`` is the null marker for every type. Target types without a
    coercer (custom mappings such as ``uuid``) pass the value through.
    """
    if value is None:
        return None
    coercer = COERCERS.get(target_type)
    return coercer(value) if coercer else value


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

@dataclass
class StreamStats:
    """Counters for one scan; ``rows_read`` includes skipped rows."""
    rows_read: int = 0
    rows_skipped: int = 0
    skipped_offsets: list[int] = field(default_factory=list)


class RowStreamer:
    """
    Args:
        source: Handle providing ``scan``.
        policy: Whether an undecodable row is skipped or aborts the table.
    """

    def __init__(self, source: SourceStore, policy: RowErrorPolicy = RowErrorPolicy.ABORT_TABLE) -> None:
        self._source = source
        self._policy = policy

    def _coerce_row(self, plan: TablePlan, raw: tuple, offset: int) -> Row:
        table = plan.schema.name
        if len(raw) != len(plan.target_types):
            raise RowReadError(
                f"Row has {len(raw)} value(s), schema has {len(plan.target_types)} column(s)",
                table=table,
                row_index=offset,
            )
        values = []
        for column, target_type, value in zip(plan.schema.columns, plan.target_types, raw):
            try:
                values.append(coerce_value(value, target_type))
            except (ValueError, TypeError, OverflowError, UnicodeError) as exc:
                raise RowReadError(
                    f"Column '{column.name}' value cannot be read as {target_type}: {exc}",
                    table=table,
                    row_index=offset,
                    column=column.name,
                ) from exc
        for index in plan.key_indices:
            if values[index] is None:
                column = plan.schema.columns[index].name
                raise RowReadError(
                    f"Key column '{column}' is null",
                    table=table,
                    row_index=offset,
                    column=column,
                )
        return tuple(values)

    def stream(self, plan: TablePlan, stats: StreamStats | None = None) -> Iterator[Row]:
        """
        Yield the table's rows in scan order, coerced to target literals.

        Raises:
            RowReadError: On a row that cannot be decoded (``ABORT_TABLE``),
                          or when the scan itself fails.
        """
        stats = stats if stats is not None else StreamStats()
        table = plan.schema.name
        try:
            scan = iter(self._source.scan(table, plan.schema.column_names))
        except StoreError as exc:
            raise RowReadError(f"Cannot open scan of '{table}': {exc}", table=table) from exc
        try:
            while True:
                try:
                    raw = next(scan)
                except StopIteration:
                    break
                except StoreError as exc:
                    raise RowReadError(
                        f"Scan of '{table}' failed after {stats.rows_read} row(s): {exc}",
                        table=table,
                        row_index=stats.rows_read,
                    ) from exc

                offset = stats.rows_read
                stats.rows_read += 1
                try:
                    row = self._coerce_row(plan, raw, offset)
                except RowReadError as exc:
                    if self._policy != RowErrorPolicy.SKIP_ROW:
                        raise
                    stats.rows_skipped += 1
                    stats.skipped_offsets.append(offset)
                    log.warning("Skipping row %d of '%s': %s", offset, table, exc)
                    continue
                yield row
        finally:
            close = getattr(scan, "close", None)
            if close is not None:
                close()
