"""Conversion between Python values and SQL storage values.

Two independent capabilities:

``to_sql(obj) -> Value``
    single-dispatch on the Python type. Register more types with
    ``@register_to_sql(cls)`` or give the class a ``__to_sql__`` method.

``from_sql(value, target) -> object``
    looks up a converter for ``target``. Register more targets with
    ``@register_from_sql(cls)`` or give the class a ``__from_sql__``
    classmethod. ``Optional[X]`` (or ``X | None``) accepts NULL; every
    other target rejects it.
"""
import datetime
import decimal
import enum
import functools
import types as _pytypes
import typing
import uuid
from typing import Any, NamedTuple

from . import native
from .exceptions import ConversionError

I64_MIN = -(2 ** 63)
I64_MAX = 2 ** 63 - 1

_NoneType = type(None)


class SqlType(enum.IntEnum):
    INTEGER = native.SQLITE_INTEGER
    FLOAT = native.SQLITE_FLOAT
    TEXT = native.SQLITE_TEXT
    BLOB = native.SQLITE_BLOB
    NULL = native.SQLITE_NULL


class Value(NamedTuple):
    """One SQL storage value. Text is kept as UTF-8 bytes until decoded."""

    type: SqlType
    data: Any = None

    def as_python(self):
        if self.type is SqlType.TEXT:
            return _decode_text(self)
        return self.data


NULL = Value(SqlType.NULL)


def _decode_text(value, target=str):
    try:
        return value.data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ConversionError(f"invalid UTF-8 in TEXT value: {e}", source=SqlType.TEXT, target=target) from e


class IntRange:
    """A bounded integer target for ``from_sql``; out-of-range values fail
    instead of being truncated."""

    def __init__(self, name, lo, hi):
        self.name = name
        self.lo = lo
        self.hi = hi

    def __repr__(self):
        return self.name

    def __contains__(self, v):
        return self.lo <= v <= self.hi


INT8 = IntRange("INT8", -(2 ** 7), 2 ** 7 - 1)
INT16 = IntRange("INT16", -(2 ** 15), 2 ** 15 - 1)
INT32 = IntRange("INT32", -(2 ** 31), 2 ** 31 - 1)
INT64 = IntRange("INT64", I64_MIN, I64_MAX)
UINT8 = IntRange("UINT8", 0, 2 ** 8 - 1)
UINT16 = IntRange("UINT16", 0, 2 ** 16 - 1)
UINT32 = IntRange("UINT32", 0, 2 ** 32 - 1)


# ToSql


@functools.singledispatch
def to_sql(obj) -> Value:
    hook = getattr(type(obj), "__to_sql__", None)
    if hook is not None:
        result = hook(obj)
        return result if isinstance(result, Value) else to_sql(result)
    raise ConversionError(
        f"cannot convert {type(obj).__name__} to an SQL value", source=type(obj)
    )


register_to_sql = to_sql.register


@to_sql.register(Value)
def _value_to_sql(obj):
    return obj


@to_sql.register(_NoneType)
def _none_to_sql(obj):
    return NULL


@to_sql.register(bool)
def _bool_to_sql(obj):
    return Value(SqlType.INTEGER, 1 if obj else 0)


@to_sql.register(int)
def _int_to_sql(obj):
    if not I64_MIN <= obj <= I64_MAX:
        raise ConversionError(f"integer {obj} does not fit in 64 bits", source=int, target=SqlType.INTEGER)
    return Value(SqlType.INTEGER, int(obj))


@to_sql.register(float)
def _float_to_sql(obj):
    return Value(SqlType.FLOAT, float(obj))


@to_sql.register(str)
def _str_to_sql(obj):
    try:
        return Value(SqlType.TEXT, obj.encode("utf-8"))
    except UnicodeEncodeError as e:
        raise ConversionError(f"text is not valid UTF-8: {e}", source=str, target=SqlType.TEXT) from e


@to_sql.register(bytes)
@to_sql.register(bytearray)
@to_sql.register(memoryview)
def _bytes_to_sql(obj):
    return Value(SqlType.BLOB, bytes(obj))


@to_sql.register(decimal.Decimal)
def _decimal_to_sql(obj):
    if not obj.is_finite():
        raise ConversionError(f"Decimal {obj} has no SQL representation", source=decimal.Decimal)
    if obj == obj.to_integral_value() and I64_MIN <= obj <= I64_MAX:
        return Value(SqlType.INTEGER, int(obj))
    return Value(SqlType.TEXT, str(obj).encode("ascii"))


@to_sql.register(uuid.UUID)
def _uuid_to_sql(obj):
    return Value(SqlType.BLOB, obj.bytes)


@to_sql.register(datetime.datetime)
def _datetime_to_sql(obj):
    return Value(SqlType.TEXT, obj.isoformat(sep=" ").encode("ascii"))


@to_sql.register(datetime.date)
@to_sql.register(datetime.time)
def _date_to_sql(obj):
    return Value(SqlType.TEXT, obj.isoformat().encode("ascii"))


# FromSql

_from_sql_registry = {}


def register_from_sql(target):
    def decorator(func):
        _from_sql_registry[target] = func
        return func
    return decorator


def _target_name(target):
    return getattr(target, "__name__", None) or repr(target)


def _mismatch(value, target):
    return ConversionError(
        f"cannot convert SQL {value.type.name} to {_target_name(target)}",
        source=value.type,
        target=target,
    )


def _unwrap_optional(target):
    origin = typing.get_origin(target)
    union_type = getattr(_pytypes, "UnionType", None)
    if origin is typing.Union or (union_type is not None and origin is union_type):
        args = typing.get_args(target)
        if _NoneType in args:
            rest = tuple(a for a in args if a is not _NoneType)
            if len(rest) == 1:
                return rest[0], True
            return typing.Union[rest], True
    return target, False


def from_sql(value, target=None):
    if target is None:
        return value.as_python()
    if target is Value:
        return value

    target, nullable = _unwrap_optional(target)
    if value.type is SqlType.NULL:
        if nullable or target is object or target is Any:
            return None
        raise ConversionError(
            f"unexpected NULL for non-nullable {_target_name(target)}",
            source=SqlType.NULL,
            target=target,
        )
    if target is object or target is Any:
        return value.as_python()

    if isinstance(target, IntRange):
        if value.type is not SqlType.INTEGER:
            raise _mismatch(value, target)
        if value.data not in target:
            raise ConversionError(
                f"integer {value.data} out of range for {target.name}",
                source=value.type,
                target=target,
            )
        return value.data

    func = _from_sql_registry.get(target)
    if func is not None:
        return func(value)
    hook = getattr(target, "__from_sql__", None)
    if hook is not None:
        return hook(value)
    if typing.get_origin(target) is typing.Union:
        # Union of several concrete types: first one that accepts the value.
        for candidate in typing.get_args(target):
            try:
                return from_sql(value, candidate)
            except ConversionError:
                continue
        raise _mismatch(value, target)
    raise ConversionError(f"no SQL conversion registered for {_target_name(target)}", target=target)


@register_from_sql(int)
def _int_from_sql(value):
    if value.type is not SqlType.INTEGER:
        raise _mismatch(value, int)
    return value.data


@register_from_sql(bool)
def _bool_from_sql(value):
    if value.type is not SqlType.INTEGER:
        raise _mismatch(value, bool)
    return value.data != 0


@register_from_sql(float)
def _float_from_sql(value):
    if value.type is SqlType.FLOAT:
        return value.data
    if value.type is SqlType.INTEGER:
        return float(value.data)
    raise _mismatch(value, float)


@register_from_sql(str)
def _str_from_sql(value):
    if value.type is not SqlType.TEXT:
        raise _mismatch(value, str)
    return _decode_text(value)


@register_from_sql(bytes)
def _bytes_from_sql(value):
    if value.type is not SqlType.BLOB:
        raise _mismatch(value, bytes)
    return value.data


@register_from_sql(decimal.Decimal)
def _decimal_from_sql(value):
    if value.type is SqlType.INTEGER:
        return decimal.Decimal(value.data)
    if value.type is SqlType.FLOAT:
        return decimal.Decimal(repr(value.data))
    if value.type is SqlType.TEXT:
        text = _decode_text(value, decimal.Decimal)
        try:
            return decimal.Decimal(text)
        except decimal.InvalidOperation as e:
            raise ConversionError(f"invalid decimal text {text!r}", source=value.type, target=decimal.Decimal) from e
    raise _mismatch(value, decimal.Decimal)


@register_from_sql(uuid.UUID)
def _uuid_from_sql(value):
    if value.type is SqlType.BLOB:
        if len(value.data) != 16:
            raise ConversionError(
                f"UUID blob must be 16 bytes, got {len(value.data)}", source=value.type, target=uuid.UUID
            )
        return uuid.UUID(bytes=value.data)
    if value.type is SqlType.TEXT:
        text = _decode_text(value, uuid.UUID)
        try:
            return uuid.UUID(text)
        except ValueError as e:
            raise ConversionError(f"invalid UUID text {text!r}", source=value.type, target=uuid.UUID) from e
    raise _mismatch(value, uuid.UUID)


def _iso_from_sql(value, cls):
    if value.type is not SqlType.TEXT:
        raise _mismatch(value, cls)
    text = _decode_text(value, cls)
    try:
        return cls.fromisoformat(text)
    except ValueError as e:
        raise ConversionError(
            f"invalid {cls.__name__} text {text!r}", source=value.type, target=cls
        ) from e


@register_from_sql(datetime.datetime)
def _datetime_from_sql(value):
    if value.type is SqlType.INTEGER:
        return datetime.datetime.fromtimestamp(value.data, tz=datetime.timezone.utc)
    return _iso_from_sql(value, datetime.datetime)


@register_from_sql(datetime.date)
def _date_from_sql(value):
    return _iso_from_sql(value, datetime.date)


@register_from_sql(datetime.time)
def _time_from_sql(value):
    return _iso_from_sql(value, datetime.time)
