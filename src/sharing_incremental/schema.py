from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Union

import polars as pl

from .errors import RemoteTableError


@dataclass(frozen=True)
class ArrayType:
    element_type: "DataType"
    contains_null: bool = True


@dataclass(frozen=True)
class MapType:
    key_type: "DataType"
    value_type: "DataType"
    value_contains_null: bool = True


@dataclass(frozen=True)
class StructField:
    name: str
    data_type: "DataType"
    nullable: bool = True
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class StructType:
    fields: tuple[StructField, ...] = ()

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.fields]

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self):
        return iter(self.fields)

    def field(self, name: str) -> StructField | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_polars(self) -> pl.Schema:
        return pl.Schema([(f.name, _to_polars_dtype(f.data_type)) for f in self.fields])

    def to_json(self) -> str:
        return json.dumps(_type_to_json(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, value: str | dict[str, Any]) -> "StructType":
        payload = json.loads(value) if isinstance(value, str) else value
        parsed = _type_from_json(payload)
        if not isinstance(parsed, StructType):
            raise RemoteTableError(f"Table schema must be a struct, got {payload!r}")
        return parsed


# Primitive types are kept as their Delta names ("integer", "decimal(10,2)", ...).
DataType = Union[str, ArrayType, MapType, StructType]

Schema = StructType

_PRIMITIVES = {
    "string": pl.Utf8,
    "long": pl.Int64,
    "integer": pl.Int32,
    "short": pl.Int16,
    "byte": pl.Int8,
    "float": pl.Float32,
    "double": pl.Float64,
    "boolean": pl.Boolean,
    "binary": pl.Binary,
    "date": pl.Date,
}

_DECIMAL = re.compile(r"^decimal\(\s*(\d+)\s*,\s*(\d+)\s*\)$")


def _type_from_json(payload: Any) -> DataType:
    if isinstance(payload, str):
        return payload
    if not isinstance(payload, dict):
        raise RemoteTableError(f"Unsupported schema type: {payload!r}")
    kind = payload.get("type")
    if kind == "struct":
        fields = []
        for entry in payload.get("fields", []):
            fields.append(
                StructField(
                    name=str(entry["name"]),
                    data_type=_type_from_json(entry["type"]),
                    nullable=bool(entry.get("nullable", True)),
                    metadata=dict(entry.get("metadata") or {}),
                )
            )
        return StructType(tuple(fields))
    if kind == "array":
        return ArrayType(
            element_type=_type_from_json(payload["elementType"]),
            contains_null=bool(payload.get("containsNull", True)),
        )
    if kind == "map":
        return MapType(
            key_type=_type_from_json(payload["keyType"]),
            value_type=_type_from_json(payload["valueType"]),
            value_contains_null=bool(payload.get("valueContainsNull", True)),
        )
    raise RemoteTableError(f"Unsupported schema type: {payload!r}")


def _type_to_json(data_type: DataType) -> Any:
    if isinstance(data_type, str):
        return data_type
    if isinstance(data_type, StructType):
        return {
            "type": "struct",
            "fields": [
                {
                    "name": f.name,
                    "type": _type_to_json(f.data_type),
                    "nullable": f.nullable,
                    "metadata": f.metadata,
                }
                for f in data_type.fields
            ],
        }
    if isinstance(data_type, ArrayType):
        return {
            "type": "array",
            "elementType": _type_to_json(data_type.element_type),
            "containsNull": data_type.contains_null,
        }
    return {
        "type": "map",
        "keyType": _type_to_json(data_type.key_type),
        "valueType": _type_to_json(data_type.value_type),
        "valueContainsNull": data_type.value_contains_null,
    }


def _to_polars_dtype(data_type: DataType) -> pl.DataType:
    if isinstance(data_type, StructType):
        return pl.Struct([pl.Field(f.name, _to_polars_dtype(f.data_type)) for f in data_type.fields])
    if isinstance(data_type, ArrayType):
        return pl.List(_to_polars_dtype(data_type.element_type))
    if isinstance(data_type, MapType):
        return pl.List(
            pl.Struct(
                [
                    pl.Field("key", _to_polars_dtype(data_type.key_type)),
                    pl.Field("value", _to_polars_dtype(data_type.value_type)),
                ]
            )
        )
    name = data_type.strip().lower()
    if name in _PRIMITIVES:
        return _PRIMITIVES[name]
    if name == "timestamp":
        return pl.Datetime("us", "UTC")
    if name == "timestamp_ntz":
        return pl.Datetime("us")
    match = _DECIMAL.match(name)
    if match:
        return pl.Decimal(int(match.group(1)), int(match.group(2)))
    raise RemoteTableError(f"Unsupported dtype for schema: {data_type}")


def _describe(data_type: DataType) -> str:
    if isinstance(data_type, str):
        return data_type
    if isinstance(data_type, StructType):
        return "struct<" + ",".join(f"{f.name}:{_describe(f.data_type)}" for f in data_type.fields) + ">"
    if isinstance(data_type, ArrayType):
        return f"array<{_describe(data_type.element_type)}>"
    return f"map<{_describe(data_type.key_type)},{_describe(data_type.value_type)}>"


def read_compatibility_violations(reference: StructType, candidate: StructType) -> list[str]:
    """Return why data written with ``candidate`` cannot be read as ``reference``.

    An empty list means the candidate schema is read-compatible: every reference
    field is still there at the same position with the same name and type, no
    field became non-nullable, and new fields are appended and nullable.
    """
    violations: list[str] = []
    _check_struct(reference, candidate, "", violations)
    return violations


def _check_struct(reference: StructType, candidate: StructType, prefix: str, out: list[str]) -> None:
    for position, ref_field in enumerate(reference.fields):
        path = f"{prefix}{ref_field.name}"
        if position >= len(candidate.fields):
            out.append(f"field '{path}' was removed")
            continue
        new_field = candidate.fields[position]
        if new_field.name != ref_field.name:
            if candidate.field(ref_field.name) is None:
                out.append(f"field '{path}' was removed")
            else:
                out.append(f"field '{path}' moved from position {position}")
            continue
        if ref_field.nullable and not new_field.nullable:
            out.append(f"field '{path}' changed from nullable to non-nullable")
        _check_type(ref_field.data_type, new_field.data_type, path, out)
    for new_field in candidate.fields[len(reference.fields) :]:
        if reference.field(new_field.name) is not None:
            continue
        if not new_field.nullable:
            out.append(f"new field '{prefix}{new_field.name}' is non-nullable")


def _check_type(reference: DataType, candidate: DataType, path: str, out: list[str]) -> None:
    if isinstance(reference, StructType) and isinstance(candidate, StructType):
        _check_struct(reference, candidate, f"{path}.", out)
        return
    if isinstance(reference, ArrayType) and isinstance(candidate, ArrayType):
        if reference.contains_null and not candidate.contains_null:
            out.append(f"elements of '{path}' changed from nullable to non-nullable")
        _check_type(reference.element_type, candidate.element_type, f"{path}.element", out)
        return
    if isinstance(reference, MapType) and isinstance(candidate, MapType):
        if reference.value_contains_null and not candidate.value_contains_null:
            out.append(f"values of '{path}' changed from nullable to non-nullable")
        _check_type(reference.key_type, candidate.key_type, f"{path}.key", out)
        _check_type(reference.value_type, candidate.value_type, f"{path}.value", out)
        return
    if isinstance(reference, str) and isinstance(candidate, str):
        if reference.strip().lower() == candidate.strip().lower():
            return
    out.append(f"field '{path}' changed type from {_describe(reference)} to {_describe(candidate)}")


def is_read_compatible(reference: StructType, candidate: StructType) -> bool:
    return not read_compatibility_violations(reference, candidate)
