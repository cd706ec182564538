import json
import unittest

import polars as pl

from sharing_incremental import ArrayType, MapType, StructField, StructType, is_read_compatible
from sharing_incremental.schema import read_compatibility_violations

BASE = StructType(
    (
        StructField("id", "long"),
        StructField("tags", ArrayType("string")),
        StructField("address", StructType((StructField("city", "string"), StructField("zip", "integer")))),
    )
)


def _with_fields(*fields: StructField) -> StructType:
    return StructType(fields)


class TestSchemaJson(unittest.TestCase):
    def test_parse_nested_schema(self) -> None:
        schema_string = json.dumps(
            {
                "type": "struct",
                "fields": [
                    {"name": "id", "type": "long", "nullable": False, "metadata": {}},
                    {
                        "name": "attrs",
                        "type": {"type": "map", "keyType": "string", "valueType": "double", "valueContainsNull": True},
                        "nullable": True,
                        "metadata": {"comment": "free-form"},
                    },
                    {
                        "name": "scores",
                        "type": {"type": "array", "elementType": "decimal(10,2)", "containsNull": False},
                        "nullable": True,
                        "metadata": {},
                    },
                ],
            }
        )
        schema = StructType.from_json(schema_string)
        self.assertEqual(schema.names, ["id", "attrs", "scores"])
        self.assertFalse(schema.field("id").nullable)
        self.assertEqual(schema.field("attrs").data_type, MapType("string", "double"))
        self.assertEqual(schema.field("scores").data_type, ArrayType("decimal(10,2)", contains_null=False))
        self.assertEqual(StructType.from_json(schema.to_json()), schema)

    def test_to_polars(self) -> None:
        schema = StructType(
            (
                StructField("id", "long"),
                StructField("ts", "timestamp"),
                StructField("amount", "decimal(10,2)"),
                StructField("tags", ArrayType("string")),
            )
        )
        polars_schema = schema.to_polars()
        self.assertEqual(polars_schema["id"], pl.Int64)
        self.assertEqual(polars_schema["ts"], pl.Datetime("us", "UTC"))
        self.assertEqual(polars_schema["amount"], pl.Decimal(10, 2))
        self.assertEqual(polars_schema["tags"], pl.List(pl.Utf8))


class TestReadCompatibility(unittest.TestCase):
    def test_identical_and_widening_are_compatible(self) -> None:
        self.assertTrue(is_read_compatible(BASE, BASE))
        narrow = _with_fields(StructField("id", "long", nullable=False), *BASE.fields[1:])
        self.assertTrue(is_read_compatible(narrow, BASE))

    def test_appended_nullable_field_is_compatible(self) -> None:
        self.assertTrue(is_read_compatible(BASE, _with_fields(*BASE.fields, StructField("extra", "string"))))

    def test_appended_required_field_is_incompatible(self) -> None:
        violations = read_compatibility_violations(
            BASE, _with_fields(*BASE.fields, StructField("extra", "string", nullable=False))
        )
        self.assertEqual(violations, ["new field 'extra' is non-nullable"])

    def test_nullable_to_required_is_incompatible(self) -> None:
        violations = read_compatibility_violations(
            BASE, _with_fields(StructField("id", "long", nullable=False), *BASE.fields[1:])
        )
        self.assertEqual(violations, ["field 'id' changed from nullable to non-nullable"])

    def test_removed_and_retyped_fields(self) -> None:
        self.assertFalse(is_read_compatible(BASE, _with_fields(*BASE.fields[:2])))
        self.assertFalse(is_read_compatible(BASE, _with_fields(StructField("id", "string"), *BASE.fields[1:])))
        self.assertFalse(is_read_compatible(BASE, _with_fields(BASE.fields[1], BASE.fields[0], BASE.fields[2])))

    def test_nested_changes(self) -> None:
        narrowed_city = StructField(
            "address", StructType((StructField("city", "string", nullable=False), StructField("zip", "integer")))
        )
        violations = read_compatibility_violations(BASE, _with_fields(*BASE.fields[:2], narrowed_city))
        self.assertEqual(violations, ["field 'address.city' changed from nullable to non-nullable"])

        required_elements = StructField("tags", ArrayType("string", contains_null=False))
        self.assertFalse(is_read_compatible(BASE, _with_fields(BASE.fields[0], required_elements, BASE.fields[2])))

        extended = StructField(
            "address",
            StructType((StructField("city", "string"), StructField("zip", "integer"), StructField("country", "string"))),
        )
        self.assertTrue(is_read_compatible(BASE, _with_fields(*BASE.fields[:2], extended)))

    def test_field_metadata_is_ignored(self) -> None:
        commented = StructField("id", "long", metadata={"comment": "primary key"})
        self.assertTrue(is_read_compatible(BASE, _with_fields(commented, *BASE.fields[1:])))


if __name__ == "__main__":
    unittest.main()
