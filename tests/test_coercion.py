"""
Tests for attribute type conversion and key layout.
"""
from datetime import datetime, timezone

import pytest

from kvrecord import coercion, keys
from kvrecord.coercion import AttributeType
from kvrecord.errors import TypeMismatch


class TestEncodeDecode:
    """Tests for the store's string representation of typed values."""

    def test_boolean_text(self):
        """Test that booleans are stored as lowercase words."""
        assert coercion.encode(AttributeType.BOOLEAN, True) == "true"
        assert coercion.encode(AttributeType.BOOLEAN, False) == "false"
        assert coercion.decode(AttributeType.BOOLEAN, "true") is True
        assert coercion.decode(AttributeType.BOOLEAN, "false") is False

    def test_numbers(self):
        """Test integer and float text in both directions."""
        assert coercion.encode(AttributeType.INTEGER, 42) == "42"
        assert coercion.decode(AttributeType.INTEGER, "-7") == -7
        assert coercion.encode(AttributeType.FLOAT, 2.5) == "2.5"
        assert coercion.decode(AttributeType.FLOAT, "0.25") == 0.25

    def test_float_accepts_integers(self):
        """Test that an int assigned to a float attribute is widened."""
        value = coercion.check(AttributeType.FLOAT, 3)
        assert isinstance(value, float)
        assert coercion.encode(AttributeType.FLOAT, 3) == "3.0"

    def test_timestamp_is_epoch_seconds(self):
        """Test that timestamps are stored as integer seconds and come back as UTC datetimes."""
        moment = datetime(2014, 3, 1, 12, 30, 15, 999, tzinfo=timezone.utc)
        text = coercion.encode(AttributeType.TIMESTAMP, moment)
        assert text == str(int(moment.replace(microsecond=0).timestamp()))

        decoded = coercion.decode(AttributeType.TIMESTAMP, text)
        assert decoded == moment.replace(microsecond=0)
        assert decoded.tzinfo is not None

    def test_naive_timestamp_treated_as_utc(self):
        """Test that a naive datetime is interpreted as UTC."""
        naive = datetime(2020, 1, 1, 0, 0, 0)
        assert coercion.check(AttributeType.TIMESTAMP, naive) == naive.replace(tzinfo=timezone.utc)

    def test_timestamp_from_epoch_int(self):
        """Test that integer epoch seconds are accepted for timestamps."""
        assert coercion.check(AttributeType.TIMESTAMP, 0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_none_is_not_encoded(self):
        """Test that None is accepted for assignment but has no stored form."""
        assert coercion.check(AttributeType.STRING, None) is None
        with pytest.raises(TypeMismatch):
            coercion.encode(AttributeType.STRING, None)


class TestTypeMismatch:
    """Tests for values that do not fit the declared type."""

    @pytest.mark.parametrize("attr_type,value", [
        (AttributeType.STRING, 5),
        (AttributeType.BOOLEAN, "true"),
        (AttributeType.BOOLEAN, 1),
        (AttributeType.INTEGER, True),
        (AttributeType.INTEGER, 1.5),
        (AttributeType.FLOAT, "1.5"),
        (AttributeType.TIMESTAMP, "2014-01-01"),
        (AttributeType.TIMESTAMP, 10 ** 20),
    ])
    def test_check_rejects(self, attr_type, value):
        """Test that check raises TypeMismatch for ill-typed values."""
        with pytest.raises(TypeMismatch):
            coercion.check(attr_type, value)

    @pytest.mark.parametrize("attr_type,text", [
        (AttributeType.BOOLEAN, "yes"),
        (AttributeType.INTEGER, "4.2"),
        (AttributeType.FLOAT, "abc"),
        (AttributeType.TIMESTAMP, "yesterday"),
    ])
    def test_decode_rejects_malformed_text(self, attr_type, text):
        """Test that decoding garbage raises TypeMismatch rather than returning junk."""
        with pytest.raises(TypeMismatch):
            coercion.decode(attr_type, text)

    def test_type_mismatch_is_value_error(self):
        """Test that callers catching ValueError also see TypeMismatch."""
        with pytest.raises(ValueError):
            coercion.check(AttributeType.INTEGER, "1")

    def test_unknown_attribute_type(self):
        """Test that unknown type names are rejected."""
        assert coercion.as_attribute_type("Boolean") is AttributeType.BOOLEAN
        with pytest.raises(TypeMismatch):
            coercion.as_attribute_type("decimal")


class TestKeys:
    """Tests for the store key layout."""

    def test_namespace_from_qualified_name(self):
        """Test that dotted and Ruby-style names become slash paths in snake case."""
        assert keys.namespace_for("flapjack.data.redis_record.ExampleChild") == \
            "flapjack/data/redis_record/example_child"
        assert keys.namespace_for("Flapjack::Data::Contact") == "flapjack/data/contact"
        assert keys.namespace_for("HTTPCheck") == "http_check"

    def test_key_patterns(self):
        """Test each kind of key."""
        ns = "flapjack/data/redis_record/example"
        assert keys.attrs_key(ns, "8") == f"{ns}:8:attrs"
        assert keys.ids_key(ns) == f"{ns}::ids"
        assert keys.index_key(ns, "active", "true") == f"{ns}::by_active:true"
        assert keys.association_key(ns, "8", "fdrr_children") == f"{ns}:8:fdrr_children_ids"
