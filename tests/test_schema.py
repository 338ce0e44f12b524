"""
Tests for schema declaration and the registry lifecycle.
"""
import pytest

from kvrecord.coercion import AttributeType
from kvrecord.errors import SchemaError
from kvrecord.schema import SchemaRegistry

from conftest import EXAMPLE, EXAMPLE_CHILD, EXAMPLE_NS, RULE, CONTACT, MEDIUM, build_registry


class TestDeclaration:
    """Tests for define() and the chained builder calls."""

    def test_declared_type(self, registry):
        """Test that attributes, indexes, validators and associations are recorded."""
        example = registry.get(EXAMPLE)
        assert example.namespace == EXAMPLE_NS
        assert list(example.attributes) == ["name", "email", "active"]
        assert example.attribute("active").type is AttributeType.BOOLEAN
        assert example.indexed_attributes == ["active"]
        assert [v.kind for v in example.validators["name"]] == ["presence"]
        assert example.association("fdrr_children").target == EXAMPLE_CHILD

    def test_derived_namespace(self):
        """Test that the namespace defaults to the path-qualified type name."""
        registry = SchemaRegistry()
        registry.define("flapjack.data.Check", {"name": "string"})
        assert registry.get("flapjack.data.Check").namespace == "flapjack/data/check"

    def test_collaborators(self, registry):
        """Test that cleans_up() records collaborator types in order."""
        assert registry.get(RULE).collaborators == (CONTACT, MEDIUM)
        assert [a.name for a in registry.get(CONTACT).associations_targeting(RULE)] == ["rules"]

    def test_unknown_lookups(self, registry):
        """Test that unknown types, attributes and associations raise SchemaError."""
        with pytest.raises(SchemaError):
            registry.get("Nope")
        with pytest.raises(SchemaError):
            registry.get(EXAMPLE).attribute("nope")
        with pytest.raises(SchemaError):
            registry.get(EXAMPLE).association("nope")


class TestDeclarationErrors:
    """Tests for invalid declarations."""

    def test_duplicate_type(self):
        registry = SchemaRegistry()
        registry.define("A", {"name": "string"})
        with pytest.raises(SchemaError):
            registry.define("A", {"name": "string"})

    def test_reserved_and_unknown_attributes(self):
        """Test that 'id' is reserved and unknown attribute types are rejected."""
        registry = SchemaRegistry()
        with pytest.raises(SchemaError):
            registry.define("A", {"id": "string"})
        with pytest.raises(SchemaError):
            registry.define("B", {"size": "decimal"})

    def test_index_on_undeclared_attribute(self):
        registry = SchemaRegistry()
        with pytest.raises(SchemaError):
            registry.define("A", {"name": "string"}).index_by("missing")

    def test_association_clashes(self):
        """Test that association names must be unique and distinct from attributes."""
        registry = SchemaRegistry()
        builder = registry.define("A", {"name": "string"}).has_many("items", "B")
        with pytest.raises(SchemaError):
            builder.has_many("items", "B")
        with pytest.raises(SchemaError):
            builder.has_many("name", "B")

    @pytest.mark.parametrize("member", ["state", "errors", "changes", "save", "attributes", "_tracker"])
    def test_record_member_names_are_reserved(self, member):
        """Test that names which would be shadowed by Record's own members are rejected."""
        registry = SchemaRegistry()
        with pytest.raises(SchemaError):
            registry.define("A", {member: "string"})
        builder = registry.define("B", {"name": "string"})
        with pytest.raises(SchemaError):
            builder.has_many(member, "A")
        assert builder.entity_type.associations == {}

    def test_unknown_validator_kind(self):
        registry = SchemaRegistry()
        with pytest.raises(SchemaError):
            registry.define("A", {"name": "string"}).validates("name", uniqueness=True)

    def test_self_collaborator(self):
        registry = SchemaRegistry()
        with pytest.raises(SchemaError):
            registry.define("A", {"name": "string"}).cleans_up("A")


class TestFreeze:
    """Tests for freezing the registry."""

    def test_freeze_rejects_dangling_targets(self):
        """Test that an association to an undeclared type fails at freeze time."""
        registry = SchemaRegistry()
        registry.define("A", {"name": "string"}).has_many("items", "Missing")
        with pytest.raises(SchemaError):
            registry.freeze()

    def test_freeze_rejects_unknown_collaborators(self):
        registry = SchemaRegistry()
        registry.define("A", {"name": "string"}).cleans_up("Missing")
        with pytest.raises(SchemaError):
            registry.freeze()

    def test_namespace_collision(self):
        """Test that two types sharing a namespace cannot both be registered."""
        registry = SchemaRegistry()
        registry.define("a.Thing", {"name": "string"})
        registry.define("Other", {"name": "string"}, namespace="a/thing")
        with pytest.raises(SchemaError):
            registry.freeze()

    def test_frozen_registry_is_read_only(self):
        """Test that no declaration is accepted after freeze."""
        registry = build_registry()
        builder = registry.define("Late", {"name": "string"})
        registry.freeze()
        assert registry.frozen
        with pytest.raises(SchemaError):
            registry.define("Later", {"name": "string"})
        with pytest.raises(SchemaError):
            builder.index_by("name")
