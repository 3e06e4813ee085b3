"""Unit tests for idempotency key derivation."""

import pytest

from idempotent_coordinator.config import IdempotencyConfig
from idempotent_coordinator.exceptions import IdempotencyDocumentError, IdempotencyKeyError
from idempotent_coordinator.hashing import generate_hash
from idempotent_coordinator.keys import (
    DEFAULT_SCOPE,
    FUNCTION_NAME_ENV,
    BuiltKey,
    KeyBuilder,
    default_scope,
    join_scope,
)


class TestScope:
    def test_join_scope_with_sub_scope(self):
        assert join_scope("orders", "create") == "orders.create"

    def test_join_scope_ignores_blank_sub_scope(self):
        assert join_scope("orders", None) == "orders"
        assert join_scope("orders", "  ") == "orders"

    def test_default_scope_from_environment(self, monkeypatch):
        monkeypatch.setenv(FUNCTION_NAME_ENV, "checkout")
        assert default_scope() == "checkout"

    def test_default_scope_fallback(self, monkeypatch):
        monkeypatch.delenv(FUNCTION_NAME_ENV, raising=False)
        assert default_scope() == DEFAULT_SCOPE


class TestKeyBuilder:
    """Test suite for KeyBuilder."""

    def test_key_format(self, order_event):
        builder = KeyBuilder("orders", IdempotencyConfig(event_key_path="[user_id, product_id]"))
        assert builder.build_key(order_event) == f"orders#{generate_hash([7, 42])}"

    def test_string_key_material_hashes_text(self):
        builder = KeyBuilder("fn", IdempotencyConfig(event_key_path="message"))
        key = builder.build_key({"message": "Lambda rocks"})
        assert key == "fn#70c24d88041893f7fbab4105b76fd9e1"

    def test_whole_document_without_key_path(self, order_event):
        builder = KeyBuilder("orders", IdempotencyConfig())
        assert builder.build_key(order_event) == f"orders#{generate_hash(order_event)}"

    def test_same_key_material_same_key(self, order_event):
        builder = KeyBuilder("orders", IdempotencyConfig(event_key_path="[user_id, product_id]"))
        other = {**order_event, "note": "different"}
        assert builder.build_key(order_event) == builder.build_key(other)

    def test_scopes_partition_keys(self, order_event):
        config = IdempotencyConfig(event_key_path="user_id")
        assert KeyBuilder("a", config).build_key(order_event) != KeyBuilder(
            "b", config
        ).build_key(order_event)

    def test_missing_key_raises_when_configured(self):
        builder = KeyBuilder(
            "orders",
            IdempotencyConfig(event_key_path="order_id", fail_on_missing_key=True),
        )
        with pytest.raises(IdempotencyKeyError):
            builder.build_key({"other": 1})

    def test_empty_string_counts_as_missing(self):
        builder = KeyBuilder(
            "orders",
            IdempotencyConfig(event_key_path="order_id", fail_on_missing_key=True),
        )
        with pytest.raises(IdempotencyKeyError):
            builder.build_key({"order_id": ""})

    def test_missing_key_falls_back_to_whole_document(self):
        builder = KeyBuilder("orders", IdempotencyConfig(event_key_path="order_id"))
        document = {"other": 1}
        assert builder.build_key(document) == f"orders#{generate_hash(document)}"
        assert builder.build_key(document) == builder.build_key({"other": 1})

    def test_undecodable_key_material_is_document_error(self):
        builder = KeyBuilder("orders", IdempotencyConfig(event_key_path="json_decode(body).id"))
        with pytest.raises(IdempotencyDocumentError):
            builder.build_key({"body": "not json"})

    def test_validation_hash_disabled(self, order_event):
        builder = KeyBuilder("orders", IdempotencyConfig(event_key_path="user_id"))
        assert builder.build_validation_hash(order_event) == ""

    def test_validation_hash_enabled(self, order_event):
        builder = KeyBuilder(
            "orders",
            IdempotencyConfig(event_key_path="user_id", payload_validation_path="quantity"),
        )
        assert builder.build(order_event) == BuiltKey(
            idempotency_key=f"orders#{generate_hash(7)}",
            validation_hash=generate_hash(3),
        )

    def test_configured_hash_function(self, order_event):
        builder = KeyBuilder(
            "orders",
            IdempotencyConfig(event_key_path="user_id", hash_function="sha256"),
        )
        assert builder.build_key(order_event) == f"orders#{generate_hash(7, 'sha256')}"

    def test_empty_scope_rejected(self):
        with pytest.raises(ValueError):
            KeyBuilder("", IdempotencyConfig())
