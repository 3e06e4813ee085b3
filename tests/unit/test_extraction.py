"""Unit tests for JMESPath key extraction."""

import json

import pytest
from pydantic import BaseModel

from idempotent_coordinator.exceptions import IdempotencyConfigurationError, IdempotencyDocumentError
from idempotent_coordinator.extraction import JMESPathExtractor, KeyExtractor, is_missing, to_document


@pytest.fixture
def extractor() -> JMESPathExtractor:
    return JMESPathExtractor()


class Event(BaseModel):
    order_id: str
    amount: int


class TestJMESPathExtractor:
    """Test suite for JMESPathExtractor.extract()."""

    def test_implements_protocol(self, extractor):
        assert isinstance(extractor, KeyExtractor)

    def test_simple_field(self, extractor):
        assert extractor.extract({"order_id": "ord-1"}, "order_id") == (True, "ord-1")

    def test_multiselect_list(self, extractor):
        document = {"user_id": 7, "product_id": 42, "note": "x"}
        assert extractor.extract(document, "[user_id, product_id]") == (True, [7, 42])

    def test_nested_json_decode(self, extractor):
        document = {"body": json.dumps({"order": {"id": "ord-1", "lines": [1, 2]}})}
        found, value = extractor.extract(document, "json_decode(body).order.id")
        assert found is True
        assert value == "ord-1"

    def test_json_decode_twice(self, extractor):
        inner = json.dumps({"id": 5})
        document = {"body": json.dumps({"payload": inner})}
        assert extractor.extract(document, "json_decode(json_decode(body).payload).id") == (True, 5)

    def test_quoted_identifier_for_header_names(self, extractor):
        document = {"headers": {"idempotency-key": "abc"}}
        assert extractor.extract(document, 'headers."idempotency-key"') == (True, "abc")

    def test_missing_field_is_not_found(self, extractor):
        assert extractor.extract({"a": 1}, "b") == (False, None)

    def test_null_value_is_not_found(self, extractor):
        assert extractor.extract({"a": None}, "a") == (False, None)

    def test_empty_string_is_not_found(self, extractor):
        assert extractor.extract({"a": ""}, "a") == (False, "")

    def test_zero_and_false_are_found(self, extractor):
        assert extractor.extract({"a": 0}, "a") == (True, 0)
        assert extractor.extract({"a": False}, "a") == (True, False)

    def test_pydantic_document(self, extractor):
        assert extractor.extract(Event(order_id="o", amount=3), "amount") == (True, 3)

    def test_invalid_expression_is_configuration_error(self, extractor):
        with pytest.raises(IdempotencyConfigurationError):
            extractor.extract({"a": 1}, "a[")

    def test_json_decode_of_invalid_json_is_document_error(self, extractor):
        with pytest.raises(IdempotencyDocumentError):
            extractor.extract({"body": "not json"}, "json_decode(body).id")

    def test_json_decode_of_non_string_is_document_error(self, extractor):
        with pytest.raises(IdempotencyDocumentError):
            extractor.extract({"body": 12}, "json_decode(body)")

    def test_compiled_expressions_are_cached(self, extractor):
        extractor.extract({"a": 1}, "a")
        extractor.extract({"a": 2}, "a")
        assert list(extractor._compiled) == ["a"]


def test_is_missing():
    assert is_missing(None)
    assert is_missing("")
    assert not is_missing(0)
    assert not is_missing([])


def test_to_document_leaves_plain_values():
    value = {"a": [1]}
    assert to_document(value) is value
    assert to_document(Event(order_id="x", amount=1)) == {"order_id": "x", "amount": 1}
