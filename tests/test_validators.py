"""
Node validator: required, conditional, constraint and custom-rule checks.
"""
import logging

import pytest

from onboarding_graph.core.ontology import (
    ConditionalRule,
    FieldConstraints,
    FieldSpec,
    FieldType,
    NodeSpec,
    Operator,
    ValidationRules,
)
from onboarding_graph.core.validators import NodeValidator, check_custom_rule


@pytest.fixture
def validator():
    return NodeValidator()


class TestRequiredFields:
    def test_missing_and_blank(self, validator, merchant_graph):
        node = merchant_graph.nodes["pan_number_node_id"]
        result = validator.validate(node, {"pan_number": "   "})
        assert not result.valid
        assert sorted(e.field for e in result.errors) == ["pan_document", "pan_number"]
        assert set(result.error_codes()) == {"required-field-missing"}

    def test_existing_answers_count(self, validator, merchant_graph, merchant_answers):
        node = merchant_graph.nodes["pan_number_node_id"]
        merged = {**merchant_answers["pan_number_node_id"], "business_type": "individual"}
        assert validator.validate(node, merged).valid


class TestConditionalRules:
    def test_condition_true_requires_fields(self, validator, merchant_graph):
        node = merchant_graph.nodes["payment_channel_node_id"]
        result = validator.validate(node, {"payment_channel": "app", "android_url": "https://play.example/app"})
        assert not result.valid
        assert [e.field for e in result.errors] == ["ios_url"]
        assert result.errors[0].code == "conditional-field-missing"
        assert "required because app is the payment channel" in result.errors[0].message

    def test_condition_false_skips_rule(self, validator, merchant_graph):
        node = merchant_graph.nodes["payment_channel_node_id"]
        assert validator.validate(node, {"payment_channel": "no_code"}).valid

    def test_condition_on_missing_field_is_false(self, validator):
        node = NodeSpec(
            id="n",
            validation=ValidationRules(conditional_rules=[
                ConditionalRule(field="kind", operator=Operator.NE, value="x", required_fields=["extra"]),
            ]),
        )
        assert validator.validate(node, {}).valid

    def test_membership_condition(self, validator, merchant_graph):
        node = merchant_graph.nodes["business_document_node_id"]
        result = validator.validate(node, {"business_type": "public_limited", "cin_document": "cin.pdf"})
        assert [e.field for e in result.errors] == ["certificate_of_incorporation"]


class TestConstraints:
    def test_length_bounds(self, validator, merchant_graph):
        node = merchant_graph.nodes["mcc_policy_verification_node_id"]
        result = validator.validate(node, {"subcategory": "retail", "policy_pages": "short"})
        assert result.error_codes() == ["min-length"]

    def test_pattern_mismatch(self, validator, merchant_graph):
        node = merchant_graph.nodes["business_info_node_id"]
        answers = {
            "business_name": "Acme", "brand_name": "Acme", "business_address_line1": "12 Road",
            "business_city": "Pune", "business_state": "maharashtra", "business_pincode": "011001",
        }
        result = validator.validate(node, answers)
        assert [(e.field, e.code) for e in result.errors] == [("business_pincode", "pattern-mismatch")]

    def test_invalid_option(self, validator, merchant_graph):
        node = merchant_graph.nodes["business_type_selection"]
        result = validator.validate(node, {"business_type": "cooperative"})
        assert result.error_codes() == ["invalid-option"]

    def test_numeric_bounds_parse_leniently(self, validator):
        node = NodeSpec(id="n", fields=[
            FieldSpec(id="age", type=FieldType.NUMBER, constraints=FieldConstraints(min_value=18, max_value=99)),
        ])
        assert validator.validate(node, {"age": " 42 "}).valid
        assert validator.validate(node, {"age": "17"}).error_codes() == ["min-value"]
        assert validator.validate(node, {"age": 120}).error_codes() == ["max-value"]
        lenient = validator.validate(node, {"age": "forty"})
        assert lenient.valid
        assert [w.code for w in lenient.warnings] == ["not-numeric"]

    def test_numeric_bounds_ignored_for_text(self, validator):
        node = NodeSpec(id="n", fields=[
            FieldSpec(id="code", constraints=FieldConstraints(min_value=100)),
        ])
        assert validator.validate(node, {"code": "5"}).valid

    def test_invalid_pattern_is_logged_and_skipped(self, validator, caplog):
        node = NodeSpec(id="n", fields=[FieldSpec(id="f", constraints=FieldConstraints(pattern="([a-z"))])
        with caplog.at_level(logging.WARNING, logger="Onboarding.Validator"):
            result = validator.validate(node, {"f": "abc"})
        assert result.valid
        assert "Invalid pattern" in caplog.text

    def test_email(self, validator):
        node = NodeSpec(id="n", fields=[FieldSpec(id="mail", type=FieldType.EMAIL)])
        assert validator.validate(node, {"mail": "ops@acme.example"}).valid
        assert validator.validate(node, {"mail": "not-an-email"}).error_codes() == ["invalid-email"]


class TestCustomRules:
    @pytest.mark.parametrize("rule,value,expected", [
        ("pan_validation", "ABCDE1234F", True),
        ("pan_format", "abcde1234f", False),
        ("aadhaar_validation", "123412341234", True),
        ("aadhaar_format", "1234", False),
        ("gst_validation", "27ABCDE1234F1Z5", True),
        ("gst_format", "27ABCDE1234F1X5", False),
    ])
    def test_known_rules(self, rule, value, expected):
        assert check_custom_rule(rule, value) is expected

    def test_unknown_rule_defaults_to_valid(self):
        assert check_custom_rule("business_type_validation", "anything") is True

    def test_field_custom_rule_failure(self, validator, merchant_graph):
        node = merchant_graph.nodes["business_document_node_id"]
        result = validator.validate(node, {"business_type": "proprietorship", "gstin_number": "BAD"})
        assert result.error_codes() == ["custom-rule-failed"]

    def test_unknown_node_rule_is_skipped(self, validator, merchant_graph, merchant_answers):
        node = merchant_graph.nodes["bank_account_node_id"]
        assert validator.validate(node, merchant_answers["bank_account_node_id"]).valid
