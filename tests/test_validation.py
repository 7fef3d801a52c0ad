"""Tests for the validation engine."""

import logging

import pytest

from skfill.config import FormConfig
from skfill.models import (
    FieldDescriptor,
    FieldType,
    FieldValidation,
    RuleType,
    ValidationRule,
)
from skfill.validation import ValidationEngine, is_empty


def _field(field_type=FieldType.TEXT, **kwargs) -> FieldDescriptor:
    defaults = {"id": "f", "name": "Field", "field_type": field_type}
    defaults.update(kwargs)
    return FieldDescriptor(**defaults)


@pytest.fixture
def engine():
    return ValidationEngine()


class TestRequired:
    """Required-but-empty messages per type."""

    def test_required_empty_text(self, engine):
        result = engine.validate_field(_field(required=True), "")
        assert result.is_valid is False
        assert result.errors == ["This field is required"]
        assert result.field_name == "Field"

    @pytest.mark.parametrize(
        "field_type,message",
        [
            (FieldType.EMAIL, "Email address is required"),
            (FieldType.PHONE, "Phone number is required"),
            (FieldType.DATE, "Date is required"),
            (FieldType.SIGNATURE, "Signature is required"),
            (FieldType.CHECKBOX, "Please select an option"),
            (FieldType.RADIO, "Please select an option"),
            (FieldType.DROPDOWN, "Please select an option"),
        ],
    )
    def test_type_specific_messages(self, engine, field_type, message):
        result = engine.validate_field(_field(field_type, required=True), None)
        assert result.errors == [message]

    def test_whitespace_is_empty(self, engine):
        assert engine.validate_field(_field(required=True), "   ").is_valid is False

    def test_unchecked_checkbox_is_empty(self, engine):
        result = engine.validate_field(_field(FieldType.CHECKBOX, required=True), False)
        assert result.errors == ["Please select an option"]

    def test_optional_empty_is_valid(self, engine):
        assert engine.validate_field(_field(FieldType.EMAIL), "").is_valid is True

    def test_read_only_required_empty_is_valid(self, engine):
        result = engine.validate_field(_field(required=True, read_only=True), None)
        assert result.is_valid is True
        assert result.errors == []

    def test_read_only_checked_when_not_excluded(self, engine):
        result = engine.validate_field(
            _field(required=True, read_only=True), None, exclude_read_only=False
        )
        assert result.is_valid is False

    def test_skip_required_check(self, engine):
        result = engine.validate_field(_field(required=True), "", validate_required=False)
        assert result.is_valid is True


class TestFormats:
    """Built-in format checks."""

    def test_invalid_email(self, engine):
        result = engine.validate_field(_field(FieldType.EMAIL), "invalid-email")
        assert result.is_valid is False
        assert any("valid email" in e for e in result.errors)

    def test_valid_email(self, engine):
        result = engine.validate_field(_field(FieldType.EMAIL), "test@example.com")
        assert result.is_valid is True
        assert result.errors == []

    @pytest.mark.parametrize("value", ["+1 (555) 123-4567", "5551234", "555.123.4567"])
    def test_valid_phones(self, engine, value):
        assert engine.validate_field(_field(FieldType.PHONE), value).is_valid is True

    @pytest.mark.parametrize("value", ["123", "call me", "555-CALL-NOW"])
    def test_invalid_phones(self, engine, value):
        result = engine.validate_field(_field(FieldType.PHONE), value)
        assert result.errors == ["Please enter a valid phone number"]

    @pytest.mark.parametrize("value", ["2024-02-29", "12/31/1999", "1/2/2020"])
    def test_valid_dates(self, engine, value):
        assert engine.validate_field(_field(FieldType.DATE), value).is_valid is True

    @pytest.mark.parametrize("value", ["2023-02-30", "13/01/2020", "yesterday"])
    def test_invalid_dates(self, engine, value):
        result = engine.validate_field(_field(FieldType.DATE), value)
        assert result.errors == ["Please enter a valid date"]

    def test_signature(self, engine, valid_signature):
        sig = _field(FieldType.SIGNATURE, required=True)
        assert engine.validate_field(sig, valid_signature).is_valid is True
        short = engine.validate_field(sig, "data:image/png;base64,AAA")
        assert short.errors == ["Please provide a valid signature"]

    def test_format_checks_disabled(self):
        engine = ValidationEngine(format_checks=False)
        assert engine.validate_field(_field(FieldType.EMAIL), "nope").is_valid is True

    def test_min_phone_digits_from_config(self):
        engine = ValidationEngine(FormConfig(min_phone_digits=10))
        assert engine.validate_field(_field(FieldType.PHONE), "5551234").is_valid is False


class TestDeclarativeRules:
    """Patterns, lengths and options attached to the field."""

    def test_pattern_with_message(self, engine):
        f = _field(validation=FieldValidation(pattern=r"^\d{5}$", message="Enter a 5-digit ZIP"))
        assert engine.validate_field(f, "1234").errors == ["Enter a 5-digit ZIP"]
        assert engine.validate_field(f, "12345").is_valid is True

    def test_pattern_default_message(self, engine):
        f = _field(validation=FieldValidation(pattern=r"^[A-Z]+$"))
        assert engine.validate_field(f, "abc").errors == ["Invalid format"]

    def test_max_length(self, engine):
        f = _field(max_length=5)
        assert engine.validate_field(f, "too long").errors == [
            "Text exceeds maximum length of 5 characters"
        ]

    def test_dropdown_option(self, engine):
        f = _field(FieldType.DROPDOWN, options=["CA", "NY"])
        assert engine.validate_field(f, "CA").is_valid is True
        assert engine.validate_field(f, "TX").errors == ["Selected value is not a valid option"]

    def test_length_and_format_rules(self, engine):
        f = _field(
            rules=[
                ValidationRule(rule_type=RuleType.LENGTH, limit=3, message="Too long"),
                ValidationRule(rule_type=RuleType.FORMAT, pattern=r"^\d+$", message="Digits only"),
            ]
        )
        assert engine.validate_field(f, "abcd").errors == ["Too long", "Digits only"]

    def test_required_rule_overrides_message(self, engine):
        f = _field(rules=[ValidationRule(rule_type=RuleType.REQUIRED, message="Tell us your name")])
        assert engine.validate_field(f, "").errors == ["Tell us your name"]


class TestCustomRules:
    """Caller-supplied validators."""

    def test_custom_rule_failure(self, engine):
        rule = ValidationRule(validator=lambda v, f, all_fields: v != "bad", message="No bad values")
        f = _field(rules=[rule])
        assert engine.validate_field(f, "bad").errors == ["No bad values"]
        assert engine.validate_field(f, "good").is_valid is True

    def test_raising_validator_becomes_failure(self, engine, caplog):
        def boom(value, field, all_fields):
            raise RuntimeError("kaboom")

        f = _field(rules=[ValidationRule(validator=boom, message="Could not check")])
        with caplog.at_level(logging.WARNING, logger="skfill.validation"):
            result = engine.validate_field(f, "x")
        assert result.errors == ["Could not check"]
        assert "kaboom" in caplog.text

    def test_cross_field_rule_sees_all_fields(self, engine):
        def matches_email(value, field, all_fields):
            other = next(f for f in all_fields if f.id == "email")
            return value == other.value

        confirm = FieldDescriptor(
            id="confirm",
            name="Confirm email",
            field_type=FieldType.EMAIL,
            rules=[ValidationRule(validator=matches_email, message="Emails do not match")],
        )
        email = FieldDescriptor(id="email", name="Email", field_type=FieldType.EMAIL)
        result = engine.validate_form(
            [email, confirm], {"email": "a@example.com", "confirm": "b@example.com"}
        )
        assert result.is_valid is False
        assert [(e.field_id, e.message) for e in result.errors] == [
            ("confirm", "Emails do not match")
        ]

    def test_when_empty_rule_runs_on_empty_value(self, engine):
        def needed_if_other(value, field, all_fields):
            other = next(f for f in all_fields if f.id == "has_pet")
            return not other.value or bool(value)

        pet_name = FieldDescriptor(
            id="pet_name",
            name="Pet name",
            rules=[ValidationRule(validator=needed_if_other, message="Name your pet", when_empty=True)],
        )
        has_pet = FieldDescriptor(id="has_pet", name="Has pet", field_type=FieldType.CHECKBOX)
        result = engine.validate_form([has_pet, pet_name], {"has_pet": True})
        assert result.errors[0].message == "Name your pet"


class TestMalformedFields:
    """Bad field objects never raise."""

    def test_bare_dict_missing_id(self, engine):
        result = engine.validate_field({"name": "Broken"}, "x")
        assert result.is_valid is False
        assert result.errors == ["Invalid field configuration"]
        assert result.field_name == "Broken"

    def test_none_field(self, engine):
        result = engine.validate_field(None, "x")
        assert result.errors == ["Invalid field configuration"]
        assert result.field_name == ""

    def test_dict_field_is_parsed(self, engine):
        result = engine.validate_field({"id": "e", "name": "E", "type": "email"}, "nope")
        assert result.errors == ["Please enter a valid email address"]

    def test_bad_pattern(self, engine):
        f = _field(validation=FieldValidation(pattern="("))
        assert engine.validate_field(f, "x").errors == ["Invalid field configuration"]


class TestValidateForm:
    """Whole-form validation."""

    def test_missing_required(self, engine):
        fields = [
            _field(id="a", required=True),
            _field(id="b"),
            _field(id="c", required=True, read_only=True),
        ]
        result = engine.validate_form(fields, {})
        assert result.is_valid is False
        assert result.missing_required == ["a"]
        assert len(result.field_results) == 3

    def test_radio_group_reported_once(self, engine):
        fields = [
            _field(FieldType.RADIO, id="g__m", required=True, group_name="gender", button_value="m"),
            _field(FieldType.RADIO, id="g__f", required=True, group_name="gender", button_value="f"),
            _field(FieldType.RADIO, id="p__y", required=True, group_name="pets", button_value="y"),
        ]
        result = engine.validate_form(fields, {})
        assert [(e.field_id, e.message) for e in result.errors] == [
            ("g__m", "Please select an option"),
            ("p__y", "Please select an option"),
        ]
        assert result.missing_required == ["g__m", "p__y"]
        assert len(result.field_results) == 3

    def test_answered_radio_group_is_complete(self, engine):
        fields = [
            _field(FieldType.RADIO, id="g__m", required=True, group_name="gender", button_value="m"),
            _field(FieldType.RADIO, id="g__f", required=True, group_name="gender", button_value="f"),
        ]
        result = engine.validate_form(fields, {"g__m": "f", "g__f": "f"})
        assert result.is_valid is True
        assert result.missing_required == []

    def test_valid_form(self, engine):
        fields = [_field(id="a", required=True), _field(FieldType.EMAIL, id="e")]
        result = engine.validate_form(fields, {"a": "x", "e": "x@example.org"})
        assert result.is_valid is True
        assert result.errors == []


class TestCache:
    """Memoized built-in results."""

    def test_hit_on_same_value(self, engine):
        f = _field(FieldType.EMAIL)
        engine.validate_field(f, "a@example.com")
        engine.validate_field(f, "a@example.com")
        stats = engine.cache_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    def test_rule_change_invalidates(self, engine):
        f = _field(required=False)
        assert engine.validate_field(f, "").is_valid is True
        changed = f.model_copy(update={"required": True})
        assert engine.validate_field(changed, "").is_valid is False

    def test_bounded(self):
        engine = ValidationEngine(FormConfig(validation_cache_size=2))
        for i in range(5):
            engine.validate_field(_field(id=f"f{i}"), "x")
        assert engine.cache_stats()["size"] == 2

    def test_clear(self, engine):
        engine.validate_field(_field(), "x")
        engine.clear_cache()
        assert engine.cache_stats()["size"] == 0


class TestIsEmpty:
    """Emptiness by type."""

    def test_values(self):
        assert is_empty(None)
        assert is_empty("  ")
        assert is_empty([])
        assert not is_empty(0)
        assert not is_empty(False)
        assert is_empty(False, FieldType.CHECKBOX)
        assert is_empty("off", FieldType.CHECKBOX)
