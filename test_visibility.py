"""
Unit tests for field, page and option visibility.
"""

import logging

from form_engine.types import SelectOption
from form_engine.visibility import (
    get_options_visibility,
    get_page_visibility,
    get_visibility,
    get_visible_options,
    is_field_visible,
)
from test_fixtures import SpecFixtures, build_spec, simple_spec


class TestGetVisibility:
    """Test cases for get_visibility."""

    def setup_method(self):
        self.spec = build_spec(SpecFixtures.get_invoice_spec())
        self.data = SpecFixtures.get_invoice_data()

    def test_fields_without_condition_are_visible(self):
        visibility = get_visibility(self.data, self.spec)

        assert visibility["customer"] is True
        assert visibility["total"] is True
        assert visibility["items[0].price"] is True
        assert visibility["items[1].category"] is True

    def test_conditional_field(self):
        assert get_visibility(self.data, self.spec)["discountRate"] is False

        self.data["hasDiscount"] = True
        assert get_visibility(self.data, self.spec)["discountRate"] is True

    def test_undefined_reference_hides_field(self, caplog):
        caplog.set_level(logging.WARNING, logger="form_engine.evaluator")
        spec = simple_spec({"a": {}, "b": {"visibleWhen": "a > 5"}})

        visibility = get_visibility({}, spec)

        assert visibility["b"] is False
        assert len([r for r in caplog.records if "returned null" in r.getMessage()]) == 1

    def test_null_safe_condition_does_not_warn(self, caplog):
        caplog.set_level(logging.WARNING, logger="form_engine.evaluator")
        spec = simple_spec({"a": {}, "b": {"visibleWhen": "a = true"}})

        assert get_visibility({}, spec)["b"] is False
        assert not [r for r in caplog.records if r.getMessage().startswith("FEEL expression")]

    def test_item_fields_use_item_scope(self):
        spec = build_spec({
            "fields": {
                "people": {
                    "type": "array",
                    "itemFields": {
                        "age": {"type": "number"},
                        "guardian": {"type": "text", "visibleWhen": "item.age < 18"},
                    },
                },
            },
        })
        data = {"people": [{"age": 12}, {"age": 40}]}

        visibility = get_visibility(data, spec)

        assert visibility["people[0].guardian"] is True
        assert visibility["people[1].guardian"] is False

    def test_hidden_array_skips_items(self):
        spec = build_spec({
            "fields": {
                "show": {"type": "boolean"},
                "rows": {
                    "type": "array",
                    "visibleWhen": "show = true",
                    "itemFields": {"name": {"type": "text"}},
                },
            },
        })

        visibility = get_visibility({"show": False, "rows": [{"name": "x"}]}, spec)

        assert visibility["rows"] is False
        assert "rows[0].name" not in visibility

    def test_computed_values_are_visible_to_expressions(self):
        spec = simple_spec(
            {"amount": {}, "note": {"visibleWhen": "computed.large = true"}},
            computed={"large": "amount > 100"},
        )

        assert get_visibility({"amount": 500}, spec)["note"] is True
        assert get_visibility({"amount": 5}, spec)["note"] is False

    def test_supplied_computed_values_are_used(self):
        spec = simple_spec(
            {"amount": {}, "note": {"visibleWhen": "computed.large = true"}},
            computed={"large": "amount > 100"},
        )

        assert get_visibility({"amount": 5}, spec, computed={"large": True})["note"] is True

    def test_is_field_visible(self):
        assert is_field_visible("discountRate", self.data, self.spec) is False
        assert is_field_visible("customer", self.data, self.spec) is True
        assert is_field_visible("items[0].price", self.data, self.spec) is True
        assert is_field_visible("ghost", self.data, self.spec) is True


class TestPageVisibility:
    """Test cases for get_page_visibility."""

    def test_pages_follow_computed_chain(self):
        spec = build_spec(SpecFixtures.get_paged_spec())

        assert get_page_visibility({"income": 100, "expenses": 40}, spec) == {"figures": True, "loss": False}
        assert get_page_visibility({"income": 100, "expenses": 140}, spec) == {"figures": True, "loss": True}

    def test_no_pages(self):
        assert get_page_visibility({}, simple_spec({"a": {}})) == {}


class TestOptionsVisibility:
    """Test cases for select option visibility."""

    def setup_method(self):
        self.spec = build_spec(SpecFixtures.get_invoice_spec())
        self.data = SpecFixtures.get_invoice_data()

    def test_item_options_keyed_by_indexed_path(self):
        options = get_options_visibility(self.data, self.spec)

        assert [o.value for o in options["items[0].category"]] == ["goods", "service"]
        assert [o.value for o in options["items[1].category"]] == ["goods", "service", "fixed"]

    def test_top_level_select(self):
        spec = build_spec({
            "fields": {
                "plan": {"type": "text"},
                "addon": {
                    "type": "select",
                    "options": [
                        {"value": "basic", "label": "Basic"},
                        {"value": "priority", "label": "Priority support", "visibleWhen": "plan = \"pro\""},
                    ],
                },
            },
        })

        options = get_options_visibility({"plan": "free"}, spec)

        assert [o.value for o in options["addon"]] == ["basic"]

    def test_get_visible_options_with_item(self):
        options = self.spec.fields["items"].item_fields["category"].options

        visible = get_visible_options(options, self.data, self.spec, item={"quantity": 1}, item_index=0)

        assert [o.value for o in visible] == ["goods", "service", "fixed"]

    def test_get_visible_options_failed_expression_hides(self):
        options = [SelectOption(value="a", label="A", visible_when="x >")]

        assert get_visible_options(options, {}, simple_spec({})) == []

    def test_get_visible_options_empty(self):
        assert get_visible_options(None, {}, simple_spec({})) == []
