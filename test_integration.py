"""
Integration tests for the form state engine.
Tests end-to-end resolution across calculation, state resolvers and validation.
"""

import copy
import logging
import threading

import pytest
import yaml
from deepdiff import DeepDiff

from form_engine import (
    FeelEngine,
    calculate,
    get_enabled,
    get_options_visibility,
    get_page_visibility,
    get_readonly,
    get_required,
    get_submission_values,
    get_visibility,
    load_specification,
    validate,
)
from test_fixtures import SpecFixtures, build_spec, invoice_data, invoice_spec, paged_spec  # noqa: F401


class TestEndToEndWorkflow:
    """Test complete form state workflows."""

    def test_loss_page_workflow(self, paged_spec):
        """A computed chain reveals a page and makes its field required."""
        data = {"income": 100, "expenses": 150}

        computed = calculate(data, paged_spec)
        assert computed == {"balance": -50, "isLoss": True}

        assert get_page_visibility(data, paged_spec, computed) == {"figures": True, "loss": True}
        assert get_required(data, paged_spec, computed)["explanation"] is True

        result = validate(data, paged_spec, computed)
        assert not result.valid
        assert [e.field for e in result.errors] == ["explanation"]

        data["explanation"] = "One-off equipment purchase"
        assert validate(data, paged_spec).valid

    def test_profit_workflow(self, paged_spec):
        data = {"income": 200, "expenses": 150}

        assert get_page_visibility(data, paged_spec) == {"figures": True, "loss": False}
        assert get_required(data, paged_spec)["explanation"] is False
        assert validate(data, paged_spec).valid

    def test_empty_form(self, paged_spec):
        """Undefined inputs leave the computed chain null and the loss page hidden."""
        assert calculate({}, paged_spec) == {"balance": None, "isLoss": None}
        assert get_page_visibility({}, paged_spec) == {"figures": True, "loss": False}
        assert validate({}, paged_spec).valid

    def test_page_waits_for_unanswered_computed_chain(self):
        """A page gated on a conditional over a null computed value stays hidden."""
        spec = build_spec({
            "schema": {
                "type": "object",
                "properties": {"weight": {"type": "number"}, "height": {"type": "number"}, "advice": {"type": "string"}},
            },
            "fields": {"weight": {}, "height": {}, "advice": {}},
            "computed": {
                "bmi": "weight / (height * height)",
                "category": "if computed.bmi < 18.5 then \"under\" else \"over\"",
            },
            "pages": [
                {"id": "a", "title": "Measurements", "fields": ["weight", "height"]},
                {"id": "b", "title": "Advice", "fields": ["advice"], "visibleWhen": "computed.category = \"over\""},
            ],
        })

        assert calculate({}, spec)["category"] is None
        assert get_page_visibility({}, spec) == {"a": True, "b": False}
        assert get_page_visibility({"weight": 90, "height": 2}, spec) == {"a": True, "b": True}

    def test_invoice_state_maps(self, invoice_spec, invoice_data):
        computed = calculate(invoice_data, invoice_spec)

        visibility = get_visibility(invoice_data, invoice_spec, computed)
        required = get_required(invoice_data, invoice_spec, computed)
        enabled = get_enabled(invoice_data, invoice_spec, computed)
        readonly = get_readonly(invoice_data, invoice_spec, computed)

        item_paths = {path for path in required if path.startswith("items[")}
        assert item_paths == {
            f"items[{i}].{name}" for i in range(2) for name in ("description", "quantity", "price", "category")
        }
        assert set(enabled) == set(required) == set(readonly)
        assert set(visibility) <= set(required)
        assert readonly["items[1].price"] is True

        options = get_options_visibility(invoice_data, invoice_spec, computed)
        assert len(options["items[1].category"]) == 3

    def test_inputs_are_not_mutated(self, invoice_spec, invoice_data):
        data_before = copy.deepcopy(invoice_data)
        spec_before = invoice_spec.model_dump()

        calculate(invoice_data, invoice_spec)
        get_visibility(invoice_data, invoice_spec)
        get_required(invoice_data, invoice_spec)
        get_enabled(invoice_data, invoice_spec)
        get_readonly(invoice_data, invoice_spec)
        validate(invoice_data, invoice_spec)
        get_submission_values(invoice_data, invoice_spec, exclude_hidden=True)

        assert DeepDiff(data_before, invoice_data) == {}
        assert DeepDiff(spec_before, invoice_spec.model_dump()) == {}

    def test_results_are_deterministic(self, invoice_spec, invoice_data):
        first = (get_visibility(invoice_data, invoice_spec), validate(invoice_data, invoice_spec).errors)
        second = (get_visibility(invoice_data, invoice_spec), validate(invoice_data, invoice_spec).errors)

        assert DeepDiff(first, second) == {}

    def test_loaded_specification(self, tmp_path):
        """Test a specification loaded from YAML behaves like the in-memory one."""
        spec_path = tmp_path / "invoice.yaml"
        spec_path.write_text(yaml.dump(SpecFixtures.get_invoice_spec()))
        loaded = load_specification(spec_path)
        in_memory = build_spec(SpecFixtures.get_invoice_spec())
        data = SpecFixtures.get_invoice_data()

        assert get_visibility(data, loaded) == get_visibility(data, in_memory)
        assert calculate(data, loaded) == calculate(data, in_memory)


class TestSubstituteEngine:
    """Test that resolvers accept a substitute expression engine."""

    def test_custom_function_engine(self):
        engine = FeelEngine(functions={"is_even": lambda v: v % 2 == 0 if isinstance(v, int) else None})
        spec = build_spec({
            "fields": {
                "n": {"type": "integer"},
                "evenNote": {"type": "text", "visibleWhen": "is_even(n)"},
            },
        })

        assert get_visibility({"n": 4}, spec, engine=engine)["evenNote"] is True
        assert get_visibility({"n": 3}, spec, engine=engine)["evenNote"] is False

    def test_unknown_function_on_default_engine_hides(self, caplog):
        caplog.set_level(logging.WARNING, logger="form_engine.evaluator")
        spec = build_spec({"fields": {"n": {"type": "integer"}, "x": {"type": "text", "visibleWhen": "is_even(n)"}}})

        assert get_visibility({"n": 4}, spec)["x"] is False
        assert any("FEEL expression evaluation failed" in r.getMessage() for r in caplog.records)


class TestConcurrency:
    """Test concurrent use of a shared engine."""

    def test_parallel_resolution(self, invoice_spec):
        engine = FeelEngine(cache_size=4)
        results = []
        errors = []

        def worker(quantity):
            data = SpecFixtures.get_invoice_data()
            data["items"][1]["quantity"] = quantity
            try:
                options = get_options_visibility(data, invoice_spec, engine=engine)
                results.append((quantity, len(options["items[1].category"])))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(q,)) for q in (1, 2, 1, 3, 1, 5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(results) == [(1, 3), (1, 3), (1, 3), (2, 2), (3, 2), (5, 2)]


if __name__ == '__main__':
    pytest.main([__file__])
