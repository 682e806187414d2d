"""
Unit tests for spec_loader module.
"""

import json
import logging
import yaml
import tempfile
import shutil
from pathlib import Path
import pytest
from unittest.mock import patch

from form_engine.exceptions import SpecificationLoadError, log_error_with_context
from form_engine.spec_loader import as_specification, load_specification
from form_engine.types import FormSpecification
from test_fixtures import SpecFixtures


class TestSpecLoader:
    """Test class for specification loading."""

    def setup_method(self):
        """Set up test environment before each test."""
        self.test_dir = Path(tempfile.mkdtemp())

    def teardown_method(self):
        """Clean up after each test."""
        shutil.rmtree(self.test_dir)

    def create_spec_file(self, filename: str, content) -> Path:
        """Helper to create specification files."""
        spec_path = self.test_dir / filename

        with open(spec_path, 'w') as f:
            if isinstance(content, str):
                f.write(content)
            elif filename.endswith('.json'):
                json.dump(content, f, indent=2)
            else:
                yaml.dump(content, f)

        return spec_path

    def test_load_yaml_specification(self):
        spec_path = self.create_spec_file("invoice.yaml", SpecFixtures.get_invoice_spec())

        spec = load_specification(spec_path)

        assert isinstance(spec, FormSpecification)
        assert spec.meta.title == "Invoice"
        assert "items" in spec.fields

    def test_load_json_specification(self):
        spec_path = self.create_spec_file("paged.json", SpecFixtures.get_paged_spec())

        spec = load_specification(str(spec_path))

        assert [page.id for page in spec.pages] == ["figures", "loss"]

    def test_missing_file(self):
        with pytest.raises(SpecificationLoadError) as exc_info:
            load_specification(self.test_dir / "missing.yaml")

        assert exc_info.value.context['original_error_type'] == 'FileNotFoundError'

    def test_unsupported_suffix(self):
        spec_path = self.create_spec_file("spec.txt", "fields: {}")

        with pytest.raises(SpecificationLoadError, match="Unsupported specification file format: .txt"):
            load_specification(spec_path)

    def test_invalid_yaml(self):
        spec_path = self.create_spec_file("broken.yaml", "fields: [unclosed")

        with pytest.raises(SpecificationLoadError) as exc_info:
            load_specification(spec_path)

        assert "Failed to load specification from" in str(exc_info.value)
        assert isinstance(exc_info.value.original_error, yaml.YAMLError)

    def test_invalid_json(self):
        spec_path = self.create_spec_file("broken.json", "{not json")

        with pytest.raises(SpecificationLoadError) as exc_info:
            load_specification(spec_path)

        assert isinstance(exc_info.value.original_error, json.JSONDecodeError)

    def test_top_level_not_mapping(self):
        spec_path = self.create_spec_file("list.yaml", "- a\n- b\n")

        with pytest.raises(SpecificationLoadError, match="Expected a mapping"):
            load_specification(spec_path)

    def test_invalid_structure(self):
        spec_path = self.create_spec_file("dangling.yaml", {"fields": {"a": {}}, "fieldOrder": ["a", "ghost"]})

        with pytest.raises(SpecificationLoadError) as exc_info:
            load_specification(spec_path)

        assert exc_info.value.context['original_error_type'] == 'ValidationError'
        assert exc_info.value.get_full_details()['recovery_suggestions']

    def test_failure_is_logged_with_context(self, caplog):
        caplog.set_level(logging.INFO, logger="form_engine.exceptions")
        spec_path = self.create_spec_file("spec.txt", "fields: {}")

        with pytest.raises(SpecificationLoadError):
            load_specification(spec_path)

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0] == (
            "SpecificationLoadError during specification loading: Unsupported specification file format: .txt"
        )
        assert f"  spec_path: {spec_path}" in messages
        assert "  1. Check that the specification file exists and is readable" in messages

    def test_read_error(self):
        spec_path = self.create_spec_file("spec.yaml", "fields: {}")

        with patch('builtins.open', side_effect=PermissionError("denied")):
            with pytest.raises(SpecificationLoadError, match="denied"):
                load_specification(spec_path)


class TestAsSpecification:
    """Test cases for as_specification."""

    def test_passes_models_through(self):
        spec = FormSpecification()

        assert as_specification(spec) is spec

    def test_validates_mappings(self):
        spec = as_specification(SpecFixtures.get_paged_spec())

        assert spec.computed["isLoss"].expression == "computed.balance < 0"


class TestLogErrorWithContext:
    """Test cases for log_error_with_context."""

    def test_levels(self, caplog):
        caplog.set_level(logging.INFO, logger="form_engine.exceptions")
        error = SpecificationLoadError(Path("form.yaml"), ValueError("bad"))

        log_error_with_context(error, "import")

        levels = {r.getMessage(): r.levelno for r in caplog.records}
        assert levels["SpecificationLoadError during import: Failed to load specification from form.yaml: bad"] == logging.ERROR
        assert levels["  original_error_type: ValueError"] == logging.ERROR
        assert levels["  3. Check that fieldOrder and pages only reference defined fields"] == logging.INFO
