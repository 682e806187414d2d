"""
Specification loader.

Reads form specifications from YAML or JSON files and validates them into
FormSpecification models.
"""

import json
import yaml
from pathlib import Path
from typing import Any, Mapping, Union
import logging

from pydantic import ValidationError

from .exceptions import SpecificationLoadError, log_error_with_context
from .types import FormSpecification

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = ('.yaml', '.yml', '.json')


def as_specification(spec: Union[FormSpecification, Mapping[str, Any]]) -> FormSpecification:
    """
    Accept a FormSpecification or a plain specification mapping.

    Raises:
        pydantic.ValidationError: If the mapping is not a valid specification
    """
    if isinstance(spec, FormSpecification):
        return spec
    return FormSpecification.model_validate(spec)


def _read_specification(spec_path: Path) -> FormSpecification:
    if not spec_path.exists():
        raise SpecificationLoadError(spec_path, FileNotFoundError(f"No such file: {spec_path}"))

    suffix = spec_path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise SpecificationLoadError(
            spec_path,
            ValueError(f"Unsupported file format '{spec_path.suffix}'"),
            message=f"Unsupported specification file format: {spec_path.suffix}"
        )

    try:
        with open(spec_path, 'r', encoding='utf-8') as f:
            if suffix == '.json':
                raw = json.load(f)
            else:
                raw = yaml.safe_load(f)
    except (yaml.YAMLError, json.JSONDecodeError, IOError, OSError) as e:
        raise SpecificationLoadError(spec_path, e) from e

    if not isinstance(raw, dict):
        raise SpecificationLoadError(
            spec_path,
            TypeError(f"Expected a mapping at the top level, got {type(raw).__name__}")
        )

    try:
        return FormSpecification.model_validate(raw)
    except ValidationError as e:
        raise SpecificationLoadError(spec_path, e) from e


def load_specification(spec_path: Union[str, Path]) -> FormSpecification:
    """
    Load a form specification from a YAML or JSON file.

    Failures are logged with their context and recovery suggestions before
    being raised.

    Args:
        spec_path: Path to the specification file

    Returns:
        Validated FormSpecification

    Raises:
        SpecificationLoadError: If the file is missing, unreadable, malformed
            or not a valid specification
    """
    spec_path = Path(spec_path)

    try:
        spec = _read_specification(spec_path)
    except SpecificationLoadError as e:
        log_error_with_context(e, "specification loading")
        raise

    logger.info(f"Successfully loaded specification: {spec_path} ({len(spec.fields)} fields)")
    return spec
