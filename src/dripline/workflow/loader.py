"""YAML Workflow Loader and Validator."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from dripline.errors import ValidationError

from .filters import FilterTree
from .models import (
    MAX_WAIT,
    STEP_TYPES,
    WEBHOOK_METHODS,
    WaitUnit,
    WorkflowDefinition,
    load_timezone,
    parse_time_of_day,
)

logger = logging.getLogger(__name__)


def _get_workflows_dir() -> Path:
    """Get the workflows directory from settings."""
    from dripline.config import get_settings

    return get_settings().workflows_dir


def _normalize_time(value: Any) -> Any:
    # YAML 1.1 reads unquoted 17:00 as the base-60 integer 1020
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value < 24 * 60:
        return f"{value // 60:02d}:{value % 60:02d}"
    return value


def definition_from_dict(
    data: dict,
    organization_id: str | None = None,
    workflow_id: str | None = None,
) -> WorkflowDefinition:
    """Validate raw workflow data and build a definition.

    Args:
        data: Parsed workflow mapping
        organization_id: Used when the data does not name an organization
        workflow_id: Used when the data does not carry an id

    Raises:
        ValidationError: If the data fails validation
    """
    data = dict(data)
    for key in ("drip_window_start", "drip_window_end"):
        if key in data:
            data[key] = _normalize_time(data[key])

    errors = validate_workflow(data)
    if errors:
        raise ValidationError(
            f"Workflow validation failed: {'; '.join(errors)}", {"errors": errors}
        )

    data.setdefault("id", workflow_id)
    data.setdefault("organization_id", organization_id)
    if not data.get("id"):
        raise ValidationError("Workflow id is required")
    if not data.get("organization_id"):
        raise ValidationError("Workflow organization_id is required")
    return WorkflowDefinition.from_dict(data)


def load_workflow(
    path: str | Path,
    organization_id: str | None = None,
) -> WorkflowDefinition:
    """Load workflow from YAML file.

    Relative paths that do not exist are looked up under the configured
    ``workflows_dir``. The workflow id defaults to the file stem.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValidationError: If YAML is invalid or schema validation fails
    """
    path = Path(path)
    if not path.exists() and not path.is_absolute():
        candidate = _get_workflows_dir() / path
        if candidate.exists():
            path = candidate
    if not path.exists():
        raise FileNotFoundError(f"Workflow file not found: {path}")

    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise ValidationError(f"Workflow file must contain a YAML mapping: {path}")

    definition = definition_from_dict(data, organization_id=organization_id, workflow_id=path.stem)
    logger.debug("Loaded workflow %s from %s", definition.id, path)
    return definition


def _validate_workflow_steps(data: dict) -> list[str]:
    """Validate workflow steps field."""
    if "steps" not in data:
        return ["Missing required field: steps"]
    if not isinstance(data["steps"], list):
        return ["Field 'steps' must be a list"]
    if len(data["steps"]) == 0:
        return ["Workflow must have at least one step"]

    errors = []
    count = len(data["steps"])
    for i, step in enumerate(data["steps"]):
        errors.extend(validate_step(step, i, count))
    return errors


def _validate_workflow_optional_fields(data: dict) -> list[str]:
    """Validate pacing fields (daily limit, drip window, timezone)."""
    errors = []

    if data.get("daily_contact_limit") is not None:
        limit = data["daily_contact_limit"]
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
            errors.append("daily_contact_limit must be a positive integer")

    start = data.get("drip_window_start")
    end = data.get("drip_window_end")
    if (start is None) != (end is None):
        errors.append("drip_window_start and drip_window_end must be set together")
    for key in ("drip_window_start", "drip_window_end"):
        value = data.get(key)
        if value is None:
            continue
        try:
            parse_time_of_day(_normalize_time(value))
        except ValidationError:
            errors.append(f"{key} must be a time of day in HH:MM format")

    if data.get("timezone") is not None:
        try:
            load_timezone(str(data["timezone"]))
        except ValidationError as e:
            errors.append(e.message)

    if "active" in data and not isinstance(data["active"], bool):
        errors.append("Field 'active' must be a boolean")

    return errors


def validate_workflow(data: dict) -> list[str]:
    """Validate workflow data against schema.

    Args:
        data: Workflow dictionary

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if "name" not in data:
        errors.append("Missing required field: name")
    elif not isinstance(data["name"], str) or not data["name"].strip():
        errors.append("Field 'name' must be a non-empty string")

    errors.extend(_validate_workflow_steps(data))
    errors.extend(_validate_workflow_optional_fields(data))

    return errors


def _validate_step_condition(step: dict, prefix: str) -> list[str]:
    """Validate step condition if present."""
    if not step.get("condition"):
        return []
    try:
        FilterTree.from_dict(step["condition"])
    except ValidationError as e:
        return [f"{prefix}: {e.message}"]
    return []


def _validate_branch(step: dict, prefix: str, step_count: int) -> list[str]:
    paths = step.get("paths")
    if not isinstance(paths, list) or not paths:
        return [f"{prefix}: branch requires a non-empty 'paths' list"]

    errors = []
    total = 0.0
    for j, path in enumerate(paths):
        if not isinstance(path, dict):
            errors.append(f"{prefix}: path {j + 1} must be an object")
            continue
        weight = path.get("weight_percent")
        if not isinstance(weight, int | float) or isinstance(weight, bool) or weight < 0:
            errors.append(f"{prefix}: path {j + 1} weight_percent must be a non-negative number")
        else:
            total += weight
        target = path.get("next_pointer")
        if not isinstance(target, int) or isinstance(target, bool):
            errors.append(f"{prefix}: path {j + 1} next_pointer must be an integer")
        elif not 0 <= target < step_count:
            errors.append(
                f"{prefix}: path {j + 1} next_pointer {target} is outside steps 0..{step_count - 1}"
            )
    if not errors and total <= 0:
        errors.append(f"{prefix}: branch weights must not all be zero")
    return errors


def _max_duration(unit: str) -> int:
    return int(MAX_WAIT / timedelta(**{unit: 1}))


def validate_step(step: dict, index: int, step_count: int) -> list[str]:
    """Validate a single workflow step."""
    prefix = f"Step {index}"

    if not isinstance(step, dict):
        return [f"{prefix}: must be an object"]

    kind = step.get("kind")
    if kind is None:
        return [f"{prefix}: missing required field 'kind'"]
    if kind not in STEP_TYPES:
        return [f"{prefix}: invalid kind '{kind}'"]
    prefix = f"Step {index} ({kind})"

    errors = _validate_step_condition(step, prefix)

    if kind == "wait":
        duration = step.get("duration")
        if not isinstance(duration, int) or isinstance(duration, bool) or duration < 1:
            errors.append(f"{prefix}: duration must be a positive integer")
        unit = step.get("unit", "days")
        if unit not in {u.value for u in WaitUnit}:
            errors.append(f"{prefix}: unit must be one of minutes, hours, days")
        elif isinstance(duration, int) and duration > _max_duration(unit):
            errors.append(
                f"{prefix}: duration must be at most {_max_duration(unit)} {unit} "
                f"({MAX_WAIT.days} days)"
            )
    elif kind == "send_message":
        if not step.get("template_id"):
            errors.append(f"{prefix}: missing required field 'template_id'")
    elif kind in ("update_field", "clear_field"):
        path = step.get("path")
        if not isinstance(path, str) or not path.strip() or "" in path.split("."):
            errors.append(f"{prefix}: 'path' must be a dot-separated attribute path")
        if kind == "update_field" and "value" not in step:
            errors.append(f"{prefix}: missing required field 'value'")
    elif kind == "call_webhook":
        url = step.get("url")
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            errors.append(f"{prefix}: 'url' must be an http(s) URL")
        method = str(step.get("method", "POST")).upper()
        if method not in WEBHOOK_METHODS:
            errors.append(f"{prefix}: invalid method '{step.get('method')}'")
    elif kind == "branch":
        errors.extend(_validate_branch(step, prefix, step_count))

    return errors


def list_workflows(directory: str | Path = "workflows") -> list[dict]:
    """List all workflow files in a directory.

    Args:
        directory: Directory to search for .yaml files

    Returns:
        List of workflow summaries with name, path, step count and validity
    """
    directory = Path(directory)
    if not directory.exists():
        return []

    workflows = []
    for yaml_file in sorted(directory.glob("*.yaml")):
        try:
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Skipping unreadable workflow file %s: %s", yaml_file, e)
            continue
        if isinstance(data, dict):
            workflows.append(
                {
                    "path": str(yaml_file),
                    "id": data.get("id", yaml_file.stem),
                    "name": data.get("name", yaml_file.stem),
                    "description": data.get("description", ""),
                    "steps": len(data.get("steps") or []),
                    "valid": not validate_workflow(data),
                }
            )

    return sorted(workflows, key=lambda w: w["name"])
