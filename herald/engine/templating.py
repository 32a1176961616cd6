"""
herald.engine.templating — Variable Schemas & Placeholder Rendering
====================================================================

Pure functions, no I/O.  The template service loads rows from the DB and
calls into this module to:

1. Parse a template's ``variables`` mapping into :class:`VariableSpec`
   objects, rejecting unknown types and non-boolean ``required`` flags.
2. Check every ``{{name}}`` placeholder in title / content / summary has a
   schema entry.
3. Validate caller-supplied values against the schema (required presence,
   type conformance, optional bounds / pattern / options).
4. Substitute values into the template text.

Substitution leaves unknown tokens untouched: ``render("Hi {{who}}", {})``
returns ``"Hi {{who}}"``.  Callers that care should look for leftovers with
:func:`extract_placeholders`.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from herald.constants import EMAIL_RE, PLACEHOLDER_RE, URL_RE, VARIABLE_TYPES
from herald.errors import ValidationError


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class VariableSpec:
    """One entry of a template's variable schema."""

    name: str
    type: str
    required: bool
    default_value: Any = None
    description: str | None = None
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    options: tuple[Any, ...] | None = None


def _bound(name: str, key: str, raw: Any) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValidationError(f"Variable {name} has a non-numeric {key} bound")
    return raw


def parse_variable_schema(raw: Mapping[str, Any] | None) -> dict[str, VariableSpec]:
    """Turn a stored ``variables`` mapping into :class:`VariableSpec` objects.

    Raises
    ------
    ValidationError
        If an entry is not a mapping, its ``type`` is not one of
        ``string, number, date, boolean, url, email``, ``required`` is not
        a bool, or a validation rule is malformed.
    """
    specs: dict[str, VariableSpec] = {}
    for name, config in (raw or {}).items():
        if not isinstance(config, Mapping):
            raise ValidationError(f"Variable {name} must be an object")
        var_type = config.get("type")
        if var_type not in VARIABLE_TYPES:
            raise ValidationError(f"Invalid variable type for {name}")
        required = config.get("required")
        if not isinstance(required, bool):
            raise ValidationError(f"Variable {name} must specify required as boolean")

        rules = config.get("validation") or {}
        if not isinstance(rules, Mapping):
            raise ValidationError(f"Variable {name} has a malformed validation block")
        pattern = rules.get("pattern")
        if pattern is not None:
            try:
                re.compile(pattern)
            except (re.error, TypeError) as exc:
                raise ValidationError(f"Variable {name} has an invalid pattern") from exc
        options = rules.get("options")
        if options is not None and not isinstance(options, (list, tuple)):
            raise ValidationError(f"Variable {name} options must be a list")

        specs[name] = VariableSpec(
            name=name,
            type=var_type,
            required=required,
            default_value=config.get("default_value"),
            description=config.get("description"),
            min=_bound(name, "min", rules.get("min")),
            max=_bound(name, "max", rules.get("max")),
            pattern=pattern,
            options=tuple(options) if options is not None else None,
        )
    return specs


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------
def extract_placeholders(text: str | None) -> list[str]:
    """Return placeholder names in *text*, first occurrence order, no repeats."""
    if not text:
        return []
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_RE.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def check_placeholders_defined(
    texts: Iterable[str | None], schema: Mapping[str, Any]
) -> None:
    """Raise :class:`ValidationError` naming every placeholder without a
    schema entry."""
    undefined: dict[str, None] = {}
    for text in texts:
        for name in extract_placeholders(text):
            if name not in schema:
                undefined.setdefault(name, None)
    if undefined:
        raise ValidationError(
            f"Undefined variables in template: {', '.join(undefined)}",
            details={"undefined": list(undefined)},
        )


# ---------------------------------------------------------------------------
# Value validation
# ---------------------------------------------------------------------------
def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _check_value(spec: VariableSpec, value: Any) -> None:
    name = spec.name
    if spec.type == "string":
        if not isinstance(value, str):
            raise ValidationError(f"Variable {name} must be a string")
        if spec.min is not None and len(value) < spec.min:
            raise ValidationError(
                f"Variable {name} must be at least {spec.min:g} characters"
            )
        if spec.max is not None and len(value) > spec.max:
            raise ValidationError(
                f"Variable {name} must be at most {spec.max:g} characters"
            )
        if spec.pattern is not None and not re.search(spec.pattern, value):
            raise ValidationError(f"Variable {name} does not match its pattern")
    elif spec.type == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Variable {name} must be a number")
        if spec.min is not None and value < spec.min:
            raise ValidationError(f"Variable {name} must be at least {spec.min:g}")
        if spec.max is not None and value > spec.max:
            raise ValidationError(f"Variable {name} must be at most {spec.max:g}")
    elif spec.type == "email":
        if not isinstance(value, str) or not EMAIL_RE.match(value):
            raise ValidationError(f"Variable {name} must be a valid email")
    elif spec.type == "url":
        if not isinstance(value, str) or not URL_RE.match(value):
            raise ValidationError(f"Variable {name} must be a valid URL")
    # date / boolean: presence only

    if spec.options is not None and value not in spec.options:
        raise ValidationError(
            f"Variable {name} must be one of: {', '.join(map(str, spec.options))}"
        )


def validate_variables(
    schema: Mapping[str, VariableSpec], values: Mapping[str, Any] | None
) -> dict[str, Any]:
    """Validate *values* against *schema* and return the resolved mapping.

    Absent values pick up the schema's ``default_value``.  ``None`` and
    ``""`` count as absent for the required check.  Keys not in the schema
    pass through untouched.
    """
    resolved: dict[str, Any] = dict(values or {})
    for name, spec in schema.items():
        value = resolved.get(name)
        if value is None and spec.default_value is not None:
            value = resolved[name] = spec.default_value

        if spec.required and _is_missing(value):
            raise ValidationError(f"Required variable {name} is missing")
        if not _is_missing(value):
            _check_value(spec, value)
    return resolved


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render(text: str, values: Mapping[str, Any]) -> str:
    """Replace each ``{{name}}`` in *text* with ``values[name]``.

    Tokens whose name is missing from *values* (or maps to ``None``) are
    left verbatim.
    """

    def _sub(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return match.group(0) if value is None else _stringify(value)

    return PLACEHOLDER_RE.sub(_sub, text)
