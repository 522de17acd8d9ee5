"""
Resolution of `{{ input.* }}`, `{{ context.* }}` and `{{ state.* }}` references.

Templates are rendered with a sandboxed Jinja2 environment. A string that
consists of exactly one reference resolves to the referenced value itself so
numbers, lists and objects keep their type; any other string renders to text.
A reference to a missing key or to a null value is an error.
"""

import json
import logging
import re
from typing import Any, List, Mapping, Tuple

from jinja2 import StrictUndefined, TemplateSyntaxError, UndefinedError
from jinja2.sandbox import SandboxedEnvironment

from .errors import WorkflowDefinitionError, WorkflowReferenceError

logger = logging.getLogger(__name__)

NAMESPACES = ("input", "context", "state")

_SINGLE_REF = re.compile(r"^\s*\{\{\s*(input|context|state)((?:\.\w+)*)\s*\}\}\s*$")
_BLOCK = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_SEGMENT = r"(?:\.\w+|\[\s*(?:\d+|'[^']*'|\"[^\"]*\")\s*\])"
_REF_IN_BLOCK = re.compile(r"(?<![\w.])(input|context|state)(" + _SEGMENT + r"*)")
_SUBSCRIPT = re.compile(r"\[\s*(?:(\d+)|'([^']*)'|\"([^\"]*)\")\s*\]")

_MISSING = object()


def _dotted(path: str) -> str:
    """ `['user'].name[0]` -> `user.name.0`. """
    path = _SUBSCRIPT.sub(lambda m: "." + next(g for g in m.groups() if g is not None), path)
    return path.lstrip(".")


def _finalize(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


_env = SandboxedEnvironment(undefined=StrictUndefined, finalize=_finalize, autoescape=False)


def resolve_path(root: Any, path: str) -> Any:
    """
    Walk `path` (dotted, list indices allowed) from `root`. Raises KeyError
    when a segment is missing or its value is null.
    """
    current = root
    if current is None:
        raise KeyError(path)
    if not path:
        return current
    for segment in path.split("."):
        value = _MISSING
        if isinstance(current, Mapping):
            value = current.get(segment, _MISSING)
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index < len(current):
                value = current[index]
        if value is _MISSING or value is None:
            raise KeyError(path)
        current = value
    return current


def is_single_reference(value: Any) -> bool:
    """ True when `value` is a string holding exactly one reference and nothing else. """
    return isinstance(value, str) and _SINGLE_REF.match(value) is not None


def find_references(value: Any) -> List[Tuple[str, str]]:
    """ Every (field, dotted path) reference inside a template value, in order. """
    found: List[Tuple[str, str]] = []
    if isinstance(value, str):
        for block in _BLOCK.findall(value):
            for field, path in _REF_IN_BLOCK.findall(block):
                found.append((field, _dotted(path)))
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(find_references(item))
    elif isinstance(value, list):
        for item in value:
            found.extend(find_references(item))
    return found


def _lookup(scope: Mapping[str, Any], field: str, path: str) -> Any:
    try:
        return resolve_path(scope.get(field), path)
    except KeyError as e:
        raise WorkflowReferenceError(field, path or field) from e


def render_template(value: Any, scope: Mapping[str, Any]) -> Any:
    """ Resolve every reference inside `value` against `scope` ({input, context, state}). """
    if isinstance(value, dict):
        return {key: render_template(item, scope) for key, item in value.items()}
    if isinstance(value, list):
        return [render_template(item, scope) for item in value]
    if not isinstance(value, str) or "{{" not in value:
        return value

    single = _SINGLE_REF.match(value)
    if single:
        field, path = single.group(1), single.group(2).lstrip(".")
        return _lookup(scope, field, path)

    # Check references up front so a missing value reports its full path.
    for field, path in find_references(value):
        _lookup(scope, field, path)

    try:
        return _env.from_string(value).render(**{name: scope.get(name) for name in NAMESPACES})
    except TemplateSyntaxError as e:
        raise WorkflowDefinitionError(f"Invalid template {value!r}: {e.message}") from e
    except UndefinedError as e:
        logger.debug("Undefined value while rendering %r: %s", value, e)
        references = find_references(value)
        field, path = references[0] if references else ("input", "")
        raise WorkflowReferenceError(field, path or field) from e
