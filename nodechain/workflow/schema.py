from typing import Any, Dict

from pydantic import ValidationError

from .errors import WorkflowDefinitionError
from .models import NODE_ADAPTER, NodeBase, Workflow


def _describe(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def validate_workflow(raw: Dict[str, Any]) -> Workflow:
    """Validate a raw dict (parsed JSON / YAML) against the Workflow model."""
    if not isinstance(raw, dict):
        raise WorkflowDefinitionError(f"Workflow must be an object, got {type(raw).__name__}")
    try:
        return Workflow.model_validate(raw)
    except ValidationError as e:
        raise WorkflowDefinitionError(f"Invalid workflow definition: {_describe(e)}")


def validate_node(raw: Dict[str, Any]) -> NodeBase:
    try:
        return NODE_ADAPTER.validate_python(raw)
    except ValidationError as e:
        identifier = raw.get("identifier") if isinstance(raw, dict) else None
        raise WorkflowDefinitionError(f"Invalid node definition: {_describe(e)}", identifier)


def workflow_json_schema() -> Dict[str, Any]:
    return Workflow.model_json_schema(by_alias=True)
