""" Load, dump and structurally check workflows. """

from typing import Any, Dict, Set

import yaml

from .errors import WorkflowDefinitionError
from .models import CronJobTrigger, SkipNode, Workflow
from .schema import validate_workflow


def load_workflow(text: str) -> Workflow:
    """
    Load a Workflow from a YAML (or JSON) string.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise WorkflowDefinitionError(f"Could not parse workflow document: {e}")

    workflow = validate_workflow(data)
    check_structure(workflow)
    return workflow


def dump_workflow(workflow: Workflow) -> Dict[str, Any]:
    """ camelCase, JSON-compatible dict; `load_workflow(json.dumps(...))` reads it back. """
    return workflow.model_dump(mode="json", by_alias=True)


def check_structure(workflow: Workflow) -> None:
    """
    Identifiers must be unique, the trigger only appears at the root and a
    skip node has no child.
    """
    seen: Set[str] = set()
    for position, node in enumerate(workflow.iter_nodes()):
        if node.identifier in seen:
            raise WorkflowDefinitionError(
                f"Duplicate node identifier: {node.identifier}", node.identifier
            )
        seen.add(node.identifier)

        if position > 0 and isinstance(node, CronJobTrigger):
            raise WorkflowDefinitionError(
                f"Trigger node '{node.identifier}' can only be the root of a workflow",
                node.identifier,
            )
        if isinstance(node, SkipNode) and node.child is not None:
            raise WorkflowDefinitionError(
                f"Skip node '{node.identifier}' cannot have a child", node.identifier
            )
