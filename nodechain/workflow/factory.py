""" Factory for creating step instances based on node type. """
from typing import Dict, Type

from ..steps.base import BaseStep, StepServices
from ..steps.converter import ConverterStep
from ..steps.fixed_input import FixedInputStep
from ..steps.state import SkipStep, UpsertStateStep
from ..steps.tool import ToolStep
from .errors import WorkflowInternalError
from .models import NodeBase

_STEP_MAP: Dict[str, Type[BaseStep]] = {
    "fixed-input": FixedInputStep,
    "tool": ToolStep,
    "converter": ConverterStep,
    "upsert-state": UpsertStateStep,
    "skip": SkipStep,
}


def make_step(node: NodeBase, services: StepServices) -> BaseStep:
    cls = _STEP_MAP.get(getattr(node, "type", None))
    if cls is None:
        raise WorkflowInternalError(
            f"Unsupported node type: {getattr(node, 'type', type(node).__name__)}", node.identifier
        )
    return cls(node, services)
