from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ..engine.code import CodeExecutionEngine
from ..engine.tools import ToolExecutionEngine
from ..workflow.context import ExecutionContext
from ..workflow.models import NodeBase
from ..workflow.state import StateClient


@dataclass(frozen=True)
class StepServices:
    """ Backends shared by every step of a run. Read-only. """
    code_engine: CodeExecutionEngine
    tool_engine: ToolExecutionEngine
    state_client: StateClient
    node_timeout: Optional[float] = None


class BaseStep(ABC):
    """ Abstract base class for all steps. """

    # A step that ends the chain regardless of its node's child.
    terminal: bool = False

    def __init__(self, node: NodeBase, services: StepServices):
        self.node = node
        self.services = services

    @property
    def identifier(self) -> str:
        return self.node.identifier

    @abstractmethod
    async def execute(self, ctx: ExecutionContext) -> Any:
        """
        Produce this node's output from `ctx.input`. Must be implemented by subclasses.
        """
        pass
