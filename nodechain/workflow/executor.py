import asyncio
import logging
from typing import Any, Mapping, Optional, Union

from ..engine.code import CodeExecutionEngine
from ..engine.tools import ToolExecutionEngine
from ..steps.base import BaseStep, StepServices
from .compiler import check_structure
from .context import DEFAULT_CONTEXT_DESCRIPTIONS, ContextSchema, ExecutionContext, UserContext
from .errors import (
    WorkflowCancelledError,
    WorkflowEngineError,
    WorkflowInternalError,
    WorkflowReferenceError,
)
from .factory import make_step
from .models import ExecutionResult, Workflow
from .state import InMemoryStateClient, StateClient

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """
    Interpreter for linear workflows.

    Starting below the trigger, each node's output becomes the next node's
    input; the output of the last node (or of a skip node) is the result.
    The first upstream value is the caller's context. The engine keeps no
    per-run state, so one instance can serve concurrent executions.
    """

    def __init__(self, code_engine: CodeExecutionEngine, tool_engine: ToolExecutionEngine,
                 state_client: Optional[StateClient] = None, *,
                 context_schema: ContextSchema = DEFAULT_CONTEXT_DESCRIPTIONS,
                 node_timeout: Optional[float] = None):
        self.code_engine = code_engine
        self.tool_engine = tool_engine
        self.state_client = state_client if state_client is not None else InMemoryStateClient()
        self.context_schema = context_schema
        self.node_timeout = node_timeout

    async def execute(self, workflow: Workflow,
                      context: Optional[Union[Mapping[str, Any], UserContext]] = None, *,
                      cancel_event: Optional[asyncio.Event] = None) -> ExecutionResult:
        check_structure(workflow)
        if isinstance(context, UserContext):
            context = context.as_context()
        context = dict(context or {})

        node = workflow.trigger.child
        if node is None:
            logger.info("Workflow '%s' has no nodes below its trigger", workflow.title)
            return ExecutionResult(data=None)

        services = StepServices(
            code_engine=self.code_engine,
            tool_engine=self.tool_engine,
            state_client=self.state_client,
            node_timeout=self.node_timeout,
        )
        ctx = ExecutionContext(context=context, state=await self.state_client.get_all(), input=context)

        logger.info("Executing workflow '%s'", workflow.title)
        output: Any = None
        while node is not None:
            if cancel_event is not None and cancel_event.is_set():
                raise WorkflowCancelledError(node.identifier)

            step = make_step(node, services)
            output = await self._run_step(step, ctx, cancel_event)
            ctx.advance(node.identifier, node.type, output)
            logger.debug("Node %s (%s) done", node.identifier, node.type)

            if step.terminal:
                break
            node = node.child

        logger.info("Workflow '%s' finished after %d node(s)", workflow.title, len(ctx.logs))
        return ExecutionResult(data=output)

    async def _run_step(self, step: BaseStep, ctx: ExecutionContext,
                        cancel_event: Optional[asyncio.Event]) -> Any:
        task = asyncio.ensure_future(step.execute(ctx))
        try:
            if cancel_event is None:
                return await task

            waiter = asyncio.ensure_future(cancel_event.wait())
            try:
                done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                waiter.cancel()
            if task in done:
                return task.result()

            task.cancel()
            await asyncio.wait({task})
            logger.info("Workflow cancelled while running node %s", step.identifier)
            raise WorkflowCancelledError(step.identifier)
        except asyncio.CancelledError:
            task.cancel()
            raise
        except WorkflowCancelledError:
            raise
        except WorkflowEngineError as e:
            if getattr(e, "node_identifier", step.identifier) is None:
                e.node_identifier = step.identifier
            if isinstance(e, WorkflowReferenceError):
                e.context_descriptions = self.context_schema
            raise
        except Exception as e:
            raise WorkflowInternalError(
                f"Node '{step.identifier}' failed unexpectedly: {type(e).__name__}: {e}",
                step.identifier,
            ) from e
