import logging
from typing import Any

from .base import BaseStep
from ..engine.tools import check_tool_input
from ..workflow.context import ExecutionContext
from ..workflow.references import render_template

logger = logging.getLogger(__name__)


class ToolStep(BaseStep):
    """ Step that calls a tool through the tool execution engine. """

    async def execute(self, ctx: ExecutionContext) -> Any:
        node = self.node
        if node.input is None:
            args = ctx.input
        else:
            args = render_template(node.input, ctx.scope())

        schema = node.input_schema
        if schema is None:
            spec = await self.services.tool_engine.get_tool(node.tool_identifier)
            schema = spec.input_schema if spec is not None else None
        check_tool_input(node.tool_identifier, args, schema)

        logger.info("Tool node %s calling %s", node.identifier, node.tool_identifier)
        return await self.services.tool_engine.call(
            node.tool_identifier, args, timeout=self.services.node_timeout
        )
