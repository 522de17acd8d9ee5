from typing import Any

from .base import BaseStep
from ..workflow.context import ExecutionContext
from ..workflow.errors import ConverterExecutionError


class ConverterStep(BaseStep):
    """ Runs the node's `handle(input)` in the code execution sandbox. """

    async def execute(self, ctx: ExecutionContext) -> Any:
        try:
            return await self.services.code_engine.run(
                self.node.code,
                ctx.input,
                runtime=self.node.runtime,
                timeout=self.services.node_timeout,
            )
        except ConverterExecutionError as e:
            if e.node_identifier is not None:
                raise
            raise ConverterExecutionError(e.phase, e.detail, self.identifier) from e
