from typing import Any

from .base import BaseStep
from ..workflow.context import ExecutionContext
from ..workflow.references import render_template


class FixedInputStep(BaseStep):
    """ Emits the node's declared output; only references inside it depend on the run. """

    async def execute(self, ctx: ExecutionContext) -> Any:
        return render_template(self.node.output, ctx.scope())
