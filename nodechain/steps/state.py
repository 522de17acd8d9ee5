import logging
from typing import Any

from .base import BaseStep
from ..workflow.context import ExecutionContext
from ..workflow.references import render_template

logger = logging.getLogger(__name__)


class UpsertStateStep(BaseStep):
    """ Stores the rendered value under `key` and passes it downstream. """

    async def execute(self, ctx: ExecutionContext) -> Any:
        value = render_template(self.node.value, ctx.scope())
        await self.services.state_client.set(self.node.key, value)
        ctx.state[self.node.key] = value
        logger.debug("Upsert state node %s set key %s", self.identifier, self.node.key)
        return value


class SkipStep(BaseStep):
    """ Terminates the run, returning whatever input it receives. """

    terminal = True

    async def execute(self, ctx: ExecutionContext) -> Any:
        logger.info("Skip node %s terminates the workflow", self.identifier)
        return ctx.input
