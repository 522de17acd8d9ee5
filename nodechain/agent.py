"""
Workflow agent that synthesizes workflows from natural language.

The agent follows this cycle:
1. Describe the tool catalog, the context fields and the workflow schema to the model
2. Ask for a JSON workflow draft
3. Parse and statically validate the draft (nothing is executed)
4. On a validation error, feed the error back and ask again
5. Return the first valid workflow, or re-raise the last error once attempts run out
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .config import get_settings
from .engine.code import CodeExecutionEngine
from .engine.tools import ToolExecutionEngine
from .llm_api import LLMClient, extract_json_block
from .prompts import build_system_prompt, build_user_prompt
from .workflow.compiler import dump_workflow
from .workflow.context import DEFAULT_CONTEXT_DESCRIPTIONS, ContextSchema, UserContext
from .workflow.errors import (
    WorkflowDefinitionError,
    WorkflowEngineError,
    WorkflowInputOutputMismatchError,
    WorkflowToolMissingError,
)
from .workflow.models import Workflow
from .workflow.schema import validate_workflow
from .workflow.validator import WorkflowValidator

logger = logging.getLogger(__name__)


@dataclass
class RepairPolicy:
    """ How many drafts to request and how long to wait between them. """
    max_attempts: int = 3
    backoff_seconds: float = 0.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass
class SynthesisResult:
    workflow: Workflow
    attempts: int
    log: List[Dict[str, Any]] = field(default_factory=list)


def parse_workflow_draft(text: str) -> Workflow:
    """ Model answer -> Workflow; anything unusable is a WorkflowDefinitionError. """
    try:
        raw = json.loads(extract_json_block(text))
    except ValueError as e:
        raise WorkflowDefinitionError(f"The answer is not valid JSON: {e}")
    return validate_workflow(raw)


def error_feedback(error: WorkflowEngineError) -> Dict[str, Any]:
    """ What the model is told about a failed draft. """
    feedback: Dict[str, Any] = {
        "kind": error.kind.value,
        "error": error.message,
        "humanReadable": error.human_readable_message,
    }
    if isinstance(error, WorkflowInputOutputMismatchError):
        feedback["errors"] = error.errors
        feedback["suggestions"] = error.suggestions
    if isinstance(error, WorkflowToolMissingError):
        feedback["missingTools"] = error.get_missing_tools()
    node = getattr(error, "node_identifier", None)
    if node:
        feedback["node"] = node
    return feedback


class WorkflowAgent:
    """
    Proposes workflows for a goal and repairs them against the validator.

    The agent never calls tools or runs converter code: drafts are only
    validated, so synthesis has no side effects.
    """

    def __init__(self, llm: LLMClient, tool_engine: ToolExecutionEngine, *,
                 code_engine: Optional[CodeExecutionEngine] = None,
                 policy: Optional[RepairPolicy] = None,
                 context_schema: ContextSchema = DEFAULT_CONTEXT_DESCRIPTIONS):
        self.llm = llm
        self.tool_engine = tool_engine
        self.policy = policy or RepairPolicy(max_attempts=get_settings().agent_max_attempts)
        self.context_schema = context_schema
        self.validator = WorkflowValidator(code_engine)
        self.execution_log: List[Dict[str, Any]] = []

    async def synthesize(self, goal: str, *,
                         user_context: Optional[Union[Mapping[str, Any], UserContext]] = None,
                         previous: Optional[Workflow] = None) -> SynthesisResult:
        """
        Main entry point: draft, validate and repair until a workflow passes.

        Raises the last validation error when every attempt fails.
        """
        if isinstance(user_context, UserContext):
            user_context = user_context.as_context()
        known_context = {k: v for k, v in (user_context or {}).items() if v is not None}

        tools = await self.tool_engine.list_tools()
        system = build_system_prompt(tools, self.context_schema)
        draft: Optional[Dict[str, Any]] = dump_workflow(previous) if previous is not None else None
        feedback: Optional[Dict[str, Any]] = None
        last_error: Optional[WorkflowEngineError] = None
        log: List[Dict[str, Any]] = []

        self._log(f"[AGENT] Synthesizing workflow for goal: {goal[:60]}")
        for attempt in range(1, self.policy.max_attempts + 1):
            prompt = build_user_prompt(goal, user_context=known_context, previous=draft, feedback=feedback)
            answer = await self.llm.generate(system, prompt)

            try:
                workflow = parse_workflow_draft(answer)
                draft = dump_workflow(workflow)
                await self.validator.validate(workflow, context_schema=self.context_schema,
                                              tool_engine=self.tool_engine)
            except WorkflowEngineError as e:
                last_error = e
                feedback = error_feedback(e)
                log.append({"attempt": attempt, "ok": False, "error": e.message, "kind": e.kind.value})
                self._log(f"[AGENT] Attempt {attempt}/{self.policy.max_attempts} rejected: {e.message}")
                if attempt < self.policy.max_attempts and self.policy.backoff_seconds > 0:
                    await asyncio.sleep(self.policy.backoff_seconds * attempt)
                continue

            log.append({"attempt": attempt, "ok": True, "title": workflow.title})
            self._log(f"[AGENT] Attempt {attempt} produced a valid workflow: {workflow.title}")
            return SynthesisResult(workflow=workflow, attempts=attempt, log=log)

        self._log(f"[AGENT] Giving up after {self.policy.max_attempts} attempts")
        raise last_error

    def _log(self, message: str):
        """ Add a message to the execution log. """
        self.execution_log.append({"timestamp": time.time(), "message": message})
        logger.info(message)
