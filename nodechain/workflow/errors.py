"""
Workflow engine error taxonomy.

Every error raised by the engine, the validator or the execution backends is a
WorkflowEngineError. Two branches split "the workflow is invalid"
(WorkflowValidationError) from "the workflow is valid but this run failed"
(WorkflowRunError). Each class carries a `kind` so callers can match on it.
"""

from enum import Enum
from typing import List, Mapping, Optional

from .context import DEFAULT_CONTEXT_DESCRIPTIONS


class ErrorKind(str, Enum):
    REFERENCE = "reference"
    TOOL_MISSING = "tool_missing"
    INPUT_OUTPUT_MISMATCH = "input_output_mismatch"
    DEFINITION = "definition"
    CONVERTER = "converter"
    TOOL_EXECUTION = "tool_execution"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class WorkflowEngineError(Exception):
    """ Base class for all workflow engine errors. """

    kind: ErrorKind = ErrorKind.INTERNAL
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def human_readable_message(self) -> str:
        return self.message


class WorkflowValidationError(WorkflowEngineError):
    """ The workflow definition itself needs repair. """


class WorkflowRunError(WorkflowEngineError):
    """ The workflow is valid but this execution failed. """


class WorkflowReferenceError(WorkflowValidationError):
    """
    A `{{ input.* }}`, `{{ context.* }}` or `{{ state.* }}` reference could not be resolved.

    `reference` is the dotted path after the namespace, e.g. `telegramId` or
    `user.profile.name`.
    """

    kind = ErrorKind.REFERENCE

    def __init__(self, field: str, reference: str, node_identifier: Optional[str] = None,
                 context_descriptions: Optional[Mapping[str, str]] = None):
        super().__init__(
            f"Reference to non existing {field}: {reference}. "
            f"Please check if the {field} is available in the workflow."
        )
        self.field = field
        self.reference = reference
        self.node_identifier = node_identifier
        self.context_descriptions = (
            DEFAULT_CONTEXT_DESCRIPTIONS if context_descriptions is None else context_descriptions
        )

    def _description_for_field(self) -> Optional[str]:
        if self.field != "context":
            return None
        key = self.reference.split(".")[0]
        return self.context_descriptions.get(key)

    @property
    def human_readable_message(self) -> str:
        description = self._description_for_field()
        if description:
            return f"The context field '{self.reference}' is missing. {description}"
        if self.field == "state":
            return (
                f"The state value '{self.reference}' has not been stored yet. Add an upsert-state node "
                f"that stores it earlier in this workflow, or run the workflow that stores it first."
            )
        return (
            f"Please check if the {self.field} field '{self.reference}' should be passed "
            f"by its parent node but not. Call AI to fix it."
        )


class WorkflowToolMissingError(WorkflowValidationError):
    kind = ErrorKind.TOOL_MISSING

    def __init__(self, missing_tools: List[str]):
        super().__init__(
            f"Tools missing: {', '.join(missing_tools)}. "
            f"Please check if the tools are available in the MCP Router."
        )
        self._missing_tools = list(missing_tools)

    def get_missing_tools(self) -> List[str]:
        return self._missing_tools


class WorkflowInputOutputMismatchError(WorkflowValidationError):
    """ A batch of independent shape diagnostics between adjacent nodes. """

    kind = ErrorKind.INPUT_OUTPUT_MISMATCH

    def __init__(self, errors: List[str], suggestions: List[str]):
        super().__init__(
            f"Input and output mismatch: {', '.join(errors)}. "
            f"Suggestions: {', '.join(suggestions)}"
        )
        self.errors = list(errors)
        self.suggestions = list(suggestions)


class WorkflowDefinitionError(WorkflowValidationError):
    """ Structurally invalid workflow: bad payload, duplicate identifiers, bad cron. """

    kind = ErrorKind.DEFINITION

    def __init__(self, message: str, node_identifier: Optional[str] = None):
        super().__init__(message)
        self.node_identifier = node_identifier


class ConverterExecutionError(WorkflowRunError):
    """ A converter failed to compile, raised, or ran out of time. """

    kind = ErrorKind.CONVERTER
    PHASES = ("compile", "runtime", "timeout")

    def __init__(self, phase: str, detail: str, node_identifier: Optional[str] = None):
        if phase not in self.PHASES:
            raise ValueError(f"Unknown converter failure phase: {phase}")
        where = f" in node '{node_identifier}'" if node_identifier else ""
        super().__init__(f"Converter {phase} error{where}: {detail}")
        self.phase = phase
        self.detail = detail
        self.node_identifier = node_identifier
        self.retryable = phase == "timeout"


class ToolExecutionError(WorkflowRunError):
    """ The tool exists but the call failed (transport, HTTP status, tool raised). """

    kind = ErrorKind.TOOL_EXECUTION
    retryable = True

    def __init__(self, tool_identifier: str, detail: str, status_code: Optional[int] = None):
        super().__init__(f"Tool '{tool_identifier}' execution failed: {detail}")
        self.tool_identifier = tool_identifier
        self.detail = detail
        self.status_code = status_code


class WorkflowCancelledError(WorkflowRunError):
    kind = ErrorKind.CANCELLED

    def __init__(self, node_identifier: Optional[str] = None):
        where = f" while running node '{node_identifier}'" if node_identifier else ""
        super().__init__(f"Workflow execution cancelled{where}")
        self.node_identifier = node_identifier


class WorkflowInternalError(WorkflowRunError):
    """ Should-not-happen engine failures, e.g. an unknown node variant. """

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str, node_identifier: Optional[str] = None):
        super().__init__(message)
        self.node_identifier = node_identifier
