"""
Static validation of a workflow, run before execution and by the synthesizer.

Checks happen in a fixed order and the first failing stage raises:
structure, tool availability, references, input/output shapes, converter
syntax. Nothing is executed and no tool is called.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..engine.code import CodeExecutionEngine
from ..engine.tools import ToolExecutionEngine
from ..tools.registry import ToolSpec
from .compiler import check_structure
from .context import DEFAULT_CONTEXT_DESCRIPTIONS, ContextSchema
from .errors import (
    ConverterExecutionError,
    WorkflowInputOutputMismatchError,
    WorkflowReferenceError,
    WorkflowToolMissingError,
)
from .models import ConverterNode, FixedInput, NodeBase, SkipNode, ToolNode, UpsertStateNode, Workflow
from .references import find_references, is_single_reference

logger = logging.getLogger(__name__)

# A JSON schema fragment describing what a node is known to output, or None when unknown.
Shape = Optional[Dict[str, Any]]


def infer_schema(value: Any) -> Dict[str, Any]:
    """ JSON schema of a literal template value; references are left unconstrained. """
    if isinstance(value, str):
        if "{{" in value:
            return {} if is_single_reference(value) else {"type": "string"}
        return {"type": "string"}
    if isinstance(value, bool):
        return {"type": "boolean"}
    if isinstance(value, int):
        return {"type": "integer"}
    if isinstance(value, float):
        return {"type": "number"}
    if value is None:
        return {"type": "null"}
    if isinstance(value, list):
        return {"type": "array", "items": infer_schema(value[0]) if value else {}}
    if isinstance(value, dict):
        return {
            "type": "object",
            "properties": {key: infer_schema(item) for key, item in value.items()},
            "required": list(value.keys()),
        }
    return {}


def _types(schema: Dict[str, Any]) -> Optional[set]:
    kind = schema.get("type")
    if kind is None:
        return None
    return set(kind) if isinstance(kind, list) else {kind}


def _compatible(provided: set, required: set) -> bool:
    if "number" in required:
        required = required | {"integer"}
    return bool(provided & required)


def compare_shapes(provided: Dict[str, Any], required: Dict[str, Any], path: str,
                   errors: List[str], suggestions: List[str], *, consumer: str, producer: str) -> None:
    """ Append a diagnostic for every way `provided` fails to satisfy `required`. """
    provided_types, required_types = _types(provided), _types(required)
    if provided_types and required_types and not _compatible(provided_types, required_types):
        errors.append(
            f"'{consumer}' expects {path} to be {'/'.join(sorted(required_types))} "
            f"but '{producer}' provides {'/'.join(sorted(provided_types))}"
        )
        suggestions.append(f"convert {path} to {'/'.join(sorted(required_types))} before '{consumer}'")
        return

    if "properties" not in provided:
        return
    provided_props = provided.get("properties", {})
    required_props = required.get("properties", {})
    for name in required.get("required", []):
        if name not in provided_props:
            errors.append(f"'{consumer}' requires {path}.{name} but '{producer}' does not provide it")
            suggestions.append(f"add '{name}' to the output of '{producer}' or map it with a converter")
    for name, sub in required_props.items():
        if name in provided_props and isinstance(sub, dict):
            compare_shapes(provided_props[name], sub, f"{path}.{name}", errors, suggestions,
                           consumer=consumer, producer=producer)


class WorkflowValidator:
    """ Proves tool availability, reference and shape compatibility without side effects. """

    def __init__(self, code_engine: Optional[CodeExecutionEngine] = None):
        self.code_engine = code_engine

    async def validate(self, workflow: Workflow, *, context_schema: ContextSchema = DEFAULT_CONTEXT_DESCRIPTIONS,
                       tool_engine: Optional[ToolExecutionEngine] = None) -> None:
        check_structure(workflow)
        nodes = list(workflow.iter_nodes())[1:]

        catalog: Dict[str, ToolSpec] = {}
        if tool_engine is not None:
            catalog = await self._check_tools(nodes, tool_engine)

        self._check_references(nodes, context_schema, catalog)
        self._check_shapes(nodes, context_schema, catalog)

        if self.code_engine is not None:
            await self._check_converters(nodes)
        logger.debug("Workflow '%s' is valid", workflow.title)

    async def _check_tools(self, nodes: List[NodeBase], tool_engine: ToolExecutionEngine) -> Dict[str, ToolSpec]:
        identifiers = [node.tool_identifier for node in nodes if isinstance(node, ToolNode)]
        if not identifiers:
            return {}
        missing = await tool_engine.missing_tools(identifiers)
        if missing:
            raise WorkflowToolMissingError(missing)

        catalog = {}
        for identifier in dict.fromkeys(identifiers):
            spec = await tool_engine.get_tool(identifier)
            if spec is not None:
                catalog[identifier] = spec
        return catalog

    def _templates(self, node: NodeBase) -> List[Any]:
        if isinstance(node, FixedInput):
            return [node.output]
        if isinstance(node, ToolNode):
            return [node.input]
        if isinstance(node, UpsertStateNode):
            return [node.value]
        return []

    def _check_references(self, nodes: List[NodeBase], context_schema: ContextSchema,
                          catalog: Dict[str, ToolSpec]) -> None:
        upstream: Shape = _context_shape(context_schema)
        for node in nodes:
            for template in self._templates(node):
                for field, path in find_references(template):
                    self._check_reference(node, field, path, upstream, context_schema)
            upstream = _output_shape(node, catalog, upstream)

    @staticmethod
    def _check_reference(node: NodeBase, field: str, path: str, upstream: Shape,
                         context_schema: ContextSchema) -> None:
        head = path.split(".")[0] if path else ""
        if field == "context":
            if head and head not in context_schema:
                raise WorkflowReferenceError("context", path, node.identifier, context_schema)
        elif field == "input":
            if head and upstream is not None and "properties" in upstream \
                    and head not in upstream["properties"]:
                raise WorkflowReferenceError("input", path, node.identifier, context_schema)

    def _check_shapes(self, nodes: List[NodeBase], context_schema: ContextSchema,
                      catalog: Dict[str, ToolSpec]) -> None:
        errors: List[str] = []
        suggestions: List[str] = []
        upstream: Shape = _context_shape(context_schema)
        producer = "trigger context"
        for node in nodes:
            if isinstance(node, ToolNode):
                input_schema = _tool_schemas(node, catalog)[0]
                if input_schema:
                    provided = upstream if node.input is None else infer_schema(node.input)
                    if provided is not None:
                        source = producer if node.input is None else node.identifier
                        compare_shapes(provided, input_schema, "input", errors, suggestions,
                                       consumer=node.identifier, producer=source)
            upstream = _output_shape(node, catalog, upstream)
            producer = node.identifier
        if errors:
            raise WorkflowInputOutputMismatchError(errors, suggestions)

    async def _check_converters(self, nodes: List[NodeBase]) -> None:
        for node in nodes:
            if isinstance(node, ConverterNode):
                try:
                    await self.code_engine.check(node.code, node.runtime)
                except ConverterExecutionError as e:
                    raise ConverterExecutionError(e.phase, e.detail, node.identifier) from e


def _context_shape(context_schema: ContextSchema) -> Dict[str, Any]:
    return {"type": "object", "properties": {key: {} for key in context_schema}}


def _tool_schemas(node: ToolNode, catalog: Dict[str, ToolSpec]) -> Tuple[Shape, Shape]:
    spec = catalog.get(node.tool_identifier)
    input_schema = node.input_schema or (spec.input_schema if spec else None)
    output_schema = node.output_schema or (spec.output_schema if spec else None)
    return input_schema or None, output_schema or None


def _output_shape(node: NodeBase, catalog: Dict[str, ToolSpec], upstream: Shape) -> Shape:
    if isinstance(node, FixedInput):
        return infer_schema(node.output)
    if isinstance(node, ToolNode):
        return _tool_schemas(node, catalog)[1]
    if isinstance(node, UpsertStateNode):
        return infer_schema(node.value)
    if isinstance(node, SkipNode):
        return upstream
    return None
