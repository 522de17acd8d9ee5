"""
Tool execution backends.

The interpreter and the validator only see `ToolExecutionEngine`: calls are
routed to in-process Python callables (`LocalToolExecutionEngine`), to the
MCP Router over HTTP (`McpToolExecutionEngine`) or to a recording double used
by tests (`TestToolExecutionEngine`).
"""

import asyncio
import inspect
import logging
import random
import string
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ..config import get_settings
from ..errors import ConfigurationError
from ..tools.registry import ToolRegistry, ToolSpec, default_registry
from ..workflow.errors import (
    ToolExecutionError,
    WorkflowDefinitionError,
    WorkflowEngineError,
    WorkflowInputOutputMismatchError,
    WorkflowToolMissingError,
)

logger = logging.getLogger(__name__)


def check_tool_input(tool_identifier: str, value: Any, schema: Optional[Dict[str, Any]]) -> None:
    """ Raise WorkflowInputOutputMismatchError when `value` does not satisfy `schema`. """
    if not schema:
        return
    try:
        validator = Draft202012Validator(schema)
        found = sorted(validator.iter_errors(value), key=lambda e: list(e.path))
    except SchemaError as e:
        raise WorkflowDefinitionError(f"Tool '{tool_identifier}' has an invalid input schema: {e.message}")
    if not found:
        return

    errors, suggestions = [], []
    for err in found:
        where = ".".join(str(p) for p in err.path) or "input"
        errors.append(f"tool '{tool_identifier}' {where}: {err.message}")
        suggestions.append(f"make {where} of tool '{tool_identifier}' match its input schema")
    raise WorkflowInputOutputMismatchError(errors, suggestions)


class ToolExecutionEngine(ABC):
    """ Executes tools by identifier and exposes the tool catalog. """

    @abstractmethod
    async def call(self, tool_identifier: str, input: Any, *, timeout: Optional[float] = None) -> Any:
        """
        Run the tool. Unknown identifiers raise WorkflowToolMissingError,
        transport or tool failures raise ToolExecutionError.
        """

    @abstractmethod
    async def list_tools(self) -> List[ToolSpec]:
        pass

    async def get_tool(self, identifier: str) -> Optional[ToolSpec]:
        for spec in await self.list_tools():
            if spec.identifier == identifier:
                return spec
        return None

    async def missing_tools(self, identifiers: Sequence[str]) -> List[str]:
        known = {spec.identifier for spec in await self.list_tools()}
        return _unique([i for i in identifiers if i not in known])


def _unique(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _is_async(fn: Callable) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(getattr(fn, "__call__", None))


class LocalToolExecutionEngine(ToolExecutionEngine):
    """ Dispatches to Python callables held in a ToolRegistry. """

    def __init__(self, registry: Optional[ToolRegistry] = None, *, timeout: Optional[float] = None):
        self.registry = registry if registry is not None else default_registry()
        self.timeout = timeout if timeout is not None else get_settings().tool_timeout

    async def list_tools(self) -> List[ToolSpec]:
        return self.registry.specs()

    async def call(self, tool_identifier: str, input: Any, *, timeout: Optional[float] = None) -> Any:
        entry = self.registry.get(tool_identifier)
        if entry is None:
            raise WorkflowToolMissingError([tool_identifier])
        check_tool_input(tool_identifier, input, entry.spec.input_schema)

        timeout = timeout if timeout is not None else self.timeout
        if _is_async(entry.fn):
            pending = entry.fn(input)
        else:
            pending = asyncio.to_thread(entry.fn, input)

        logger.debug("Calling local tool %s", tool_identifier)
        try:
            return await asyncio.wait_for(pending, timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolExecutionError(tool_identifier, f"timed out after {timeout}s")
        except WorkflowEngineError:
            raise
        except httpx.HTTPStatusError as e:
            raise ToolExecutionError(tool_identifier, str(e), e.response.status_code)
        except Exception as e:
            raise ToolExecutionError(tool_identifier, f"{type(e).__name__}: {e}")


class McpToolExecutionEngine(ToolExecutionEngine):
    """
    Client for the MCP Router.

    POST /tool/{id}/use    {"input": ...} -> {"output": ...}
    GET  /tool/{id}        -> {description, inputSchema, outputSchema}
    GET  /tools            -> [{identifier, description, inputSchema, outputSchema}, ...]
    GET  /tools/check      ?ids=a&ids=b -> {"exists": bool} | 400 {"error", "missingIds"}
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, *,
                 timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = get_settings()
        self.base_url = base_url or settings.mcp_router_server_url
        self.api_key = api_key or settings.mcp_router_server_api_key
        if not self.base_url:
            raise ConfigurationError("MCP_ROUTER_SERVER_URL is not set")
        if not self.api_key:
            raise ConfigurationError("MCP_ROUTER_SERVER_API_KEY is not set")
        self.timeout = timeout if timeout is not None else settings.tool_timeout
        self.transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"x-api-key": self.api_key, "Content-Type": "application/json"},
            timeout=timeout if timeout is not None else self.timeout,
            transport=self.transport,
        )

    async def _request(self, tool_identifier: str, method: str, path: str, *,
                       timeout: Optional[float] = None, **kwargs) -> httpx.Response:
        try:
            async with self._client(timeout) as client:
                return await client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise ToolExecutionError(tool_identifier, "request to MCP Router timed out")
        except httpx.HTTPError as e:
            raise ToolExecutionError(tool_identifier, f"request to MCP Router failed: {e}")

    async def call(self, tool_identifier: str, input: Any, *, timeout: Optional[float] = None) -> Any:
        logger.debug("POST /tool/%s/use", tool_identifier)
        response = await self._request(tool_identifier, "POST", f"/tool/{tool_identifier}/use",
                                       json={"input": input}, timeout=timeout)
        if response.status_code == 404:
            raise WorkflowToolMissingError([tool_identifier])
        if response.is_error:
            logger.error("Error executing tool %s: %s", tool_identifier, response.text)
            raise ToolExecutionError(tool_identifier, "Failed to execute tool", response.status_code)

        try:
            body = response.json()
        except ValueError:
            raise ToolExecutionError(tool_identifier, "MCP Router returned malformed JSON", response.status_code)
        output = body.get("output") if isinstance(body, dict) else None
        if output is None:
            raise ToolExecutionError(tool_identifier, "No output from tool", response.status_code)
        return output

    async def list_tools(self) -> List[ToolSpec]:
        response = await self._request("*", "GET", "/tools")
        if response.is_error:
            raise ToolExecutionError("*", "Failed to list tools", response.status_code)
        return [ToolSpec.model_validate(item) for item in response.json()]

    async def get_tool(self, identifier: str) -> Optional[ToolSpec]:
        response = await self._request(identifier, "GET", f"/tool/{identifier}")
        if response.status_code == 404:
            return None
        if response.is_error:
            raise ToolExecutionError(identifier, "Failed to get tool info", response.status_code)
        return ToolSpec.model_validate({"identifier": identifier, **response.json()})

    async def missing_tools(self, identifiers: Sequence[str]) -> List[str]:
        identifiers = _unique(identifiers)
        if not identifiers:
            return []
        response = await self._request(",".join(identifiers), "GET", "/tools/check",
                                       params=[("ids", i) for i in identifiers])
        if response.status_code == 400:
            return list(response.json().get("missingIds") or identifiers)
        if response.is_error:
            raise ToolExecutionError(",".join(identifiers), "Failed to check tools", response.status_code)
        return [] if response.json().get("exists") else identifiers


Responder = Callable[[str, Any], Any]


class TestToolExecutionEngine(ToolExecutionEngine):
    """
    Recording double. Answers come from `responder(tool, input)` when given,
    else from `fallback`, else random data matching the tool's output schema.
    Calls are recorded even when the input fails validation.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, tools: Optional[Sequence[ToolSpec]] = None, *,
                 responder: Optional[Responder] = None,
                 fallback: Optional[ToolExecutionEngine] = None,
                 seed: Optional[int] = None):
        self._tools: Dict[str, ToolSpec] = {t.identifier: t for t in (tools or [])}
        self.responder = responder
        self.fallback = fallback
        self.calls: List[Tuple[str, Any]] = []
        self._call_counts: Dict[str, int] = {}
        self._call_args: Dict[str, Any] = {}
        self._random = random.Random(seed)

    def get_call_count(self, tool: str) -> int:
        return self._call_counts.get(tool, 0)

    def get_call_args(self, tool: str) -> Any:
        return self._call_args.get(tool)

    async def list_tools(self) -> List[ToolSpec]:
        specs = dict(self._tools)
        if self.fallback is not None:
            for spec in await self.fallback.list_tools():
                specs.setdefault(spec.identifier, spec)
        return list(specs.values())

    async def call(self, tool_identifier: str, input: Any, *, timeout: Optional[float] = None) -> Any:
        self.calls.append((tool_identifier, input))
        self._call_counts[tool_identifier] = self._call_counts.get(tool_identifier, 0) + 1
        self._call_args[tool_identifier] = input

        spec = self._tools.get(tool_identifier)
        if spec is not None:
            check_tool_input(tool_identifier, input, spec.input_schema)

        if self.responder is not None:
            result = self.responder(tool_identifier, input)
            return await result if inspect.isawaitable(result) else result
        if self.fallback is not None:
            return await self.fallback.call(tool_identifier, input, timeout=timeout)
        if spec is None:
            raise WorkflowToolMissingError([tool_identifier])
        return self.generate_random_data(spec.output_schema)

    def generate_random_data(self, schema: Optional[Dict[str, Any]]) -> Any:
        if not isinstance(schema, dict):
            return None
        rnd = self._random
        kind = schema.get("type")
        if "enum" in schema:
            return rnd.choice(schema["enum"])
        if kind == "string":
            return "".join(rnd.choices(string.ascii_lowercase, k=8))
        if kind in ("number", "integer"):
            value = rnd.randint(int(schema.get("minimum", 0)), int(schema.get("maximum", 100)))
            return value if kind == "integer" else float(value)
        if kind == "boolean":
            return rnd.choice([True, False])
        if kind == "array":
            low = max(schema.get("minItems", 1), 1)
            length = rnd.randint(low, max(schema.get("maxItems", 5), low))
            return [self.generate_random_data(schema.get("items")) for _ in range(length)]
        if kind == "object":
            required = set(schema.get("required", []))
            return {
                key: self.generate_random_data(prop)
                for key, prop in schema.get("properties", {}).items()
                if key in required or rnd.choice([True, False])
            }
        return None
