"""Tests for tool execution backends and the tool registry."""

import asyncio
import json

import httpx
import pytest
from nodechain.engine.tools import (
    LocalToolExecutionEngine,
    McpToolExecutionEngine,
    TestToolExecutionEngine,
    check_tool_input,
)
from nodechain.config import Settings
from nodechain.errors import ConfigurationError
from nodechain.tools import registry as registry_module
from nodechain.tools.binance import BinanceTool
from nodechain.tools.registry import ToolRegistry, ToolSpec, register_tool
from nodechain.workflow.errors import (
    ToolExecutionError,
    WorkflowInputOutputMismatchError,
    WorkflowToolMissingError,
)

BINANCE_URL = "https://api.binance.test"
MCP_URL = "https://router.test"

ECHO_SPEC = ToolSpec(
    identifier="echo",
    description="Echo the message back",
    input_schema={"type": "object", "properties": {"message": {"type": "string"}}, "required": ["message"]},
    output_schema={"type": "object", "properties": {"echo": {"type": "string"}}, "required": ["echo"]},
)


# --------------------------
# Input checking
# --------------------------

def test_check_tool_input_accepts_valid_value():
    check_tool_input("echo", {"message": "hi"}, ECHO_SPEC.input_schema)
    check_tool_input("echo", "anything", None)


def test_check_tool_input_reports_every_problem():
    with pytest.raises(WorkflowInputOutputMismatchError) as exc:
        check_tool_input("echo", {"message": 3}, ECHO_SPEC.input_schema)

    assert exc.value.errors == ["tool 'echo' message: 3 is not of type 'string'"]
    assert exc.value.suggestions == ["make message of tool 'echo' match its input schema"]


# --------------------------
# Local engine
# --------------------------

@pytest.mark.asyncio
async def test_local_engine_calls_sync_and_async_tools():
    registry = ToolRegistry()

    @registry.tool("upper", description="Upper-case a string")
    def upper(value):
        return value.upper()

    @registry.tool("add")
    async def add(value):
        """Add two numbers."""
        return value["a"] + value["b"]

    engine = LocalToolExecutionEngine(registry)

    assert await engine.call("upper", "abc") == "ABC"
    assert await engine.call("add", {"a": 1, "b": 2}) == 3
    assert {spec.identifier: spec.description for spec in await engine.list_tools()} == {
        "upper": "Upper-case a string",
        "add": "Add two numbers.",
    }


@pytest.mark.asyncio
async def test_local_engine_unknown_tool():
    engine = LocalToolExecutionEngine(ToolRegistry())

    with pytest.raises(WorkflowToolMissingError) as exc:
        await engine.call("ghost", {})

    assert exc.value.get_missing_tools() == ["ghost"]
    assert await engine.missing_tools(["ghost", "ghost", "other"]) == ["ghost", "other"]


@pytest.mark.asyncio
async def test_local_engine_wraps_tool_failures():
    registry = ToolRegistry()

    @registry.tool("boom")
    def boom(value):
        raise RuntimeError("exploded")

    engine = LocalToolExecutionEngine(registry)

    with pytest.raises(ToolExecutionError, match="RuntimeError: exploded") as exc:
        await engine.call("boom", None)
    assert exc.value.tool_identifier == "boom"
    assert exc.value.retryable


@pytest.mark.asyncio
async def test_local_engine_timeout():
    registry = ToolRegistry()

    @registry.tool("slow")
    async def slow(value):
        await asyncio.sleep(5)

    engine = LocalToolExecutionEngine(registry)

    with pytest.raises(ToolExecutionError, match="timed out"):
        await engine.call("slow", None, timeout=0.05)


@pytest.mark.asyncio
async def test_local_engine_default_timeout_comes_from_settings(monkeypatch):
    settings = Settings(_env_file=None, tool_timeout=0.1)
    monkeypatch.setattr("nodechain.engine.tools.get_settings", lambda: settings)
    registry = ToolRegistry()

    @registry.tool("hanging")
    async def hanging(value):
        await asyncio.sleep(5)

    engine = LocalToolExecutionEngine(registry)

    assert engine.timeout == 0.1
    with pytest.raises(ToolExecutionError, match=r"timed out after 0.1s"):
        await engine.call("hanging", None)


@pytest.mark.asyncio
async def test_binance_tool_uses_tool_timeout_setting(monkeypatch):
    settings = Settings(_env_file=None, tool_timeout=2.5)
    monkeypatch.setattr("nodechain.tools.binance.get_settings", lambda: settings)
    seen = []

    def handler(request):
        seen.append(request.extensions["timeout"])
        return httpx.Response(200, json={"symbol": "BTCUSDT", "price": "1.0"})

    tool = BinanceTool(BINANCE_URL, transport=httpx.MockTransport(handler))
    await tool({"endpoint": "PRICE", "price": {"symbol": "BTCUSDT"}})

    assert seen[0]["read"] == 2.5
    assert seen[0]["connect"] == 2.5


@pytest.mark.asyncio
async def test_local_engine_validates_input(tool_engine):
    with pytest.raises(WorkflowInputOutputMismatchError):
        await tool_engine.call("binance", {"endpoint": "KLINES"})


@pytest.mark.asyncio
async def test_binance_tool_single_symbol(tool_engine):
    output = await tool_engine.call("binance", {"endpoint": "PRICE", "price": {"symbol": "btcusdt"}})

    assert output == {"price": [{"symbol": "BTCUSDT", "price": "64000.01000000"}]}


@pytest.mark.asyncio
async def test_binance_tool_all_symbols(binance_transport):
    tool = BinanceTool(BINANCE_URL, transport=binance_transport)

    output = await tool({"endpoint": "PRICE"})

    assert [item["symbol"] for item in output["price"]] == ["BTCUSDT", "ETHUSDT"]


@pytest.mark.asyncio
async def test_binance_http_error_keeps_status():
    registry = ToolRegistry()
    failing = BinanceTool(BINANCE_URL, transport=httpx.MockTransport(lambda r: httpx.Response(429)))
    registry.register("binance", failing)

    with pytest.raises(ToolExecutionError) as exc:
        await LocalToolExecutionEngine(registry).call("binance", {"endpoint": "PRICE"})

    assert exc.value.status_code == 429


# --------------------------
# Registry
# --------------------------

def test_register_tool_with_custom_registry():
    registry = ToolRegistry()

    @register_tool("double", description="Double a number", input_schema={"type": "number"},
                   registry=registry)
    def double(value):
        return value * 2

    assert "double" in registry
    assert len(registry) == 1
    assert registry.get("double").fn is double
    assert registry.specs()[0].input_schema == {"type": "number"}


def test_default_registry_has_binance():
    assert "binance" in registry_module.default_registry()
    assert callable(registry_module.get_tool("binance"))
    with pytest.raises(WorkflowToolMissingError):
        registry_module.get_tool("does-not-exist")


def test_tool_spec_uses_camel_case_aliases():
    spec = ToolSpec.model_validate({"identifier": "t", "inputSchema": {"type": "object"}})

    assert spec.input_schema == {"type": "object"}
    assert "outputSchema" in spec.model_dump(by_alias=True)


# --------------------------
# MCP Router client
# --------------------------

def _mcp(handler):
    return McpToolExecutionEngine(MCP_URL, "secret", timeout=5.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_mcp_call_posts_input_with_api_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["key"] = request.headers["x-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"output": {"echo": "hi"}})

    output = await _mcp(handler).call("echo", {"message": "hi"})

    assert output == {"echo": "hi"}
    assert seen == {"method": "POST", "path": "/tool/echo/use", "key": "secret",
                    "body": {"input": {"message": "hi"}}}


@pytest.mark.asyncio
@pytest.mark.parametrize("response, message", [
    (httpx.Response(500, text="boom"), "Failed to execute tool"),
    (httpx.Response(200, json={"output": None}), "No output from tool"),
    (httpx.Response(200, json={}), "No output from tool"),
    (httpx.Response(200, text="not json"), "malformed JSON"),
])
async def test_mcp_call_failures(response, message):
    with pytest.raises(ToolExecutionError, match=message):
        await _mcp(lambda request: response).call("echo", {"message": "hi"})


@pytest.mark.asyncio
async def test_mcp_call_unknown_tool():
    with pytest.raises(WorkflowToolMissingError):
        await _mcp(lambda request: httpx.Response(404)).call("ghost", {})


@pytest.mark.asyncio
async def test_mcp_network_error_is_tool_execution_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ToolExecutionError, match="request to MCP Router failed"):
        await _mcp(handler).call("echo", {"message": "hi"})


@pytest.mark.asyncio
async def test_mcp_get_tool():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/tool/echo":
            return httpx.Response(200, json={
                "description": ECHO_SPEC.description,
                "inputSchema": ECHO_SPEC.input_schema,
                "outputSchema": ECHO_SPEC.output_schema,
            })
        return httpx.Response(404)

    engine = _mcp(handler)

    assert await engine.get_tool("echo") == ECHO_SPEC
    assert await engine.get_tool("ghost") is None


@pytest.mark.asyncio
async def test_mcp_missing_tools():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/tools/check"
        ids = request.url.params.get_list("ids")
        missing = [i for i in ids if i != "echo"]
        if missing:
            return httpx.Response(400, json={"error": "Tools not found", "missingIds": missing})
        return httpx.Response(200, json={"exists": True})

    engine = _mcp(handler)

    assert await engine.missing_tools(["echo"]) == []
    assert await engine.missing_tools(["echo", "ghost", "ghost"]) == ["ghost"]
    assert await engine.missing_tools([]) == []


@pytest.mark.asyncio
async def test_mcp_missing_tools_server_error():
    with pytest.raises(ToolExecutionError, match="Failed to check tools"):
        await _mcp(lambda request: httpx.Response(503)).missing_tools(["echo"])


@pytest.mark.asyncio
async def test_mcp_list_tools():
    def handler(request):
        return httpx.Response(200, json=[ECHO_SPEC.model_dump(by_alias=True)])

    assert await _mcp(handler).list_tools() == [ECHO_SPEC]


def test_mcp_requires_configuration(monkeypatch):
    unset = Settings(_env_file=None, mcp_router_server_url="", mcp_router_server_api_key="")
    monkeypatch.setattr("nodechain.engine.tools.get_settings", lambda: unset)

    with pytest.raises(ConfigurationError, match="MCP_ROUTER_SERVER_URL"):
        McpToolExecutionEngine()
    with pytest.raises(ConfigurationError, match="MCP_ROUTER_SERVER_API_KEY"):
        McpToolExecutionEngine(MCP_URL)


# --------------------------
# Recording double
# --------------------------

@pytest.mark.asyncio
async def test_test_engine_records_calls_and_generates_data():
    engine = TestToolExecutionEngine([ECHO_SPEC], seed=7)

    output = await engine.call("echo", {"message": "hi"})

    assert isinstance(output["echo"], str)
    assert engine.get_call_count("echo") == 1
    assert engine.get_call_args("echo") == {"message": "hi"}
    assert engine.get_call_count("other") == 0
    assert engine.calls == [("echo", {"message": "hi"})]


@pytest.mark.asyncio
async def test_test_engine_responder_and_validation():
    engine = TestToolExecutionEngine([ECHO_SPEC], responder=lambda tool, value: {"echo": value["message"]})

    assert await engine.call("echo", {"message": "yo"}) == {"echo": "yo"}
    with pytest.raises(WorkflowInputOutputMismatchError):
        await engine.call("echo", {})
    assert engine.get_call_count("echo") == 2


@pytest.mark.asyncio
async def test_test_engine_falls_back_to_real_engine(tool_engine):
    engine = TestToolExecutionEngine(fallback=tool_engine)

    output = await engine.call("binance", {"endpoint": "PRICE", "price": {"symbol": "BTCUSDT"}})

    assert output["price"][0]["price"] == "64000.01000000"
    assert [spec.identifier for spec in await engine.list_tools()] == ["binance"]


@pytest.mark.asyncio
async def test_test_engine_unknown_tool():
    with pytest.raises(WorkflowToolMissingError):
        await TestToolExecutionEngine().call("ghost", {})


def test_generate_random_data_follows_schema():
    engine = TestToolExecutionEngine(seed=1)
    schema = {
        "type": "object",
        "properties": {
            "count": {"type": "integer", "minimum": 5, "maximum": 9},
            "tags": {"type": "array", "items": {"type": "string"}, "minItems": 2, "maxItems": 2},
            "mode": {"enum": ["a", "b"]},
        },
        "required": ["count", "tags", "mode"],
    }

    data = engine.generate_random_data(schema)

    assert 5 <= data["count"] <= 9
    assert len(data["tags"]) == 2 and all(isinstance(t, str) for t in data["tags"])
    assert data["mode"] in ("a", "b")
