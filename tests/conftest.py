"""Shared fixtures: a mocked Binance API and sandbox engines."""

import shutil
import subprocess
import sys

import httpx
import pytest

from nodechain.engine.code import SubprocessCodeExecutionEngine, parse_node_version
from nodechain.engine.tools import LocalToolExecutionEngine
from nodechain.tools.binance import INPUT_SCHEMA, OUTPUT_SCHEMA, BinanceTool
from nodechain.tools.registry import ToolRegistry


BINANCE_URL = "https://api.binance.test"


def binance_handler(request: httpx.Request) -> httpx.Response:
    assert request.url.path == "/api/v3/ticker/price"
    symbol = request.url.params.get("symbol")
    if symbol:
        return httpx.Response(200, json={"symbol": symbol, "price": "64000.01000000"})
    return httpx.Response(200, json=[
        {"symbol": "BTCUSDT", "price": "64000.01000000"},
        {"symbol": "ETHUSDT", "price": "3100.50000000"},
    ])


@pytest.fixture
def binance_transport():
    return httpx.MockTransport(binance_handler)


@pytest.fixture
def binance_registry(binance_transport):
    registry = ToolRegistry()
    registry.register(
        "binance",
        BinanceTool(BINANCE_URL, transport=binance_transport),
        description="Binance market data. endpoint PRICE returns the latest price per symbol.",
        input_schema=INPUT_SCHEMA,
        output_schema=OUTPUT_SCHEMA,
    )
    return registry


@pytest.fixture
def tool_engine(binance_registry):
    return LocalToolExecutionEngine(binance_registry, timeout=5.0)


@pytest.fixture
def code_engine():
    return SubprocessCodeExecutionEngine(python_binary=sys.executable, timeout=5.0, memory_mb=256,
                                         max_concurrency=2)


@pytest.fixture(scope="session")
def requires_node():
    """Skip unless a node with the permission model (>= 20) is installed."""
    node = shutil.which("node")
    if node is None:
        pytest.skip("node is not installed")
    version = parse_node_version(subprocess.run([node, "--version"], capture_output=True, text=True).stdout)
    if version < (20, 0):
        pytest.skip(f"node {version[0]}.{version[1]} has no permission model")
