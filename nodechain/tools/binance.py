""" Built-in `binance` tool: spot prices from the Binance public REST API. """
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import get_settings
from .registry import register_tool

logger = logging.getLogger(__name__)

INPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "endpoint": {"type": "string", "enum": ["PRICE"]},
        "price": {
            "type": "object",
            "properties": {"symbol": {"type": "string", "description": "Trading pair, e.g. BTCUSDT"}},
        },
    },
    "required": ["endpoint"],
}

OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "price": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"symbol": {"type": "string"}, "price": {"type": "string"}},
                "required": ["symbol", "price"],
            },
        },
    },
    "required": ["price"],
}


class BinanceTool:
    """ Get the latest spot price of one symbol, or of every symbol when none is given. """

    def __init__(self, base_url: Optional[str] = None, *,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: Optional[float] = None):
        self.base_url = base_url
        self.transport = transport
        self.timeout = timeout

    async def __call__(self, input: Dict[str, Any]) -> Dict[str, List[Dict[str, str]]]:
        endpoint = (input or {}).get("endpoint", "PRICE")
        if endpoint != "PRICE":
            raise ValueError(f"Unsupported binance endpoint: {endpoint}")

        symbol = ((input or {}).get("price") or {}).get("symbol")
        params = {"symbol": symbol.upper()} if symbol else None
        settings = get_settings()
        base_url = self.base_url or settings.binance_base_url
        timeout = self.timeout if self.timeout is not None else settings.tool_timeout

        async with httpx.AsyncClient(base_url=base_url, transport=self.transport,
                                     timeout=timeout) as client:
            logger.debug("GET /api/v3/ticker/price symbol=%s", symbol)
            response = await client.get("/api/v3/ticker/price", params=params)
            response.raise_for_status()
            body = response.json()

        items = body if isinstance(body, list) else [body]
        return {"price": [{"symbol": item["symbol"], "price": item["price"]} for item in items]}


register_tool(
    "binance",
    description="Binance market data. endpoint PRICE returns the latest price per symbol "
                "(e.g. BTCUSDT) under `price`.",
    input_schema=INPUT_SCHEMA,
    output_schema=OUTPUT_SCHEMA,
)(BinanceTool())
