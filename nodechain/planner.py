"""
Deterministic, offline workflow planner.

Reads the same prompt a language model would receive and drafts a workflow
from it with plain heuristics: timing language becomes a cron expression,
ticker symbols and keywords pick a tool from the catalog, and the tool's input
schema is filled from what the goal mentions. Repair feedback is honoured:
missing tools are avoided and properties named in mismatch errors are filled.
Used in tests and as a fallback when no model is configured.
"""

import re
from typing import Any, Dict, List, Optional, Set

_WORD = re.compile(r"[a-z0-9]+")

_STOP = {
    "the", "and", "for", "get", "me", "my", "to", "of", "a", "an", "in", "on", "at",
    "every", "each", "minutes", "minute", "hours", "hour", "day", "daily", "weekly",
    "send", "please", "with", "from", "when", "then", "it", "is", "be", "data",
}

_COIN_NAMES = {
    "bitcoin": "BTC", "btc": "BTC",
    "ethereum": "ETH", "ether": "ETH", "eth": "ETH",
    "solana": "SOL", "sol": "SOL",
    "dogecoin": "DOGE", "doge": "DOGE",
    "bnb": "BNB", "xrp": "XRP", "ripple": "XRP", "cardano": "ADA", "ada": "ADA",
}

_DAYS = {
    "sunday": 0, "monday": 1, "tuesday": 2, "wednesday": 3,
    "thursday": 4, "friday": 5, "saturday": 6,
}

_NUMBERS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "ten": 10, "fifteen": 15, "twenty": 20, "thirty": 30,
}

DEFAULT_CRON = "0 0 * * *"


def _number(token: str) -> int:
    return int(token) if token.isdigit() else _NUMBERS[token]


def _at_time(text: str):
    """ `at 9`, `at 09:30`, `at 5pm` -> (minute, hour) or None. """
    match = re.search(r"\bat\s+(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b", text)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2) or 0)
    if match.group(3) == "pm" and hour < 12:
        hour += 12
    if match.group(3) == "am" and hour == 12:
        hour = 0
    return minute % 60, hour % 24


def synthesize_cron(goal: str) -> str:
    """ Five-field cron expression for the timing language in `goal`. """
    text = goal.lower()
    number = r"(\d+|" + "|".join(_NUMBERS) + r")"

    match = re.search(r"every\s+" + number + r"\s*(?:minutes?|mins?)\b", text)
    if match:
        return f"*/{_number(match.group(1))} * * * *"
    if re.search(r"every\s+minute\b", text):
        return "* * * * *"

    match = re.search(r"every\s+" + number + r"\s*(?:hours?|hrs?)\b", text)
    if match:
        return f"0 */{_number(match.group(1))} * * *"
    if re.search(r"\bhourly\b|every\s+hour\b", text):
        return "0 * * * *"

    at = _at_time(text)
    for day, index in _DAYS.items():
        if re.search(rf"\b(?:every\s+)?{day}s?\b", text):
            minute, hour = at or (0, 0)
            return f"{minute} {hour} * * {index}"
    if re.search(r"\bweekly\b|every\s+week\b", text):
        minute, hour = at or (0, 0)
        return f"{minute} {hour} * * 1"
    if re.search(r"\bmonthly\b|every\s+month\b", text):
        minute, hour = at or (0, 0)
        return f"{minute} {hour} 1 * *"
    if at is not None or re.search(r"\bdaily\b|every\s+day\b|each\s+day\b", text):
        minute, hour = at or (0, 0)
        return f"{minute} {hour} * * *"
    return DEFAULT_CRON


def extract_symbols(goal: str) -> List[str]:
    """ Trading pairs (quoted in USDT) for the coins mentioned in `goal`. """
    symbols: List[str] = []
    for token in re.findall(r"[A-Za-z]+", goal):
        coin = _COIN_NAMES.get(token.lower())
        if coin and f"{coin}USDT" not in symbols:
            symbols.append(f"{coin}USDT")
    for pair in re.findall(r"\b([A-Z]{2,5}USDT)\b", goal):
        if pair not in symbols:
            symbols.append(pair)
    return symbols


def keywords(text: str) -> Set[str]:
    return {w for w in _WORD.findall(text.lower()) if len(w) > 2 and w not in _STOP}


def match_tool(goal: str, tools: List[Dict[str, Any]], excluded: Set[str]) -> Optional[Dict[str, Any]]:
    """ Catalog entry sharing the most keywords with the goal, if any. """
    goal_words = keywords(goal)
    if extract_symbols(goal):
        goal_words |= {"price", "market", "binance", "crypto"}
    best, best_score = None, 0
    for tool in tools:
        if tool.get("identifier") in excluded:
            continue
        tool_words = keywords(f"{tool.get('identifier', '')} {tool.get('description', '')}")
        score = len(goal_words & tool_words)
        if score > best_score:
            best, best_score = tool, score
    return best


def fill_from_schema(schema: Dict[str, Any], hints: Dict[str, Any], force: Set[str], path: str = "input") -> Any:
    """
    Example value for `schema`: required properties always, optional ones when
    a hint or a forced path asks for them.
    """
    kind = schema.get("type")
    if "enum" in schema:
        return schema["enum"][0]
    if "default" in schema:
        return schema["default"]
    if kind == "object":
        result = {}
        required = set(schema.get("required", []))
        for name, sub in schema.get("properties", {}).items():
            sub_path = f"{path}.{name}"
            wanted = (name in required or name in hints or sub_path in force
                      or any(f.startswith(sub_path + ".") for f in force)
                      or _mentions(sub, hints))
            if wanted:
                result[name] = hints[name] if name in hints else fill_from_schema(sub, hints, force, sub_path)
        return result
    if kind == "array":
        return [fill_from_schema(schema.get("items", {}), hints, force, path)]
    if kind == "string":
        return ""
    if kind in ("number", "integer"):
        return 0
    if kind == "boolean":
        return False
    return None


def _mentions(schema: Dict[str, Any], hints: Dict[str, Any]) -> bool:
    return schema.get("type") == "object" and any(name in hints for name in schema.get("properties", {}))


def forced_paths(feedback: Optional[Dict[str, Any]]) -> Set[str]:
    """ Dotted `input.*` paths that mismatch feedback says are missing. """
    if not feedback:
        return set()
    paths = set()
    for error in feedback.get("errors", []):
        for match in re.finditer(r"requires (input(?:\.\w+)+)", error):
            paths.add(match.group(1))
    return paths


def plan_workflow(goal: str, tools: List[Dict[str, Any]], *,
                  feedback: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """ Draft a workflow (camelCase dict) for `goal` using the tool catalog. """
    excluded = set((feedback or {}).get("missingTools", []))
    symbols = extract_symbols(goal)
    hints: Dict[str, Any] = {"symbol": symbols[0]} if symbols else {}

    title = re.split(r"[.!?\n]", goal.strip(), maxsplit=1)[0][:80] or "Workflow"
    tool = match_tool(goal, tools, excluded)

    if tool is None:
        chain = {
            "type": "fixed-input",
            "identifier": "message",
            "output": {"message": goal.strip()},
            "child": None,
        }
    else:
        identifier = tool["identifier"]
        payload = fill_from_schema(tool.get("inputSchema") or {"type": "object"}, hints,
                                   forced_paths(feedback))
        chain = {
            "type": "fixed-input",
            "identifier": f"{identifier}-input",
            "output": payload,
            "child": {
                "type": "tool",
                "identifier": f"call-{identifier}",
                "toolIdentifier": identifier,
                "child": None,
            },
        }

    return {
        "title": title,
        "trigger": {
            "type": "cronjob-trigger",
            "identifier": "trigger",
            "cron": synthesize_cron(goal),
            "child": chain,
        },
    }
