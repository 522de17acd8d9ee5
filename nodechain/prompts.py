"""
Prompt construction for the workflow synthesizer.

Prompts are Markdown with `## Section` headings; structured sections carry a
fenced JSON block so both a real model and the offline planner can read them
back (see `split_sections`).
"""

import json
import re
from typing import Any, Dict, List, Mapping, Optional

from jinja2 import Environment, StrictUndefined

from .tools.registry import ToolSpec
from .workflow.schema import workflow_json_schema

_env = Environment(undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True, autoescape=False)
_env.filters["tojson_pretty"] = lambda value: json.dumps(value, indent=2, ensure_ascii=False)

SYSTEM_TEMPLATE = _env.from_string("""\
You are a workflow builder. Turn the user's goal into a workflow: a linear chain
of nodes that starts with a cronjob-trigger. Answer with a single JSON object and
nothing else.

## Rules
- The root is `trigger` with `"type": "cronjob-trigger"` and a five-field `cron`
  expression derived from the timing in the goal (e.g. every 10 minutes is `*/10 * * * *`).
- Every node has a unique `identifier` and a `child` (the next node, or null for the last one).
- `fixed-input` emits `output`. `tool` calls `toolIdentifier` with `input`
  (or with the upstream output when `input` is omitted). `converter` holds `code`
  defining `async function handle(input) { ... }` and returns the transformed value.
- `upsert-state` stores `value` under `key`; `skip` stops the workflow.
- Reference upstream data with `{{ '{{' }} input.field {{ '}}' }}`, user context with
  `{{ '{{' }} context.field {{ '}}' }}` and stored state with `{{ '{{' }} state.key {{ '}}' }}`.
- Only use tools listed below and only context fields listed below.

## Tools
```json
{{ tools | tojson_pretty }}
```

## Context fields
```json
{{ context_fields | tojson_pretty }}
```

## Workflow JSON schema
```json
{{ schema | tojson_pretty }}
```
""")

USER_TEMPLATE = _env.from_string("""\
## Goal
{{ goal }}
{% if user_context %}

## User context
```json
{{ user_context | tojson_pretty }}
```
{% endif %}
{% if previous %}

## Previous workflow
```json
{{ previous | tojson_pretty }}
```
{% endif %}
{% if feedback %}

## Feedback
The previous workflow failed validation. Fix every problem below.
```json
{{ feedback | tojson_pretty }}
```
{% endif %}
""")

_SECTION = re.compile(r"^##\s+(.+?)\s*$", re.MULTILINE)


def build_system_prompt(tools: List[ToolSpec], context_schema: Mapping[str, str]) -> str:
    return SYSTEM_TEMPLATE.render(
        tools=[tool.model_dump(by_alias=True) for tool in tools],
        context_fields=dict(context_schema),
        schema=workflow_json_schema(),
    )


def build_user_prompt(goal: str, *, user_context: Optional[Mapping[str, Any]] = None,
                      previous: Optional[Dict[str, Any]] = None,
                      feedback: Optional[Dict[str, Any]] = None) -> str:
    return USER_TEMPLATE.render(
        goal=goal.strip(),
        user_context=dict(user_context) if user_context else None,
        previous=previous,
        feedback=feedback,
    )


def split_sections(text: str) -> Dict[str, str]:
    """ `## Heading` -> body text, for every heading in `text`. """
    sections: Dict[str, str] = {}
    matches = list(_SECTION.finditer(text))
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sections[match.group(1).strip().lower()] = text[match.end():end].strip()
    return sections
