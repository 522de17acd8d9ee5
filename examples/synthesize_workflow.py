"""Example: turn a natural-language goal into a validated workflow.
Uses OpenRouter when OPENROUTER_API_KEY is set, the offline planner otherwise.
Pass --run to execute the result once.
"""
import argparse
import asyncio
import json

from nodechain.agent import WorkflowAgent
from nodechain.config import get_settings
from nodechain.engine.code import SubprocessCodeExecutionEngine
from nodechain.engine.tools import LocalToolExecutionEngine, McpToolExecutionEngine
from nodechain.llm_api import default_llm_client
from nodechain.logging_config import setup_logging
from nodechain.workflow.compiler import dump_workflow
from nodechain.workflow.errors import WorkflowEngineError
from nodechain.workflow.executor import WorkflowEngine


async def main(goal: str, run: bool):
    setup_logging()
    settings = get_settings()

    # The MCP Router when configured, the built-in tools otherwise
    if settings.mcp_router_server_url and settings.mcp_router_server_api_key:
        tool_engine = McpToolExecutionEngine()
    else:
        tool_engine = LocalToolExecutionEngine()
    code_engine = SubprocessCodeExecutionEngine()

    agent = WorkflowAgent(default_llm_client(), tool_engine, code_engine=code_engine)
    try:
        result = await agent.synthesize(goal)
    except WorkflowEngineError as e:
        print('Could not build a workflow:', e.human_readable_message)
        return

    print(f'Valid workflow after {result.attempts} attempt(s):')
    print(json.dumps(dump_workflow(result.workflow), indent=2))

    if run:
        output = await WorkflowEngine(code_engine, tool_engine).execute(result.workflow)
        print('\n--- RUN RESULT ---')
        print(output.data)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('goal', nargs='?', default='Get the BTC price every 10 minutes')
    parser.add_argument('--run', action='store_true')
    args = parser.parse_args()
    asyncio.run(main(args.goal, args.run))
