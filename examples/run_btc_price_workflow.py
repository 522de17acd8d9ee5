"""Example: build the BTC price workflow by hand and run it once.
Calls the real Binance API, so it needs network access (and `node` for the converter).
"""
import asyncio

from nodechain.engine.code import SubprocessCodeExecutionEngine
from nodechain.engine.tools import LocalToolExecutionEngine
from nodechain.logging_config import setup_logging
from nodechain.workflow.builder import WorkflowBuilder
from nodechain.workflow.compiler import dump_workflow
from nodechain.workflow.executor import WorkflowEngine
from nodechain.workflow.validator import WorkflowValidator


async def main():
    setup_logging()

    builder = WorkflowBuilder("BTC price every 10 minutes", cron="*/10 * * * *")
    builder.add_child(None, {
        "type": "fixed-input",
        "identifier": "binance-input",
        "output": {"endpoint": "PRICE", "price": {"symbol": "BTCUSDT"}},
    })
    builder.add_child("binance-input", {"type": "tool", "identifier": "call-binance", "toolIdentifier": "binance"})
    builder.add_child("call-binance", {
        "type": "converter",
        "identifier": "format",
        "code": "export async function handle(input) {\n"
                "  const { symbol, price } = input.price[0];\n"
                "  return { text: `${symbol} is at ${Number(price).toFixed(2)}` };\n"
                "}",
    })
    workflow = builder.compile()

    code_engine = SubprocessCodeExecutionEngine()
    tool_engine = LocalToolExecutionEngine()

    # Static checks first: tools exist, references resolve, converter compiles
    await WorkflowValidator(code_engine).validate(workflow, tool_engine=tool_engine)
    print('Workflow:', dump_workflow(workflow))

    result = await WorkflowEngine(code_engine, tool_engine).execute(workflow)
    print('\n--- RUN RESULT ---')
    print(result.data)


if __name__ == '__main__':
    asyncio.run(main())
