"""Tests for the converter sandbox."""

import asyncio

import pytest
from nodechain.engine.code import (
    SubprocessCodeExecutionEngine,
    node_permission_flag,
    parse_node_version,
    strip_exports,
)
from nodechain.workflow.errors import ConverterExecutionError

requires_node = pytest.mark.usefixtures("requires_node")


def test_strip_exports():
    code = "export async function handle(input) {}\nexport default handle;"

    assert strip_exports(code) == "async function handle(input) {}\nhandle;"


@pytest.mark.parametrize("version, flag", [
    ("v20.11.1", "--experimental-permission"),
    ("v22.12.0", "--experimental-permission"),
    ("v22.13.0", "--permission"),
    ("v23.4.0", "--experimental-permission"),
    ("v24.1.0", "--permission"),
])
def test_node_permission_flag(version, flag):
    assert node_permission_flag(parse_node_version(version)) == flag


def test_old_node_is_refused():
    with pytest.raises(ConverterExecutionError, match="Node.js >= 20") as exc:
        node_permission_flag(parse_node_version("v18.19.0\n"))

    assert exc.value.phase == "runtime"


def test_unparseable_node_version():
    with pytest.raises(ConverterExecutionError, match="Could not determine"):
        parse_node_version("node")


# --------------------------
# Python runtime
# --------------------------

@pytest.mark.asyncio
async def test_python_converter(code_engine):
    code = "def handle(input):\n    return {'doubled': input['n'] * 2}\n"

    assert await code_engine.run(code, {"n": 21}, runtime="python") == {"doubled": 42}


@pytest.mark.asyncio
async def test_python_comprehension_and_unpacking(code_engine):
    code = (
        "def handle(input):\n"
        "    total = 0\n"
        "    for name, value in input.items():\n"
        "        total += value\n"
        "    return [x for x in sorted(input.values()) if x > 1] + [total]\n"
    )

    assert await code_engine.run(code, {"a": 1, "b": 2, "c": 3}, runtime="python") == [2, 3, 6]


@pytest.mark.asyncio
async def test_python_converter_may_define_classes(code_engine):
    code = (
        "class Doubler:\n"
        "    factor = 2\n"
        "\n"
        "    def apply(self, value):\n"
        "        return value * self.factor\n"
        "\n"
        "def handle(input):\n"
        "    return Doubler().apply(input)\n"
    )

    assert await code_engine.run(code, 21, runtime="python") == 42


@pytest.mark.asyncio
async def test_python_async_handle_is_rejected(code_engine):
    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.check("async def handle(input):\n    return input\n", runtime="python")

    assert exc.value.phase == "compile"


@pytest.mark.asyncio
async def test_python_cannot_walk_object_subclasses(code_engine):
    code = (
        "def handle(input):\n"
        "    classes = ().__class__.__base__.__subclasses__()\n"
        "    return [c.__name__ for c in classes]\n"
    )

    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.run(code, None, runtime="python")

    assert exc.value.phase == "compile"
    assert "__class__" in exc.value.detail


@pytest.mark.asyncio
async def test_python_print_does_not_corrupt_output(code_engine):
    code = "def handle(input):\n    print('noise')\n    return input\n"

    assert await code_engine.run(code, "value", runtime="python") == "value"


@pytest.mark.asyncio
async def test_python_compile_error(code_engine):
    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.check("def handle(input) return 1", runtime="python")

    assert exc.value.phase == "compile"
    assert "SyntaxError" in exc.value.detail


@pytest.mark.asyncio
async def test_python_check_does_not_execute(code_engine):
    await code_engine.check("raise ValueError('never runs')\ndef handle(input):\n    return 1\n",
                            runtime="python")


@pytest.mark.asyncio
async def test_python_runtime_error(code_engine):
    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.run("def handle(input):\n    return input['missing']\n", {}, runtime="python")

    assert exc.value.phase == "runtime"
    assert "KeyError" in exc.value.detail


@pytest.mark.asyncio
async def test_python_imports_are_blocked(code_engine):
    code = "import os\ndef handle(input):\n    return os.getcwd()\n"

    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.run(code, None, runtime="python")

    assert exc.value.phase == "runtime"


@pytest.mark.asyncio
async def test_python_missing_handle(code_engine):
    with pytest.raises(ConverterExecutionError, match="handle is not defined"):
        await code_engine.run("x = 1\n", None, runtime="python")


@pytest.mark.asyncio
async def test_python_timeout(code_engine):
    code = "def handle(input):\n    while True:\n        pass\n"

    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.run(code, None, runtime="python", timeout=0.5)

    assert exc.value.phase == "timeout"
    assert exc.value.retryable


@pytest.mark.asyncio
async def test_converters_run_concurrently_in_isolation(code_engine):
    code = "counter = []\ndef handle(input):\n    counter.append(input)\n    return len(counter)\n"

    results = await asyncio.gather(*(code_engine.run(code, i, runtime="python") for i in range(4)))

    assert results == [1, 1, 1, 1]


@pytest.mark.asyncio
async def test_unsupported_runtime(code_engine):
    with pytest.raises(ConverterExecutionError, match="Unsupported converter runtime"):
        await code_engine.run("def handle(input): pass", None, runtime="ruby")


@pytest.mark.asyncio
async def test_input_must_be_json(code_engine):
    with pytest.raises(ConverterExecutionError, match="not JSON-compatible"):
        await code_engine.run("def handle(input): pass", {1, 2}, runtime="python")


@pytest.mark.asyncio
async def test_missing_binary():
    engine = SubprocessCodeExecutionEngine(node_binary="nodechain-no-such-node", timeout=1.0)

    with pytest.raises(ConverterExecutionError, match="not found") as exc:
        await engine.run("function handle(input) { return input; }", 1)

    assert exc.value.phase == "runtime"


# --------------------------
# JavaScript runtime
# --------------------------

@requires_node
@pytest.mark.asyncio
async def test_js_converter(code_engine):
    code = "export async function handle(input) { return { symbol: input.price[0].symbol }; }"

    output = await code_engine.run(code, {"price": [{"symbol": "BTCUSDT", "price": "1"}]})

    assert output == {"symbol": "BTCUSDT"}


@requires_node
@pytest.mark.asyncio
async def test_js_undefined_result_is_null(code_engine):
    assert await code_engine.run("function handle(input) {}", 1) is None


@requires_node
@pytest.mark.asyncio
async def test_js_has_no_host_access(code_engine):
    code = "function handle(input) { return [typeof require, typeof process]; }"

    assert await code_engine.run(code, None) == ["undefined", "undefined"]


@requires_node
@pytest.mark.asyncio
async def test_js_context_escape_finds_no_host_process(code_engine):
    code = """
    function handle(input) {
      let host;
      try {
        host = this.constructor.constructor('return [typeof process, typeof fetch, typeof Buffer]')();
      } catch (e) {
        host = ['blocked'];
      }
      return host;
    }
    """

    output = await code_engine.run(code, None)

    assert "object" not in output
    assert "function" not in output


@requires_node
@pytest.mark.asyncio
async def test_js_context_escape_cannot_read_files(code_engine):
    code = """
    function handle(input) {
      const escape = this.constructor.constructor;
      const host = escape('return process')();
      return host.mainModule.require('fs').readdirSync('/');
    }
    """

    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.run(code, None)

    assert exc.value.phase == "runtime"


@requires_node
@pytest.mark.asyncio
async def test_js_compile_error(code_engine):
    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.check("function handle(input { return 1 }")

    assert exc.value.phase == "compile"
    assert "SyntaxError" in exc.value.detail


@requires_node
@pytest.mark.asyncio
async def test_js_runtime_error(code_engine):
    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.run("async function handle(input) { throw new Error('bad input'); }", {})

    assert exc.value.phase == "runtime"
    assert exc.value.detail == "Error: bad input"


@requires_node
@pytest.mark.asyncio
async def test_js_timeout(code_engine):
    with pytest.raises(ConverterExecutionError) as exc:
        await code_engine.run("function handle(input) { while (true) {} }", None, timeout=0.5)

    assert exc.value.phase == "timeout"
