"""
Sandboxed execution of converter code.

Converter code defines a single function `handle(input)`.
`SubprocessCodeExecutionEngine` runs every call in a fresh child process with
an empty environment, a temporary working directory, a memory ceiling and a
hard wall-clock timeout, so nothing leaks from one converter into another and
user code never runs inside the host interpreter.

JavaScript runs under the Node.js permission model with reads limited to the
runner script. The runner removes host globals such as `process` before user
code is evaluated, so reaching the host realm through the vm context yields
nothing useful. Python code is compiled with RestrictedPython and executed
with its guards.

Protocol with the child: one JSON request on stdin
`{"mode": "run" | "check", "code": str, "input": str}` (input is itself a JSON
string) and one JSON reply on stdout, either `{"ok": true, "output": ...}` or
`{"ok": false, "phase": "compile" | "runtime", "error": str}`.
"""

import asyncio
import json
import logging
import re
import shutil
import sys
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..config import get_settings
from ..workflow.errors import ConverterExecutionError

logger = logging.getLogger(__name__)

RUNTIMES = ("js", "python")

_EXPORT = re.compile(r"^(\s*)export\s+(default\s+)?", re.MULTILINE)
_NODE_VERSION = re.compile(r"v?(\d+)\.(\d+)")

JS_RUNNER = r"""
'use strict';
const vm = require('vm');

const HOST_GLOBALS = [
  'process', 'fetch', 'WebSocket', 'EventSource', 'Request', 'Response', 'Headers',
  'FormData', 'BroadcastChannel', 'MessageChannel', 'MessagePort', 'Worker',
  'SharedArrayBuffer', 'Atomics', 'WebAssembly', 'navigator', 'Buffer',
];

const describe = (e) => {
  if (e && typeof e === 'object' && 'message' in e) {
    return (e.name ? e.name + ': ' : '') + e.message;
  }
  return String(e);
};
const stdout = process.stdout;
const reply = (text) => stdout.write(text);

// Whatever a context escape reaches in the host realm must be inert.
const lockdown = () => {
  for (const name of HOST_GLOBALS) {
    try {
      delete globalThis[name];
    } catch (e) {
      // non-configurable, shadowed below
    }
    if (name in globalThis) {
      try {
        Object.defineProperty(globalThis, name, { value: undefined, writable: false, configurable: false });
      } catch (e) {
        // left in place; the permission model still applies
      }
    }
  }
};

const chunks = [];
process.stdin.on('data', (c) => chunks.push(c));
process.stdin.on('end', async () => {
  const req = JSON.parse(Buffer.concat(chunks).toString('utf8'));
  lockdown();
  let script;
  try {
    script = new vm.Script(
      req.code + '\n;(typeof handle === "function") ? handle : undefined;',
      { filename: 'converter.js' },
    );
  } catch (e) {
    reply(JSON.stringify({ ok: false, phase: 'compile', error: describe(e) }));
    return;
  }
  if (req.mode === 'check') {
    reply(JSON.stringify({ ok: true, output: null }));
    return;
  }

  const sandbox = Object.create(null);
  sandbox.__input = req.input;
  const context = vm.createContext(sandbox, { codeGeneration: { strings: false, wasm: false } });
  let handle;
  try {
    handle = script.runInContext(context, { timeout: req.timeoutMs });
  } catch (e) {
    reply(JSON.stringify({ ok: false, phase: 'runtime', error: describe(e) }));
    return;
  }
  if (typeof handle !== 'function') {
    reply(JSON.stringify({ ok: false, phase: 'compile', error: 'handle is not defined as a function' }));
    return;
  }
  try {
    const input = vm.runInContext('JSON.parse(__input)', context);
    const output = await handle(input);
    const encoded = JSON.stringify(output === undefined ? null : output);
    reply('{"ok":true,"output":' + (encoded === undefined ? 'null' : encoded) + '}');
  } catch (e) {
    reply(JSON.stringify({ ok: false, phase: 'runtime', error: describe(e) }));
  }
});
"""

PY_RUNNER = r"""
import builtins
import io
import json
import operator
import sys

request = json.loads(sys.stdin.read())
out = sys.stdout
sys.stdout = io.StringIO()


def reply(message):
    out.write(json.dumps(message))
    out.flush()


def describe(e):
    return f"{type(e).__name__}: {e}"


try:
    import resource
    limit = request["memoryBytes"]
    resource.setrlimit(resource.RLIMIT_AS, (limit, limit))
except (ImportError, ValueError, OSError):
    pass  # RLIMIT_AS is not enforceable on every platform

from RestrictedPython import compile_restricted_exec
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safe_builtins,
    safer_getattr,
)
from RestrictedPython.Limits import limited_builtins
from RestrictedPython.PrintCollector import PrintCollector
from RestrictedPython.Utilities import utility_builtins

EXTRA_NAMES = (
    "all", "any", "dict", "enumerate", "filter", "list", "map", "max", "min",
    "print", "reversed", "sum",
)
INPLACE = {
    "+=": operator.iadd, "-=": operator.isub, "*=": operator.imul, "/=": operator.itruediv,
    "//=": operator.ifloordiv, "%=": operator.imod, "**=": operator.ipow,
    "|=": operator.ior, "&=": operator.iand, "^=": operator.ixor,
}


def inplacevar(op, x, y):
    return INPLACE[op](x, y)


def apply(f, *args, **kwargs):
    return f(*args, **kwargs)


restricted_builtins = dict(safe_builtins)
restricted_builtins.update(limited_builtins)
restricted_builtins.update(utility_builtins)
restricted_builtins.update({name: getattr(builtins, name) for name in EXTRA_NAMES})
restricted_builtins["__build_class__"] = builtins.__build_class__

compiled = compile_restricted_exec(request["code"], filename="<converter>")
if compiled.errors:
    reply({"ok": False, "phase": "compile", "error": "; ".join(compiled.errors)})
    sys.exit(0)

if request["mode"] == "check":
    reply({"ok": True, "output": None})
    sys.exit(0)

scope = {
    "__builtins__": restricted_builtins,
    "__name__": "converter",
    "__metaclass__": type,
    "_getattr_": safer_getattr,
    "_getitem_": default_guarded_getitem,
    "_getiter_": default_guarded_getiter,
    "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
    "_unpack_sequence_": guarded_unpack_sequence,
    "_write_": full_write_guard,
    "_inplacevar_": inplacevar,
    "_print_": PrintCollector,
    "_apply_": apply,
}
try:
    exec(compiled.code, scope)
    handle = scope.get("handle")
    if not callable(handle):
        reply({"ok": False, "phase": "compile", "error": "handle is not defined as a function"})
        sys.exit(0)
    encoded = json.dumps(handle(json.loads(request["input"])))
except Exception as e:
    reply({"ok": False, "phase": "runtime", "error": describe(e)})
    sys.exit(0)

out.write('{"ok": true, "output": ' + encoded + '}')
out.flush()
"""


def strip_exports(code: str) -> str:
    """ `export async function handle` -> `async function handle`. """
    return _EXPORT.sub(r"\1", code)


def parse_node_version(text: str) -> Tuple[int, int]:
    """ `v22.13.1` -> (22, 13). """
    match = _NODE_VERSION.match(text.strip())
    if match is None:
        raise ConverterExecutionError("runtime", f"Could not determine the Node.js version from {text.strip()!r}")
    return int(match.group(1)), int(match.group(2))


def node_permission_flag(version: Tuple[int, int]) -> str:
    """ The flag that turns on the Node.js permission model for `version`. """
    if version >= (23, 5) or (22, 13) <= version < (23, 0):
        return "--permission"
    if version >= (20, 0):
        return "--experimental-permission"
    raise ConverterExecutionError(
        "runtime", f"Node.js >= 20 is required to sandbox converters, found {version[0]}.{version[1]}"
    )


class CodeExecutionEngine(ABC):
    """ Runs converter code against an input value. """

    @abstractmethod
    async def run(self, code: str, input: Any, *, runtime: str = "js",
                  timeout: Optional[float] = None) -> Any:
        """
        Evaluate `handle(input)` and return its JSON-compatible result.
        Raises ConverterExecutionError with phase compile, runtime or timeout.
        """

    @abstractmethod
    async def check(self, code: str, runtime: str = "js") -> None:
        """ Compile without executing; raises ConverterExecutionError(phase="compile"). """


class SubprocessCodeExecutionEngine(CodeExecutionEngine):

    def __init__(self, *, node_binary: Optional[str] = None, python_binary: Optional[str] = None,
                 timeout: Optional[float] = None, memory_mb: Optional[int] = None,
                 max_concurrency: Optional[int] = None):
        settings = get_settings()
        self.node_binary = node_binary or settings.node_binary
        self.python_binary = python_binary or settings.python_binary or sys.executable
        self.timeout = timeout if timeout is not None else settings.converter_timeout
        self.memory_mb = memory_mb or settings.converter_memory_mb
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.converter_max_concurrency)
        self._node_versions: Dict[str, Tuple[int, int]] = {}

    async def run(self, code: str, input: Any, *, runtime: str = "js",
                  timeout: Optional[float] = None) -> Any:
        timeout = timeout if timeout is not None else self.timeout
        try:
            encoded_input = json.dumps(input)
        except (TypeError, ValueError) as e:
            raise ConverterExecutionError("runtime", f"input is not JSON-compatible: {e}") from e
        reply = await self._execute(runtime, {
            "mode": "run",
            "code": strip_exports(code),
            "input": encoded_input,
            "timeoutMs": int(timeout * 1000),
        }, timeout)
        return reply.get("output")

    async def check(self, code: str, runtime: str = "js") -> None:
        await self._execute(runtime, {"mode": "check", "code": strip_exports(code), "input": "null"},
                            self.timeout)

    async def _command(self, runtime: str, workdir: Path) -> List[str]:
        if runtime == "js":
            binary = shutil.which(self.node_binary)
            if binary is None:
                raise ConverterExecutionError("runtime", f"JavaScript runtime binary '{self.node_binary}' not found")
            runner = workdir / "runner.cjs"
            runner.write_text(JS_RUNNER)
            permission = node_permission_flag(await self._node_version(binary))
            return [binary, permission, f"--allow-fs-read={runner.resolve()}",
                    f"--max-old-space-size={self.memory_mb}", str(runner.resolve())]
        if runtime == "python":
            binary = shutil.which(self.python_binary)
            if binary is None:
                raise ConverterExecutionError("runtime", f"Python runtime binary '{self.python_binary}' not found")
            runner = workdir / "runner.py"
            runner.write_text(PY_RUNNER)
            # -S would hide RestrictedPython, which lives in site-packages
            return [binary, "-I", str(runner)]
        raise ConverterExecutionError("compile", f"Unsupported converter runtime {runtime!r}, expected one of {RUNTIMES}")

    async def _node_version(self, binary: str) -> Tuple[int, int]:
        if binary not in self._node_versions:
            proc = await asyncio.create_subprocess_exec(
                binary, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env={},
            )
            stdout, _ = await proc.communicate()
            self._node_versions[binary] = parse_node_version(stdout.decode("utf-8", errors="replace"))
            logger.debug("Using Node.js %s.%s at %s", *self._node_versions[binary], binary)
        return self._node_versions[binary]

    async def _execute(self, runtime: str, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        request["memoryBytes"] = self.memory_mb * 1024 * 1024
        payload = json.dumps(request).encode("utf-8")

        async with self._semaphore:
            with tempfile.TemporaryDirectory(prefix="nodechain-") as tmp:
                workdir = Path(tmp)
                argv = await self._command(runtime, workdir)
                proc = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=tmp,
                    env={},
                )
                try:
                    stdout, stderr = await asyncio.wait_for(proc.communicate(payload), timeout=timeout)
                except asyncio.TimeoutError:
                    raise ConverterExecutionError("timeout", f"handle() did not finish within {timeout}s")
                finally:
                    if proc.returncode is None:
                        proc.kill()
                        await proc.wait()

        return self._parse_reply(stdout, stderr, proc.returncode)

    @staticmethod
    def _parse_reply(stdout: bytes, stderr: bytes, returncode: Optional[int]) -> Dict[str, Any]:
        text = stdout.decode("utf-8", errors="replace").strip()
        if not text:
            tail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            detail = tail or f"converter process exited with code {returncode} without a result"
            if returncode == 0 and not tail:
                detail = "handle() never resolved"
            raise ConverterExecutionError("runtime", detail)
        try:
            reply = json.loads(text)
        except ValueError:
            raise ConverterExecutionError("runtime", f"converter returned malformed output: {text[:200]}") from None
        if not reply.get("ok"):
            raise ConverterExecutionError(reply.get("phase", "runtime"), reply.get("error", "unknown error"))
        logger.debug("Converter finished (exit code %s)", returncode)
        return reply
