"""
Script Runner - Executes user code in a child interpreter.

Supported languages:
    python      run with python3; the script assigns `result`
    javascript  run with node; the script `return`s a value

Each call:
1. Writes the input to a temp JSON file
2. Wraps the user code in a harness that loads the input, catches errors and
   prints one JSON line {"success": ..., "output" | "error": ...}
3. Runs the interpreter as an asyncio subprocess, killing it on timeout
4. Parses stdout and always deletes both temp files

run() never raises; every problem comes back as a failed ScriptResult.
"""

import asyncio
import json
import logging
import os
import tempfile
import textwrap
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

_PYTHON_HARNESS = """\
import contextlib
import json
import sys

with open(sys.argv[1], encoding="utf-8") as _f:
    input = json.load(_f)

result = None
try:
    with contextlib.redirect_stdout(sys.stderr):
{body}
    _reply = {{"success": True, "output": result}}
except Exception as _e:
    _reply = {{"success": False, "error": str(_e) or type(_e).__name__}}
print(json.dumps(_reply, default=str))
"""

_JAVASCRIPT_HARNESS = """\
const fs = require('fs');
const input = JSON.parse(fs.readFileSync(process.argv[2], 'utf8'));
console.log = (...args) => console.error(...args);

try {{
    const result = (function(input) {{
{body}
    }})(input);
    process.stdout.write(JSON.stringify({{ success: true, output: result ?? null }}));
}} catch (e) {{
    process.stdout.write(JSON.stringify({{ success: false, error: e && e.message ? e.message : String(e) }}));
}}
"""


@dataclass
class ScriptResult:
    """Outcome of one script run."""

    success: bool
    output: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, output: Any) -> "ScriptResult":
        return cls(success=True, output=output)

    @classmethod
    def failed(cls, message: str) -> "ScriptResult":
        return cls(success=False, error=message)


class ScriptRunner:
    """
    Runs Python or JavaScript snippets against a JSON input.

    Example:
        runner = ScriptRunner(timeout_seconds=5)
        result = await runner.run("python", "result = input['a'] * 2", {"a": 21})
        result.output  # 42
    """

    SUPPORTED_LANGUAGES = ("python", "javascript")

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        python_executable: str = "python3",
        node_executable: str = "node",
    ):
        self.timeout_seconds = timeout_seconds
        self.python_executable = python_executable
        self.node_executable = node_executable

    async def run(self, language: str, code: str, input_data: Any) -> ScriptResult:
        lang = (language or "").strip().lower()
        if lang == "python":
            script = _PYTHON_HARNESS.format(body=textwrap.indent(code, " " * 8))
            return await self._run_script(".py", script, input_data, self.python_executable)
        if lang == "javascript":
            script = _JAVASCRIPT_HARNESS.format(body=textwrap.indent(code, " " * 8))
            return await self._run_script(".js", script, input_data, self.node_executable)
        return ScriptResult.failed(
            f"Unsupported language: {language}. Use 'javascript' or 'python'."
        )

    async def _run_script(
        self,
        suffix: str,
        script: str,
        input_data: Any,
        interpreter: str,
    ) -> ScriptResult:
        script_path = None
        input_path = None
        try:
            input_path = _write_temp("nf_input_", ".json", json.dumps(input_data, default=str))
            script_path = _write_temp("nf_script_", suffix, script)

            try:
                proc = await asyncio.create_subprocess_exec(
                    interpreter,
                    script_path,
                    input_path,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError:
                return ScriptResult.failed(f"Interpreter not found: {interpreter}")

            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(), timeout=self.timeout_seconds
                )
            except TimeoutError:
                proc.kill()
                await proc.wait()
                return ScriptResult.failed(
                    f"Script timed out after {self.timeout_seconds:g} seconds. "
                    "Check for infinite loops."
                )

            out = stdout.decode("utf-8", errors="replace").strip()
            err = stderr.decode("utf-8", errors="replace").strip()
            if err:
                logger.debug(f"Script stderr: {err[:500]}")

            # Interpreter errors (syntax errors etc.) leave stdout empty
            if not out:
                return ScriptResult.failed(err or "Script produced no output.")

            try:
                reply = json.loads(out.splitlines()[-1])
            except json.JSONDecodeError:
                return ScriptResult.failed(f"Script output is not valid JSON: {out[:200]}")

            if isinstance(reply, dict) and reply.get("success") is True:
                return ScriptResult.ok(reply.get("output"))
            error = reply.get("error") if isinstance(reply, dict) else None
            return ScriptResult.failed(error or "Script returned failure.")

        except OSError as e:
            logger.error(f"Script runner IO error: {e}")
            return ScriptResult.failed(f"Failed to run script: {e}")
        finally:
            _remove(script_path)
            _remove(input_path)


def _write_temp(prefix: str, suffix: str, content: str) -> str:
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    return path


def _remove(path: str | None) -> None:
    if path is None:
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not delete temp file {path}: {e}")
