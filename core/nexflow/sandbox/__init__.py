"""Out-of-process execution of user-written scripts."""

from nexflow.sandbox.script_runner import ScriptResult, ScriptRunner

__all__ = ["ScriptRunner", "ScriptResult"]
