"""
Execution records and where they are kept.

One Execution per run. It is saved RUNNING when the run is triggered and
saved again with its final status and snapshot when the run ends.

FileExecutionStore layout:
    {base_path}/
      {execution_id}.json
"""

import logging
import os
import tempfile
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class ExecutionState(StrEnum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class Execution(BaseModel):
    """A single run of a flow as seen from outside the engine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    flow_id: str
    status: ExecutionState = ExecutionState.RUNNING
    triggered_by: str = "API"
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    snapshot: dict[str, Any] | None = None

    @property
    def is_finished(self) -> bool:
        return self.status != ExecutionState.RUNNING


class ExecutionStore(Protocol):
    def save(self, execution: Execution) -> None: ...

    def get(self, execution_id: str) -> Execution | None: ...


class InMemoryExecutionStore:
    def __init__(self):
        self._executions: dict[str, Execution] = {}

    def save(self, execution: Execution) -> None:
        self._executions[execution.id] = execution.model_copy(deep=True)

    def get(self, execution_id: str) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    def list_executions(self, flow_id: str | None = None) -> list[Execution]:
        return [
            e.model_copy(deep=True)
            for e in self._executions.values()
            if flow_id is None or e.flow_id == flow_id
        ]


class FileExecutionStore:
    """One JSON file per execution. Uses Pydantic's built-in serialization."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _validate_key(self, key: str) -> None:
        """
        Validate key to prevent path traversal attacks.

        Raises:
            ValueError: If key contains path traversal or dangerous patterns
        """
        if not key or key.strip() == "":
            raise ValueError("Key cannot be empty")

        if "/" in key or "\\" in key:
            raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")

        if ".." in key or key.startswith("."):
            raise ValueError(f"Invalid key format: path traversal detected in '{key}'")

        if len(key) > 1 and key[1] == ":":
            raise ValueError(f"Invalid key format: absolute paths not allowed in '{key}'")

        if "\x00" in key:
            raise ValueError("Invalid key format: null bytes not allowed")

        dangerous_chars = {"<", ">", "|", "&", "$", "`", "'", '"'}
        if any(char in key for char in dangerous_chars):
            raise ValueError(f"Invalid key format: contains dangerous characters in '{key}'")

    def _path_for(self, execution_id: str) -> Path:
        self._validate_key(execution_id)
        return self.base_path / f"{execution_id}.json"

    def save(self, execution: Execution) -> None:
        path = self._path_for(execution.id)
        data = execution.model_dump_json(by_alias=True, indent=2)
        # Write then rename so readers never see a half-written file
        fd, tmp = tempfile.mkstemp(dir=self.base_path, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, execution_id: str) -> Execution | None:
        path = self._path_for(execution_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return Execution.model_validate_json(f.read())

    def list_executions(self, flow_id: str | None = None) -> list[Execution]:
        executions = []
        for path in sorted(self.base_path.glob("*.json")):
            if path.name.startswith("."):
                continue
            with open(path, encoding="utf-8") as f:
                execution = Execution.model_validate_json(f.read())
            if flow_id is None or execution.flow_id == flow_id:
                executions.append(execution)
        return executions
