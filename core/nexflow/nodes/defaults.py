"""Wiring of the executors that ship with nexflow."""

from nexflow.config import EngineConfig
from nexflow.connectors import HttpConnectorClient, SqlConnectorClient
from nexflow.graph.resolver import ReferenceResolver
from nexflow.llm import LLMProvider
from nexflow.nodes.ai import AiExecutor
from nexflow.nodes.data import MapperExecutor, VariableExecutor
from nexflow.nodes.decision import DecisionExecutor
from nexflow.nodes.lifecycle import FailureExecutor, StartExecutor, SuccessExecutor
from nexflow.nodes.loop import LoopExecutor
from nexflow.nodes.nexus import NexusExecutor
from nexflow.nodes.registry import NodeExecutorRegistry
from nexflow.nodes.script import ScriptExecutor
from nexflow.nodes.sub_flow import SubFlowExecutor
from nexflow.sandbox import ScriptRunner
from nexflow.storage.connector_store import ConnectorStore


def create_default_registry(
    config: EngineConfig | None = None,
    connectors: ConnectorStore | None = None,
    llm_provider: LLMProvider | None = None,
    script_runner: ScriptRunner | None = None,
    http_client: HttpConnectorClient | None = None,
    sql_client: SqlConnectorClient | None = None,
) -> NodeExecutorRegistry:
    """
    One executor for every shipped node type, sharing a resolver and script runner.

    The SUB_FLOW executor starts unbound; FlowRuntime binds itself to it.
    """
    config = config or EngineConfig()
    resolver = ReferenceResolver()
    runner = script_runner or ScriptRunner(timeout_seconds=config.script_timeout_seconds)

    return NodeExecutorRegistry(
        [
            StartExecutor(),
            SuccessExecutor(resolver),
            FailureExecutor(resolver),
            VariableExecutor(resolver),
            MapperExecutor(resolver),
            DecisionExecutor(resolver, runner),
            LoopExecutor(resolver),
            ScriptExecutor(runner),
            NexusExecutor(
                connectors,
                http_client or HttpConnectorClient(timeout=config.http_timeout_seconds),
                sql_client,
                resolver,
            ),
            SubFlowExecutor(resolver=resolver),
            AiExecutor(
                llm_provider,
                config.llm_credentials,
                resolver,
                max_input_chars=config.ai_max_input_chars,
                default_model=config.llm_model,
                default_max_tokens=config.llm_max_tokens,
                default_temperature=config.llm_temperature,
            ),
        ]
    )
