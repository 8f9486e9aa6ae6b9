"""Process-wide wiring of the orchestration core.

``VoyageRuntime`` builds every collaborator over one key-value store and
one tool registry, so the HTTP app and the tests construct the same object
graph with different backends.
"""

from typing import Optional

from langchain_core.language_models import BaseChatModel

from voyageflow.core.catalog.registry import (
    CatalogRegistry,
    catalog_registry,
)
from voyageflow.core.langgraph.agents.workers import build_worker_registry
from voyageflow.core.langgraph.graph import VoyagePlanningGraph
from voyageflow.core.logging import logger
from voyageflow.core.observability.sink import (
    EventSink,
    event_sink,
)
from voyageflow.core.orchestration.classifier import IntentClassifier
from voyageflow.core.orchestration.executor import PlanExecutor
from voyageflow.core.orchestration.generator import PlanGenerator
from voyageflow.core.orchestration.validator import PlanValidator
from voyageflow.core.orchestration.workflows import (
    IntentWorkflowRegistry,
    intent_workflow_registry,
)
from voyageflow.core.persistence.checkpointer import DurableCheckpointSaver
from voyageflow.core.persistence.recovery import CheckpointRecovery
from voyageflow.core.resilience.circuit_breaker import (
    CircuitBreakerRegistry,
    circuit_breaker_registry,
)
from voyageflow.core.resilience.fallbacks import FallbackDispatcher
from voyageflow.core.resilience.tool_client import ResilientToolClient
from voyageflow.core.state.compressor import StateCompressor
from voyageflow.core.state.kv import (
    BaseKVStore,
    create_kv_store,
)
from voyageflow.core.state.reference_store import StateReferenceStore
from voyageflow.core.tools.http import HttpToolClient
from voyageflow.core.tools.registry import (
    ToolRegistry,
    build_http_tool_registry,
)


class VoyageRuntime:
    """All collaborators of one running service."""

    def __init__(
        self,
        store: BaseKVStore,
        tools: ToolRegistry,
        llm: Optional[BaseChatModel] = None,
        catalog: Optional[CatalogRegistry] = None,
        workflows: Optional[IntentWorkflowRegistry] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        sink: Optional[EventSink] = None,
        http_client: Optional[HttpToolClient] = None,
    ):
        """Wire the runtime.

        Args:
            store: Key-value store backing checkpoints, references and caches.
            tools: Tool implementations.
            llm: Optional chat model for classification and the final summary.
            catalog: Agent/tool catalog.
            workflows: Intent workflows.
            breakers: Per-tool circuit breakers.
            sink: Observability sink.
            http_client: HTTP tool client closed on shutdown.
        """
        self.store = store
        self.catalog = catalog or catalog_registry
        self.workflows = workflows or intent_workflow_registry
        self.breakers = breakers or circuit_breaker_registry
        self.sink = sink or event_sink
        self._http_client = http_client

        self.references = StateReferenceStore(store)
        self.compressor = StateCompressor(self.references)
        self.checkpointer = DurableCheckpointSaver(store, self.compressor, sink=self.sink)
        self.recovery = CheckpointRecovery(self.checkpointer)

        self.fallbacks = FallbackDispatcher(cache=store, catalog=self.catalog)
        self.tool_client = ResilientToolClient(tools, self.breakers, self.fallbacks, self.catalog, self.sink)
        self.workers = build_worker_registry(self.tool_client, llm)

        self.classifier = IntentClassifier(self.workflows, cache=store, llm=llm)
        self.generator = PlanGenerator(self.catalog, self.workflows)
        self.validator = PlanValidator(self.catalog)
        self.executor = PlanExecutor(self.workers, self.sink)
        self.graph = VoyagePlanningGraph(
            self.checkpointer,
            classifier=self.classifier,
            generator=self.generator,
            validator=self.validator,
            executor=self.executor,
        )

    async def close(self) -> None:
        """Flush events and release network resources."""
        await self.sink.close()
        if self._http_client is not None:
            await self._http_client.close()
        await self.store.close()
        logger.info("runtime_closed")


def build_runtime(
    store: Optional[BaseKVStore] = None,
    tools: Optional[ToolRegistry] = None,
    llm: Optional[BaseChatModel] = None,
) -> VoyageRuntime:
    """Build a runtime from configuration, HTTP tools by default."""
    http_client = None
    if tools is None:
        http_client = HttpToolClient()
        tools = build_http_tool_registry(catalog_registry, http_client)
    runtime = VoyageRuntime(store or create_kv_store(), tools, llm=llm, http_client=http_client)
    logger.info("runtime_built", tools=tools.list_tools())
    return runtime
