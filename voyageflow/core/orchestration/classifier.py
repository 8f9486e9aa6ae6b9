"""Intent classification with a content-hash cache.

Maps a natural-language query to a query type (intent) and the first
worker to run. Lookups go cache -> LLM (when configured) -> keyword rules.
Results are memoized under ``intent:<sha256>`` of the normalized query so
repeated questions cost nothing.
"""

import hashlib
import json
import re
import time
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    HumanMessage,
    SystemMessage,
)

from voyageflow.core.config import settings
from voyageflow.core.logging import logger
from voyageflow.core.orchestration.schema import Classification
from voyageflow.core.orchestration.workflows import (
    IntentWorkflowRegistry,
    intent_workflow_registry,
)
from voyageflow.core.state.kv import BaseKVStore

INTENT_CACHE_PREFIX = "intent:"
UNKNOWN_INTENT = "unknown"
MAX_QUERY_CHARS = 500

_ROUTE_PATTERN = re.compile(
    r"\bfrom\s+([a-z][a-z .'-]*?)\s+to\s+([a-z][a-z .'-]*?)(?=\s+(?:on|by|via|for|with|departing|next|and|in)\b|[,.?!]|$)",
    re.IGNORECASE,
)
_BETWEEN_PATTERN = re.compile(
    r"\bbetween\s+([a-z][a-z .'-]*?)\s+and\s+([a-z][a-z .'-]*?)(?=\s+(?:on|by|via|for|with|departing|next|in)\b|[,.?!]|$)",
    re.IGNORECASE,
)
_VESSELS_PATTERN = re.compile(
    r"\b(?:compare|vessels?|ships?)\s+([a-z][\w .'-]*?)\s+(?:and|vs\.?|versus)\s+([a-z][\w .'-]*?)(?=\s+(?:for|from|on|to)\b|[,.?!]|$)",
    re.IGNORECASE,
)

CLASSIFIER_SYSTEM_PROMPT = """You route maritime voyage questions to a workflow.

{workflows}

Respond ONLY with JSON:
{{"query_type": "<intent>", "confidence": <0-1>, "reasoning": "<brief>",
  "extracted_params": {{"origin_port": null, "destination_port": null, "vessel_names": []}}}}
query_type must be one of: {intents}. Use confidence below 0.6 when unsure."""


def normalize_query(query: str) -> str:
    """Normalize a query for hashing."""
    return query.lower().strip()[:MAX_QUERY_CHARS]


def query_hash(query: str) -> str:
    """Content hash of the normalized query."""
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()


def normalize_vessel_names(raw: Any) -> Optional[List[str]]:
    """Normalize vessel names to a list, splitting a single comma-joined entry."""
    if isinstance(raw, list) and all(isinstance(x, str) for x in raw):
        if len(raw) == 1 and "," in raw[0]:
            return [s.strip() for s in raw[0].split(",") if s.strip()]
        return [s.strip() for s in raw if s.strip()] or None
    if isinstance(raw, str) and raw.strip():
        return normalize_vessel_names([raw.strip()])
    return None


def extract_params(query: str) -> Dict[str, Any]:
    """Pull ports and vessel names out of a query with simple patterns."""
    params: Dict[str, Any] = {}
    match = _ROUTE_PATTERN.search(query) or _BETWEEN_PATTERN.search(query)
    if match:
        params["origin_port"] = match.group(1).strip().title()
        params["destination_port"] = match.group(2).strip().title()

    vessels = _VESSELS_PATTERN.search(query)
    if vessels:
        params["vessel_names"] = [vessels.group(1).strip().title(), vessels.group(2).strip().title()]
    return params


def _parse_json_response(content: str) -> Dict[str, Any]:
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
    return json.loads(fenced.group(1) if fenced else content)


class IntentClassifier:
    """Classifies queries into intents with caching."""

    def __init__(
        self,
        workflows: Optional[IntentWorkflowRegistry] = None,
        cache: Optional[BaseKVStore] = None,
        llm: Optional[BaseChatModel] = None,
        cache_ttl_seconds: Optional[int] = None,
    ):
        """Initialize the classifier.

        Args:
            workflows: Intent workflows providing keywords and first steps.
            cache: Store for memoized classifications.
            llm: Optional chat model for ambiguous queries.
            cache_ttl_seconds: Cache entry lifetime.
        """
        self.workflows = workflows or intent_workflow_registry
        self.cache = cache
        self.llm = llm
        self.cache_ttl_seconds = cache_ttl_seconds or settings.INTENT_CACHE_TTL_SECONDS

    async def classify(self, query: str) -> Classification:
        """Classify a query.

        Args:
            query: The user's question.

        Returns:
            Classification: Query type, first agent and extracted parameters.
        """
        start = time.perf_counter()
        digest = query_hash(query)

        if self.cache is not None:
            cached = await self.cache.get(INTENT_CACHE_PREFIX + digest)
            if cached is not None:
                result = Classification.model_validate_json(cached)
                logger.info("intent_cache_hit", query_type=result.query_type, query_hash=digest[:12])
                return result.model_copy(
                    update={"cache_hit": True, "latency_ms": int((time.perf_counter() - start) * 1000)}
                )

        result: Optional[Classification] = None
        if self.llm is not None:
            try:
                result = await self._classify_with_llm(query)
            except Exception as e:
                logger.exception("intent_llm_classification_failed", error=str(e))

        if result is None:
            result = self._classify_with_rules(query)

        params = {**extract_params(query), **{k: v for k, v in result.extracted_params.items() if v}}
        if "vessel_names" in params:
            params["vessel_names"] = normalize_vessel_names(params["vessel_names"]) or []
        result = result.model_copy(
            update={
                "extracted_params": params,
                "agent_id": result.agent_id or self._first_agent(result.query_type, params),
                "query_hash": digest,
                "latency_ms": int((time.perf_counter() - start) * 1000),
            }
        )

        if self.cache is not None:
            await self.cache.set(INTENT_CACHE_PREFIX + digest, result.model_dump_json(), self.cache_ttl_seconds)

        logger.info(
            "intent_classified",
            query_type=result.query_type,
            agent_id=result.agent_id,
            confidence=result.confidence,
            method=result.method,
        )
        return result

    def _first_agent(self, intent: str, params: Dict[str, Any]) -> Optional[str]:
        workflow = self.workflows.get(intent)
        if workflow is None:
            return None
        step = workflow.next_step(params)
        return step.agent if step else None

    def _classify_with_rules(self, query: str) -> Classification:
        """Score intents by keyword hits; ties go to the longer matched text."""
        text = normalize_query(query)
        best = None
        best_score = (0, 0)
        for intent in self.workflows.intents():
            workflow = self.workflows.get(intent)
            hits = [kw for kw in workflow.keywords if kw.lower() in text]
            score = (len(hits), sum(len(kw) for kw in hits))
            if score > best_score:
                best, best_score = intent, score

        if best is None:
            return Classification(
                query_type=UNKNOWN_INTENT,
                confidence=0.0,
                reasoning="No intent keywords matched",
                method="rules",
            )

        confidence = min(0.95, 0.5 + 0.15 * best_score[0])
        return Classification(
            query_type=best,
            confidence=confidence,
            reasoning=f"Matched {best_score[0]} keyword(s) for {best}",
            method="rules",
        )

    async def _classify_with_llm(self, query: str) -> Optional[Classification]:
        """Ask the chat model; returns None when the answer is unusable."""
        intents = self.workflows.intents()
        system_prompt = CLASSIFIER_SYSTEM_PROMPT.format(
            workflows=self.workflows.get_workflows_prompt(),
            intents=", ".join(intents),
        )
        response = await self.llm.ainvoke([SystemMessage(content=system_prompt), HumanMessage(content=f'Query: "{query}"')])
        content = response.content if isinstance(response.content, str) else json.dumps(response.content)
        data = _parse_json_response(content)

        query_type = data.get("query_type")
        if query_type not in intents:
            logger.warning("intent_llm_unknown_type", query_type=query_type)
            return None

        return Classification(
            query_type=query_type,
            confidence=float(data.get("confidence", 0.0)),
            reasoning=str(data.get("reasoning", "")),
            method="llm",
            extracted_params=data.get("extracted_params") or {},
        )
