"""
Analytics Orchestrator - Tool entry points handed to the model.

This module wires the validation pipeline, the query executor and the two
result consumers behind the three tools the model may call:
queryDatabase, generateChart and summarizeData.
"""

import json
import math
from typing import Any, Awaitable, Callable, Optional, Type

import structlog
from pydantic import BaseModel

from insightgate.analytics import whitelist
from insightgate.analytics.charts import ChartConfigurator
from insightgate.analytics.executor import QueryExecutor
from insightgate.analytics.gate import UsageGate, create_gate
from insightgate.analytics.intents import (
    ChartIntent,
    IntentKind,
    QueryIntent,
    SummaryIntent,
    query_of,
)
from insightgate.analytics.summarizer import Summarizer
from insightgate.analytics.tenant import (
    StaticTenantContextProvider,
    TenantContext,
    TenantContextProvider,
)
from insightgate.analytics.validation import ValidationPipeline, ValidationStage
from insightgate.errors import TenantContextMissing

logger = structlog.get_logger(__name__)

NO_RESULTS_MESSAGE = "No results found for your query. Try adjusting your filters."
NO_CHART_DATA_MESSAGE = "No data available to generate chart. Try adjusting your query."
NO_SUMMARY_DATA_MESSAGE = "No data available to summarize. Try adjusting your query."

SYSTEM_PROMPT = f"""You are a business intelligence assistant for a multi-tenant SaaS dashboard. Help users analyze their data through natural language queries.

Your capabilities:
1. Query databases for specific metrics, counts, and filtered results
2. Generate charts and visualizations from query results
3. Summarize data with trends, comparisons, and anomalies

Guidelines:
- Always use tools when users ask about specific data
- Provide context about what the data shows
- Suggest relevant filters when helpful
- Use appropriate aggregations (count, sum, avg, min, max)
- Format numbers for readability (1,234.56, $1.2M, etc.)

Resources available: {", ".join(whitelist.list_allowed_resources())}"""


def _tool_schema(model: Type[BaseModel]) -> dict[str, Any]:
    schema = model.model_json_schema(by_alias=True)
    for s in (schema, *schema.get("$defs", {}).values()):
        if "resource" in s.get("properties", {}):
            s["properties"]["resource"]["enum"] = whitelist.list_allowed_resources()
    return schema


TOOL_DEFINITIONS = (
    {
        "name": "queryDatabase",
        "description": "Execute a database query to retrieve data about customers, "
        "revenue, activities, and more. Use this for any specific data requests.",
        "parameters": _tool_schema(QueryIntent),
    },
    {
        "name": "generateChart",
        "description": "Generate a chart configuration from data. "
        "Use this when the user wants to visualize data.",
        "parameters": _tool_schema(ChartIntent),
    },
    {
        "name": "summarizeData",
        "description": "Generate a natural language summary of data. "
        "Use this to provide insights, trends, or comparisons.",
        "parameters": _tool_schema(SummaryIntent),
    },
)


def estimate_cost(args: Any) -> int:
    """Rough token cost of handling a tool call."""
    return math.ceil(len(json.dumps(args, default=str)) / 4)


class AnalyticsOrchestrator:
    """
    Entry point for tool calls emitted by the model.

    Flow per call:
    1. Tenant context from the provider
    2. Usage gate: allow or deny
    3. Validation pipeline for the tool's intent kind
    4. Query executor for the (embedded) query intent
    5. Chart configurator or summarizer when requested
    """

    def __init__(
        self,
        executor: QueryExecutor,
        pipeline: Optional[ValidationPipeline] = None,
        charts: Optional[ChartConfigurator] = None,
        summarizer: Optional[Summarizer] = None,
        gate: Optional[UsageGate] = None,
        tenant_provider: Optional[TenantContextProvider] = None,
    ):
        self.executor = executor
        self.pipeline = pipeline or ValidationPipeline()
        self.charts = charts or ChartConfigurator()
        self.summarizer = summarizer or Summarizer()
        self.gate = gate or create_gate()
        self.tenant_provider = tenant_provider or StaticTenantContextProvider()
        self._tools: dict[str, Callable[[Any], Awaitable[dict[str, Any]]]] = {
            "queryDatabase": self.query_database,
            "generateChart": self.generate_chart,
            "summarizeData": self.summarize_data,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def dispatch(self, tool_name: str, args: Any) -> dict[str, Any]:
        """
        Run a tool by name.

        Raises:
            KeyError: If no tool has that name
        """
        if (tool := self._tools.get(tool_name)) is None:
            raise KeyError(f"Unknown tool '{tool_name}'")
        return await tool(args)

    async def query_database(self, args: Any) -> dict[str, Any]:
        admitted = await self._admit(IntentKind.QUERY, args)
        if isinstance(admitted, dict):
            return admitted
        intent, tenant = admitted

        result = await self.executor.execute(intent, tenant.tenant_id)
        response = {"success": True, **result.to_dict()}
        if result.is_empty:
            response["message"] = NO_RESULTS_MESSAGE
        return response

    async def generate_chart(self, args: Any) -> dict[str, Any]:
        admitted = await self._admit(IntentKind.CHART, args)
        if isinstance(admitted, dict):
            return admitted
        intent, tenant = admitted

        result = await self.executor.execute(query_of(intent), tenant.tenant_id)
        if result.is_empty:
            return {"success": False, "error": NO_CHART_DATA_MESSAGE}

        chart = self.charts.configure(intent, result)
        return {
            "success": True,
            "chart": chart.to_dict(),
            "dataPoints": result.metadata.row_count,
        }

    async def summarize_data(self, args: Any) -> dict[str, Any]:
        admitted = await self._admit(IntentKind.SUMMARY, args)
        if isinstance(admitted, dict):
            return admitted
        intent, tenant = admitted

        result = await self.executor.execute(query_of(intent), tenant.tenant_id)
        if result.is_empty:
            return {"success": False, "error": NO_SUMMARY_DATA_MESSAGE}

        return {
            "success": True,
            "summary": self.summarizer.summarize(intent, result),
            "dataPoints": result.metadata.row_count,
        }

    async def _admit(self, kind: IntentKind, args: Any):
        """Validated intent and tenant, or the failure response to return."""
        try:
            tenant: TenantContext = self.tenant_provider.get_tenant_context()
        except TenantContextMissing as e:
            logger.warning("tool_rejected", kind=str(kind), stage="tenant_context")
            return {
                "success": False,
                "error": f"Query validation failed: {e.message}",
                "stage": str(ValidationStage.TENANT_CONTEXT),
            }

        decision = await self.gate.check(tenant.tenant_id, estimate_cost(args))
        if not decision.allowed:
            return {
                "success": False,
                "error": "Unable to process the request at this time: "
                f"{decision.reason}",
            }

        validation = self.pipeline.validate(kind, args, tenant.validation_context())
        if not validation.success:
            return {
                "success": False,
                "error": "Query validation failed: "
                + "; ".join(validation.error_messages),
                "stage": str(validation.stage),
            }
        if validation.warnings:
            logger.info(
                "tool_validation_warnings",
                kind=str(kind),
                warnings=len(validation.warnings),
            )
        return validation.data, tenant
