"""
Query mediation components for the InsightGate server.

This package contains the pipeline between model-emitted intents and the store:
- Whitelist: Resources, aggregates and field access rules
- Intents: Query, chart and summary intent schemas
- Validation: Staged checks ending in a ValidationResult
- Compiler: Parameterized, tenant-scoped SQL with AST verification
- Executor: Runs compiled queries and assembles QueryResults
- Charts / Summarizer: Consumers of query results
- Orchestrator: The three tools exposed to the model
"""

from .intents import QueryIntent, ChartIntent, SummaryIntent, IntentKind
from .validation import ValidationPipeline, ValidationResult, ValidationContext
from .results import QueryResult
from .compiler import Compiler, CompiledQuery
from .executor import QueryExecutor
from .charts import ChartConfigurator, ChartConfiguration
from .summarizer import Summarizer
from .orchestrator import AnalyticsOrchestrator, TOOL_DEFINITIONS

__all__ = [
    "QueryIntent",
    "ChartIntent",
    "SummaryIntent",
    "IntentKind",
    "ValidationPipeline",
    "ValidationResult",
    "ValidationContext",
    "QueryResult",
    "Compiler",
    "CompiledQuery",
    "QueryExecutor",
    "ChartConfigurator",
    "ChartConfiguration",
    "Summarizer",
    "AnalyticsOrchestrator",
    "TOOL_DEFINITIONS",
]
