"""Analysis package -- health diagnostics, aggregates, and the decode job orchestrator."""
from analysis.health_analyzer import HealthAnalyzer, analyze
from analysis.aggregator import aggregate, histogram
from analysis.pipeline import DumpOutput, run_pipeline
from analysis.dump_orchestrator import DumpNotFoundError, DumpNotReadyError, DumpOrchestrator
