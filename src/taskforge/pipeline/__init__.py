"""Task pipeline: state definitions and the orchestrator.

Usage::

    from taskforge.pipeline.orchestrator import PipelineOrchestrator

    orchestrator = PipelineOrchestrator(task, config, runner=runner)
    result = orchestrator.run()

Only the state enums are re-exported here; the orchestrator module pulls in
every phase and is imported explicitly.
"""

from taskforge.pipeline.states import OrchestratorState, PipelinePhase

__all__ = ["OrchestratorState", "PipelinePhase"]
