from .orchestrator import PlaylistOrchestrator, submission_fingerprint
from .stages import PipelineRun, PipelineStage

__all__ = ["PlaylistOrchestrator", "PipelineStage", "PipelineRun", "submission_fingerprint"]
