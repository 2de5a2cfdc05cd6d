from ._version import version as __version__
from .job_store import Job, JobStore, StageState
from .pipeline import BatchPipeline, RunSummary, TransformSpec

__all__ = [
    "__version__",
    "BatchPipeline",
    "Job",
    "JobStore",
    "RunSummary",
    "StageState",
    "TransformSpec",
]
