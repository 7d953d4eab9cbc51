from .dsl import job, sh, cache_key, restore_cache, save_cache, only, ignore, workflow, wf
from .model import Job, JobRun, JobStatus, Step, StepResult, Trigger
from .scheduler import WorkflowScheduler, PipelineResult
from .executor import JobExecutor
from .cache import CacheStore

__all__ = [
    "job", "sh", "cache_key", "restore_cache", "save_cache", "only", "ignore", "workflow", "wf",
    "Job", "JobRun", "JobStatus", "Step", "StepResult", "Trigger",
    "WorkflowScheduler", "PipelineResult", "JobExecutor", "CacheStore",
]
