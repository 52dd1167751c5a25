from .config import RunOptions
from .errors import (
    CancelledError,
    EmptyMatrixError,
    MalformedSpecError,
    ProcessSpawnError,
    StepFailure,
)
from .loader import load_workflow
from .matrix import JobInstance, expand_job, expand_workflow
from .model import ActionStep, Job, MatrixStrategy, ShellStep, Step, Workflow
from .results import AggregateResult, ExecutionResult, JobResult, JobState, StepStatus
from .scheduler import CancelToken, Scheduler, run

# Imported after the submodules: loading `runmatrix.matrix` binds the package
# attribute `matrix` to that module, which must not shadow the DSL helper.
from .dsl import JobBuilder, build, job, matrix, sh, uses, wf

__all__ = [
    "job", "sh", "uses", "matrix", "wf", "JobBuilder", "build",
    "Workflow", "Job", "MatrixStrategy", "ShellStep", "ActionStep", "Step",
    "JobInstance", "expand_job", "expand_workflow",
    "RunOptions", "run", "Scheduler", "CancelToken", "load_workflow",
    "AggregateResult", "JobResult", "ExecutionResult", "JobState", "StepStatus",
    "MalformedSpecError", "EmptyMatrixError", "ProcessSpawnError", "StepFailure", "CancelledError",
]
