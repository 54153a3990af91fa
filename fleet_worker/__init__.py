from .backlog import DirectoryBacklog, StaticBacklog
from .context import RunSummary, WorkerContext
from .local_cache import LocalCompletionCache
from .processor import HttpFetchProcessor, ItemProcessor, ProcessResult
from .runner import WorkerRunner

__all__ = [
    "DirectoryBacklog",
    "HttpFetchProcessor",
    "ItemProcessor",
    "LocalCompletionCache",
    "ProcessResult",
    "RunSummary",
    "StaticBacklog",
    "WorkerContext",
    "WorkerRunner",
]
