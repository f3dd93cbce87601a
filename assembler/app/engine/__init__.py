from .errors import (
    AssemblyError,
    AssemblyStage,
    ImageDecodeFailure,
    NoTemplateAvailable,
    RenderBindingError,
    TemplateNotFound,
)
from .orchestrator import AssembledDocument, AssemblyOrchestrator, default_filename
from .sink import DocumentSink, WorkspaceSink
from .template_store import TemplateStore

__all__ = [
    "AssembledDocument",
    "AssemblyError",
    "AssemblyOrchestrator",
    "AssemblyStage",
    "DocumentSink",
    "ImageDecodeFailure",
    "NoTemplateAvailable",
    "RenderBindingError",
    "TemplateNotFound",
    "TemplateStore",
    "WorkspaceSink",
    "default_filename",
]
