"""Synchronization pipeline components."""

from .content import build_content
from .diagnostics import VectorDiagnostics
from .embeddings import EmbeddingClient, HashedEmbeddingProvider, OpenAIEmbeddingProvider
from .orchestrator import SyncOrchestrator
from .status import SyncStatusRegistry

__all__ = [
    "build_content",
    "VectorDiagnostics",
    "EmbeddingClient",
    "HashedEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "SyncOrchestrator",
    "SyncStatusRegistry",
]
