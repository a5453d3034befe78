"""Orchestrator package - chunking, scheduling and session lifecycle."""
from .core import StreamUploadOrchestrator
from .chunker import StreamChunker
from .scheduler import UploadScheduler
from .session import UploadSession

__all__ = ["StreamUploadOrchestrator", "StreamChunker", "UploadScheduler", "UploadSession"]
