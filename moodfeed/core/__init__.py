"""Curation engine: context building, embeddings and workflows."""

from moodfeed.core.context_builder import ContextBuilder
from moodfeed.core.embeddings import EmbeddingGateway
from moodfeed.core.orchestrator import CurationOrchestrator, CurationSettings, bounded_gather

__all__ = [
    "ContextBuilder",
    "CurationOrchestrator",
    "CurationSettings",
    "EmbeddingGateway",
    "bounded_gather",
]
