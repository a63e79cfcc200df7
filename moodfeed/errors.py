"""Error taxonomy shared by the curation engine and its adapters."""


class CurationError(Exception):
    """Base class for curation engine errors."""


class InvalidInput(CurationError):
    """A required input is missing or empty. Never retried."""


class TransientCollaboratorError(CurationError):
    """An external collaborator failed or timed out.

    Attributes:
        collaborator: Short name of the failing collaborator
            ("reasoning", "embedding", "video_search", "comments", ...)
    """

    def __init__(self, message: str, collaborator: str = "unknown"):
        super().__init__(message)
        self.collaborator = collaborator


class EmbeddingUnavailable(TransientCollaboratorError):
    """The embedding model could not produce a vector."""

    def __init__(self, message: str):
        super().__init__(message, collaborator="embedding")


class ContextEmbeddingUnavailable(EmbeddingUnavailable):
    """No query vector could be computed for a filtering request."""


class StoreUnavailable(CurationError):
    """The content corpus store cannot be reached."""
