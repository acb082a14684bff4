"""Error taxonomy shared by the ingestion and retrieval pipelines."""


class KBEngineError(Exception):
    """Base class for all KBEngine errors."""


class ValidationError(KBEngineError, ValueError):
    """Input rejected before any gateway call (empty question or document)."""


class UpstreamError(KBEngineError):
    """Embedding or answer generation gateway failed or returned nothing."""


class StoreError(KBEngineError):
    """Vector store insert or query failed."""


class LoggingError(KBEngineError):
    """Audit log write failed. Never fatal to the caller."""
