"""
Error taxonomy for the retrieval and memory core.

Input errors are raised synchronously to the caller. Upstream errors (embedding,
language model) are recovered inside the core and only surface through logs and
task state. Persistence errors are fatal and always propagate.
"""


class RecallError(Exception):
    """Base class for all errors raised by the core."""
    pass


class InputError(RecallError, ValueError):
    """Caller supplied something the core will not coerce."""
    pass


class UnsupportedFormatError(InputError):
    """No extractor is available for the document's format."""
    pass


class EmptyQueryError(InputError):
    """Search query is empty after trimming."""
    pass


class DimensionMismatchError(InputError):
    """Vector length differs from the collection it is being compared or stored with."""
    pass


class EmbeddingError(RecallError):
    """Remote embedding call failed or returned a malformed vector."""
    pass


class ExtractionError(RecallError):
    """Language model response violated the expected JSON contract."""
    pass


class PersistenceError(RecallError):
    """The backing database is unavailable or rejected a write."""
    pass


class TaskError(RecallError):
    """A background task ran but did not achieve its effect and should be retried."""
    pass


class LanguageModelError(RecallError):
    """Chat completion call failed or timed out upstream."""
    pass
