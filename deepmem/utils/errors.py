"""
Error taxonomy shared by the ingestion pipeline and its store clients.
"""


class DeepMemoryError(Exception):
    """Base exception for deep memory errors."""
    pass


class ConfigurationError(DeepMemoryError):
    """Invalid configuration fragment (ruleset JSON, regex, threshold)."""
    pass


class ValidationError(DeepMemoryError):
    """Malformed request shape, surfaced to the caller."""
    pass


class UpstreamError(DeepMemoryError):
    """Embedder, vector store or graph store call failed or timed out."""
    pass
