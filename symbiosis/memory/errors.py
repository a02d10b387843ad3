"""Exception types raised by the conversational memory pipeline."""

from __future__ import annotations


class SymbiosisError(Exception):
    """Base class for pipeline errors."""


class MemoryServiceError(SymbiosisError):
    """The remote memory service could not be reached or returned an error."""


class GenerationError(SymbiosisError):
    """The language model call for the final response failed."""


class ServiceTimeoutError(SymbiosisError):
    """An external call exceeded its deadline."""


class TurnCancelledError(SymbiosisError):
    """The caller cancelled the turn while an external call was in flight."""


__all__ = [
    "GenerationError",
    "MemoryServiceError",
    "ServiceTimeoutError",
    "SymbiosisError",
    "TurnCancelledError",
]
