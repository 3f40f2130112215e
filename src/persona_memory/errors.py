# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Error taxonomy for the persona memory core.

Every error raised across the MemoryManager boundary derives from
MemoryCoreError. Callers can inspect ``retryable`` to decide whether
an operation is worth repeating (dependency failures) or must be
fixed by the caller first (invalid input, missing records).

"No results" conditions (empty searches, no path, no similar
memories) are never errors.
"""

from typing import Optional


class MemoryCoreError(Exception):
    """Base class for all memory core errors.

    Attributes:
        retryable: True if repeating the operation may succeed.
    """

    retryable: bool = False


class InvalidInputError(MemoryCoreError, ValueError):
    """Raised when input is rejected before any state is touched."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NotFoundError(MemoryCoreError):
    """Raised when a write requires an entity that does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class DependencyError(MemoryCoreError):
    """Raised when persistence or the embedding model fails.

    The in-memory state is left as it was before the operation.
    """

    retryable = True

    def __init__(self, dependency: str, message: str):
        self.dependency = dependency
        super().__init__(f"{dependency} failure: {message}")


class ConfigurationError(MemoryCoreError, ValueError):
    """Raised when a policy configuration is inconsistent."""


class OperationInProgressError(MemoryCoreError):
    """Raised when a batch run is already active for the same scope."""

    retryable = True

    def __init__(self, operation: str, scope: str):
        self.operation = operation
        self.scope = scope
        super().__init__(f"{operation} is already running for scope '{scope}'")
