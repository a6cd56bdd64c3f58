"""
Exceptions for the MoveMatrix composition pipeline.

Validation problems in a user's graph are reported as ValidationIssue data,
not raised. The classes below cover the conditions that must stop a
pipeline stage or that are caught at an external boundary.
"""

from typing import Optional, Any, Dict, List


class MoveMatrixError(Exception):
    """Base exception for all MoveMatrix errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class CatalogError(MoveMatrixError):
    """Base exception for primitive catalog errors."""
    pass


class CatalogUnavailableError(CatalogError):
    """Raised when the primitive catalog cannot be loaded."""

    def __init__(self, message: str, path: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.path = path


class PrimitiveNotFoundError(CatalogError):
    """Raised when a primitive id is not present in the catalog."""

    def __init__(self, primitive_id: str):
        super().__init__(f"Primitive not found: {primitive_id}")
        self.primitive_id = primitive_id


class GenerationError(MoveMatrixError):
    """Raised when code generation cannot proceed."""
    pass


class CircularDependencyError(GenerationError):
    """Raised when dependency ordering meets a cycle."""

    def __init__(self, cycle: List[str], details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}", details)
        self.cycle = cycle


class CompositionError(MoveMatrixError):
    """Base exception for composition lifecycle errors."""

    def __init__(self, message: str, composition_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.composition_id = composition_id


class CompositionNotFoundError(CompositionError):
    """Raised when a composition does not exist."""
    pass


class InvalidStatusTransitionError(CompositionError):
    """Raised when a composition status change is not allowed."""

    def __init__(self, current: str, requested: str, composition_id: Optional[str] = None):
        super().__init__(
            f"Cannot move composition from '{current}' to '{requested}'",
            composition_id,
        )
        self.current = current
        self.requested = requested


class ExternalServiceError(MoveMatrixError):
    """Base exception for failures of an external collaborator."""
    pass


class RefinementError(ExternalServiceError):
    """Raised when the refinement service fails or returns unusable output."""
    pass


class CompilationError(ExternalServiceError):
    """Raised when the Move compiler CLI fails."""

    def __init__(self, message: str, output: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.output = output


class DeploymentError(ExternalServiceError):
    """Raised when publishing a compiled package fails."""

    def __init__(self, message: str, output: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.output = output
