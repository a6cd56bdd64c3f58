"""
MoveMatrix Core - composition validation and Move code generation.

This package validates user-drawn graphs of DeFi primitives, orders them by
dependency, and emits a Move module that wires upstream outputs into
downstream inputs. Refinement, compilation and deployment are optional
external steps.
"""

__version__ = "0.1.0"
__author__ = "MoveMatrix Development Team"

from .models import (
    Primitive, PrimitiveFunction, Parameter, ParameterMapping, Connection, Composition,
    CompositionStatus, IssueType, Severity, ValidationIssue, ValidationResult
)
from .catalog import PrimitiveCatalog, load_catalog
from .connection_validator import (
    validate_connection, validate_composition, find_cycles, ValidationRules,
    TypeCompatibilityRule, FirstParameterTypeRule, FullSignatureTypeRule, SecurityRule
)
from .dependency_orderer import topological_order, order_connections
from .move_generator import MoveGenerator, EmitterOptions, emit_module, sanitize_module_name
from .code_refiner import CodeRefiner, RefinementResult, extract_code
from .move_compiler import MoveCompiler, CompilationResult, DeploymentResult
from .pipeline import CompositionPipeline, GenerationResult
from .config import Settings
from .exceptions import (
    MoveMatrixError, CatalogError, CatalogUnavailableError, PrimitiveNotFoundError,
    GenerationError, CircularDependencyError, CompositionError, CompositionNotFoundError,
    InvalidStatusTransitionError, ExternalServiceError, RefinementError,
    CompilationError, DeploymentError
)

__all__ = [
    'Primitive', 'PrimitiveFunction', 'Parameter', 'ParameterMapping', 'Connection', 'Composition',
    'CompositionStatus', 'IssueType', 'Severity', 'ValidationIssue', 'ValidationResult',
    'PrimitiveCatalog', 'load_catalog',
    'validate_connection', 'validate_composition', 'find_cycles', 'ValidationRules',
    'TypeCompatibilityRule', 'FirstParameterTypeRule', 'FullSignatureTypeRule', 'SecurityRule',
    'topological_order', 'order_connections',
    'MoveGenerator', 'EmitterOptions', 'emit_module', 'sanitize_module_name',
    'CodeRefiner', 'RefinementResult', 'extract_code',
    'MoveCompiler', 'CompilationResult', 'DeploymentResult',
    'CompositionPipeline', 'GenerationResult',
    'Settings',
    'MoveMatrixError', 'CatalogError', 'CatalogUnavailableError', 'PrimitiveNotFoundError',
    'GenerationError', 'CircularDependencyError', 'CompositionError', 'CompositionNotFoundError',
    'InvalidStatusTransitionError', 'ExternalServiceError', 'RefinementError',
    'CompilationError', 'DeploymentError',
]
