"""
Core data models for MoveMatrix compositions.

This module defines primitives and their functions (the read-only catalog
entries), connections with per-parameter mappings, compositions, and the
issue/result records produced by validation.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Tuple, Optional
from enum import Enum
import re
import time
import uuid

from .exceptions import InvalidStatusTransitionError


MOVE_TYPE_PATTERN = re.compile(
    r'^&?(mut\s+)?(bool|u8|u16|u32|u64|u128|u256|address|signer|vector<.+>|\w+(::\w+)+(<.+>)?)$'
)

# "name:type", where the colon is not part of a "::" path
NAMED_PARAMETER_PATTERN = re.compile(r'^([A-Za-z_]\w*)\s*:(?!:)\s*(\S.*)$')

VOID_TYPES = {'', 'void', '()'}


def is_move_type(text: str) -> bool:
    """Return True if text looks like a Move type tag rather than a name."""
    return bool(MOVE_TYPE_PATTERN.match(text.strip()))


def is_signer_type(type_tag: str) -> bool:
    """Signer parameters are bound to the calling account."""
    return type_tag.replace('&', '').replace('mut ', '').strip() == 'signer'


def infer_type_from_name(param_name: str) -> str:
    """Best-effort guess of a parameter type from its name.

    Only used when a primitive declares a parameter without a type. This is a
    naming heuristic, not a type system.
    """
    lowered = param_name.lower()
    if 'signer' in lowered:
        return '&signer'
    if 'amount' in lowered or 'qty' in lowered or 'value' in lowered:
        return 'u64'
    if 'account' in lowered or 'address' in lowered:
        return 'address'
    if 'enabled' in lowered or 'active' in lowered:
        return 'bool'
    return 'u64'


class CompositionStatus(Enum):
    """Lifecycle of a composition."""
    DRAFT = "draft"
    VALIDATED = "validated"
    COMPILED = "compiled"
    DEPLOYED = "deployed"


_FORWARD_TRANSITIONS = {
    CompositionStatus.DRAFT: {CompositionStatus.VALIDATED, CompositionStatus.COMPILED},
    CompositionStatus.VALIDATED: {CompositionStatus.COMPILED},
    CompositionStatus.COMPILED: {CompositionStatus.DEPLOYED},
    CompositionStatus.DEPLOYED: set(),
}

# Editing resets to DRAFT and re-generation to COMPILED from any state
_RESET_TARGETS = {CompositionStatus.DRAFT, CompositionStatus.COMPILED}


class IssueType(Enum):
    """Kinds of validation issue."""
    TYPE_MISMATCH = "TypeMismatch"
    INCOMPATIBLE_PROTOCOLS = "IncompatibleProtocols"
    SECURITY_ISSUE = "SecurityIssue"
    CIRCULAR_DEPENDENCY = "CircularDependency"


class Severity(Enum):
    """Errors block deployment, warnings are advisory."""
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Parameter:
    """A parsed formal parameter of a primitive function."""
    name: str
    type: str
    raw: str

    @property
    def is_signer(self) -> bool:
        return is_signer_type(self.type)

    def matches(self, label: str) -> bool:
        """Check whether a mapping label refers to this parameter."""
        return label == self.name or label == self.raw


def parse_parameter(raw: str, index: int) -> Parameter:
    """Parse a parameter string in ``name``, ``type`` or ``name:type`` form."""
    text = raw.strip()
    match = NAMED_PARAMETER_PATTERN.match(text)
    if match:
        return Parameter(name=match.group(1), type=match.group(2).strip(), raw=raw)
    if is_move_type(text):
        return Parameter(name=f"arg{index}", type=text, raw=raw)
    return Parameter(name=text, type=infer_type_from_name(text), raw=raw)


@dataclass(frozen=True)
class PrimitiveFunction:
    """A callable function exposed by a primitive."""
    name: str
    description: str = ""
    parameters: Tuple[str, ...] = ()
    return_type: str = ""

    @property
    def has_return_value(self) -> bool:
        return self.return_type.strip() not in VOID_TYPES

    def parsed_parameters(self) -> List[Parameter]:
        """Return the parameters in declared order."""
        return [parse_parameter(raw, i) for i, raw in enumerate(self.parameters)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'parameters': list(self.parameters),
            'returnType': self.return_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PrimitiveFunction':
        params = []
        for param in data.get('parameters') or []:
            # Some producers send {name, type} objects instead of strings
            if isinstance(param, dict):
                name = param.get('name', '')
                param_type = param.get('type', '')
                params.append(f"{name}:{param_type}" if name and param_type else (name or param_type))
            else:
                params.append(str(param))
        return cls(
            name=data['name'],
            description=data.get('description', ''),
            parameters=tuple(params),
            return_type=str(data.get('returnType', data.get('return_type', ''))).strip(),
        )


@dataclass(frozen=True)
class Primitive:
    """A reusable smart-contract module definition."""
    id: str
    name: str
    category: str = ""
    module_address: str = ""
    module_name: str = ""
    functions: Tuple[PrimitiveFunction, ...] = ()
    description: str = ""
    author: str = ""
    source: str = ""

    def get_function(self, name: str) -> Optional[PrimitiveFunction]:
        """Get a function by name."""
        for function in self.functions:
            if function.name == name:
                return function
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'moduleAddress': self.module_address,
            'moduleName': self.module_name,
            'description': self.description,
            'author': self.author,
            'functions': [f.to_dict() for f in self.functions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Primitive':
        return cls(
            id=str(data.get('id') or data.get('_id')),
            name=data.get('name', ''),
            category=(data.get('category') or '').strip().lower(),
            module_address=data.get('moduleAddress') or '',
            module_name=data.get('moduleName') or '',
            functions=tuple(PrimitiveFunction.from_dict(f) for f in data.get('functions') or []),
            description=data.get('description', ''),
            author=data.get('author', ''),
            source=data.get('source', ''),
        )


@dataclass
class ParameterMapping:
    """Binds one target parameter to a source value or a constant."""
    target_param: str
    source_param: Optional[str] = None
    constant_value: Optional[str] = None

    def __post_init__(self):
        if not self.target_param:
            raise ValueError("Parameter mapping requires a target parameter")
        if (self.source_param is None) == (self.constant_value is None):
            raise ValueError(
                f"Mapping for '{self.target_param}' must have exactly one of "
                f"source parameter or constant value"
            )

    @property
    def is_constant(self) -> bool:
        return self.source_param is None

    def to_dict(self) -> Dict[str, Any]:
        data = {'targetParam': self.target_param, 'sourceParam': self.source_param}
        if self.constant_value is not None:
            data['constantValue'] = self.constant_value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParameterMapping':
        source_param = data.get('sourceParam') or None
        constant = data.get('constantValue')
        if constant is not None:
            if isinstance(constant, bool):
                constant = 'true' if constant else 'false'
            constant = str(constant)
        return cls(
            target_param=data.get('targetParam', ''),
            source_param=source_param,
            constant_value=constant if source_param is None else None,
        )


@dataclass
class Connection:
    """A directed edge from a source function to a target function."""
    source_id: str
    source_function: str
    target_id: str
    target_function: str
    parameter_mappings: List[ParameterMapping] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sourceId': self.source_id,
            'sourceFunction': self.source_function,
            'targetId': self.target_id,
            'targetFunction': self.target_function,
            'parameterMappings': [m.to_dict() for m in self.parameter_mappings],
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Connection':
        return cls(
            source_id=data.get('sourceId', ''),
            source_function=data.get('sourceFunction') or data.get('sourceFunctionId', ''),
            target_id=data.get('targetId', ''),
            target_function=data.get('targetFunction') or data.get('targetFunctionId', ''),
            parameter_mappings=[
                ParameterMapping.from_dict(m) for m in data.get('parameterMappings') or []
            ],
            description=data.get('description') or '',
        )


@dataclass
class Composition:
    """A user-authored graph of primitives and connections."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    description: str = ""
    owner_id: str = ""
    status: CompositionStatus = CompositionStatus.DRAFT
    primitive_ids: List[str] = field(default_factory=list)
    positions: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    connections: List[Connection] = field(default_factory=list)
    generated_code: Optional[str] = None
    deployment_tx_hash: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def transition_to(self, status: CompositionStatus) -> None:
        """Move to a new status, enforcing the lifecycle."""
        allowed = status == self.status or status in _RESET_TARGETS \
            or status in _FORWARD_TRANSITIONS[self.status]
        if not allowed:
            raise InvalidStatusTransitionError(self.status.value, status.value, self.id)
        self.status = status
        self.updated_at = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'ownerId': self.owner_id,
            'status': self.status.value,
            'primitiveIds': list(self.primitive_ids),
            'primitives': [
                {'primitiveId': pid, 'position': {'x': pos[0], 'y': pos[1]}}
                for pid, pos in self.positions.items()
            ],
            'connections': [c.to_dict() for c in self.connections],
            'generatedCode': self.generated_code,
            'deploymentTxHash': self.deployment_tx_hash,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Composition':
        positions = {}
        for entry in data.get('primitives') or []:
            if isinstance(entry, dict) and 'primitiveId' in entry:
                pos = entry.get('position') or {}
                positions[entry['primitiveId']] = (float(pos.get('x', 0.0)), float(pos.get('y', 0.0)))
        primitive_ids = list(data.get('primitiveIds') or [])
        if not primitive_ids:
            primitive_ids = list(positions.keys())
        now = time.time()
        return cls(
            id=data.get('id') or str(uuid.uuid4()),
            name=data.get('name', ''),
            description=data.get('description', ''),
            owner_id=data.get('ownerId', ''),
            status=CompositionStatus(data.get('status') or 'draft'),
            primitive_ids=primitive_ids,
            positions=positions,
            connections=[Connection.from_dict(c) for c in data.get('connections') or []],
            generated_code=data.get('generatedCode'),
            deployment_tx_hash=data.get('deploymentTxHash'),
            created_at=data.get('createdAt') or now,
            updated_at=data.get('updatedAt') or now,
        )


@dataclass
class ValidationIssue:
    """A single problem found while validating a composition."""
    type: IssueType
    severity: Severity
    source_id: str
    target_id: str
    message: str
    suggestion: Optional[str] = None
    connection_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.type.value,
            'severity': self.severity.value,
            'sourceId': self.source_id,
            'targetId': self.target_id,
            'message': self.message,
        }
        if self.suggestion:
            data['suggestion'] = self.suggestion
        if self.connection_index is not None:
            data['connectionIndex'] = self.connection_index
        return data


@dataclass
class ValidationResult:
    """Aggregated outcome of validating a composition."""
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def issues_of_type(self, issue_type: IssueType) -> List[ValidationIssue]:
        return [i for i in self.errors + self.warnings if i.type == issue_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'isValid': self.is_valid,
            'errors': [e.to_dict() for e in self.errors],
            'warnings': [w.to_dict() for w in self.warnings],
        }
