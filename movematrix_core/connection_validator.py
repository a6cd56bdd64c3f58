"""
Connection Validator for MoveMatrix compositions.

Checks single connections for existence, type, category and security
problems, and whole compositions for circular dependencies. Problems are
returned as ValidationIssue records; nothing here raises for a bad graph.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Iterable

from .models import (
    Connection, Primitive, PrimitiveFunction, ValidationIssue, ValidationResult,
    IssueType, Severity
)


logger = logging.getLogger(__name__)


# Which categories may feed which. Any category may feed "custom".
CATEGORY_COMPATIBILITY: Dict[str, Tuple[str, ...]] = {
    'lending': ('swap', 'staking', 'options'),
    'swap': ('lending', 'staking', 'options'),
    'staking': ('lending', 'swap'),
    'options': ('lending', 'swap'),
    'custom': ('lending', 'swap', 'staking', 'options', 'custom'),
}

UNRESTRICTED_CATEGORY = 'custom'


def normalize_type(type_tag: str) -> str:
    """Drop whitespace so 'u64, u64' and 'u64,u64' compare equal."""
    return re.sub(r'\s+', '', type_tag or '')


class TypeCompatibilityRule:
    """Decides whether a source function's output can feed a target function.

    ``check`` returns None when compatible, otherwise a short description of
    what the target expected.
    """

    name = "type-compatibility"

    def check(self, source_function: PrimitiveFunction,
              target_function: PrimitiveFunction) -> Optional[str]:
        raise NotImplementedError


class FirstParameterTypeRule(TypeCompatibilityRule):
    """The target's first parameter is the slot that receives upstream output."""

    name = "first-parameter"

    def __init__(self, skip_signer: bool = False):
        self.skip_signer = skip_signer

    def check(self, source_function, target_function):
        params = target_function.parsed_parameters()
        if self.skip_signer:
            params = [p for p in params if not p.is_signer]
        if not params:
            return "no parameters"
        if normalize_type(source_function.return_type) != normalize_type(params[0].type):
            return params[0].type
        return None


class FullSignatureTypeRule(TypeCompatibilityRule):
    """Stricter rule: some non-signer target parameter must accept the output."""

    name = "full-signature"

    def check(self, source_function, target_function):
        params = [p for p in target_function.parsed_parameters() if not p.is_signer]
        if not params:
            return "no parameters"
        produced = normalize_type(source_function.return_type)
        if any(normalize_type(p.type) == produced for p in params):
            return None
        return ' | '.join(p.type for p in params)


@dataclass
class SecurityRule:
    """A known-unsafe wiring pattern between two categories."""
    name: str
    source_category: str
    target_category: str
    function_keyword: str
    message: str
    suggestion: str = ""

    def matches(self, source: Primitive, source_function: PrimitiveFunction,
                target: Primitive, target_function: PrimitiveFunction) -> bool:
        return (source.category == self.source_category
                and self.function_keyword in source_function.name.lower()
                and target.category == self.target_category)


DEFAULT_SECURITY_RULES: List[SecurityRule] = [
    SecurityRule(
        name="lending-borrow-into-options",
        source_category="lending",
        target_category="options",
        function_keyword="borrow",
        message="Connecting lending directly to options can pose liquidation risks",
        suggestion="Consider adding risk management primitives between lending and options",
    ),
]


@dataclass
class ValidationRules:
    """The rule set used by the validator."""
    type_rule: TypeCompatibilityRule = field(default_factory=FirstParameterTypeRule)
    category_table: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(CATEGORY_COMPATIBILITY)
    )
    security_rules: List[SecurityRule] = field(
        default_factory=lambda: list(DEFAULT_SECURITY_RULES)
    )

    def categories_compatible(self, source_category: str, target_category: str) -> bool:
        if not source_category or not target_category:
            return False
        if target_category == UNRESTRICTED_CATEGORY:
            return True
        return target_category in self.category_table.get(source_category, ())


def _resolve(connection: Connection, primitive_by_id: Dict[str, Primitive]):
    """Look up both endpoints. Returns None for anything missing."""
    source = primitive_by_id.get(connection.source_id)
    target = primitive_by_id.get(connection.target_id)
    source_function = source.get_function(connection.source_function) if source else None
    target_function = target.get_function(connection.target_function) if target else None
    return source, target, source_function, target_function


def validate_connection(connection: Connection,
                        primitive_by_id: Dict[str, Primitive],
                        rules: Optional[ValidationRules] = None,
                        index: Optional[int] = None) -> List[ValidationIssue]:
    """Validate a single connection and return every issue found."""
    rules = rules or ValidationRules()
    issues: List[ValidationIssue] = []

    def issue(issue_type, severity, message, suggestion=None):
        issues.append(ValidationIssue(
            type=issue_type,
            severity=severity,
            source_id=connection.source_id,
            target_id=connection.target_id,
            message=message,
            suggestion=suggestion,
            connection_index=index,
        ))

    source, target, source_function, target_function = _resolve(connection, primitive_by_id)

    if source is None or target is None:
        missing = [pid for pid, p in ((connection.source_id, source), (connection.target_id, target)) if p is None]
        issue(IssueType.INCOMPATIBLE_PROTOCOLS, Severity.ERROR,
              f"One or both primitives in the connection do not exist: {', '.join(missing)}")
        return issues

    if source_function is None or target_function is None:
        missing = []
        if source_function is None:
            missing.append(f"{source.name}.{connection.source_function}")
        if target_function is None:
            missing.append(f"{target.name}.{connection.target_function}")
        issue(IssueType.INCOMPATIBLE_PROTOCOLS, Severity.ERROR,
              f"One or both functions in the connection do not exist: {', '.join(missing)}")
        return issues

    expected = rules.type_rule.check(source_function, target_function)
    if expected is not None:
        issue(IssueType.TYPE_MISMATCH, Severity.ERROR,
              f"Type mismatch: {source_function.name} returns {source_function.return_type or 'nothing'} "
              f"but {target_function.name} expects {expected}",
              f"Consider adding an adapter or finding a compatible function that accepts "
              f"{source_function.return_type or 'no input'}")

    if not rules.categories_compatible(source.category, target.category):
        issue(IssueType.INCOMPATIBLE_PROTOCOLS, Severity.WARNING,
              f"Protocols may not be compatible: {source.name} ({source.category or 'no category'}) "
              f"and {target.name} ({target.category or 'no category'}) may not work together",
              "Check documentation for these primitives to ensure they can be connected directly")

    for rule in rules.security_rules:
        if rule.matches(source, source_function, target, target_function):
            issue(IssueType.SECURITY_ISSUE, Severity.WARNING, rule.message, rule.suggestion or None)

    return issues


def build_adjacency(connections: Iterable[Connection]) -> Dict[str, List[str]]:
    """Build source -> [targets] in connection order.

    Every endpoint gets an entry, in order of first appearance. Repeated
    edges are collapsed.
    """
    graph: Dict[str, List[str]] = {}
    for connection in connections:
        graph.setdefault(connection.source_id, [])
        graph.setdefault(connection.target_id, [])
        if connection.target_id not in graph[connection.source_id]:
            graph[connection.source_id].append(connection.target_id)
    return graph


WHITE, GRAY, BLACK = 0, 1, 2


def find_cycles(graph: Dict[str, List[str]]) -> List[List[str]]:
    """Find cycles with a three-colour depth-first search.

    Each cycle is returned as a closed path, e.g. ``['a', 'b', 'a']``. Every
    back edge yields one cycle, so the list is non-empty iff the graph is
    cyclic.
    """
    color = {node: WHITE for node in graph}
    path: List[str] = []
    cycles: List[List[str]] = []

    def visit(node: str):
        color[node] = GRAY
        path.append(node)
        for neighbor in graph.get(node, []):
            state = color.get(neighbor, WHITE)
            if state == WHITE:
                visit(neighbor)
            elif state == GRAY:
                start = path.index(neighbor)
                cycles.append(path[start:] + [neighbor])
        path.pop()
        color[node] = BLACK

    for node in graph:
        if color[node] == WHITE:
            visit(node)

    return cycles


def validate_composition(connections: List[Connection],
                         primitive_by_id: Dict[str, Primitive],
                         rules: Optional[ValidationRules] = None) -> ValidationResult:
    """Validate all connections and check the graph for cycles."""
    rules = rules or ValidationRules()
    result = ValidationResult()

    for index, connection in enumerate(connections):
        for issue in validate_connection(connection, primitive_by_id, rules, index):
            if issue.severity == Severity.ERROR:
                result.errors.append(issue)
            else:
                result.warnings.append(issue)

    for cycle in find_cycles(build_adjacency(connections)):
        result.errors.append(ValidationIssue(
            type=IssueType.CIRCULAR_DEPENDENCY,
            severity=Severity.ERROR,
            source_id=cycle[-2],
            target_id=cycle[-1],
            message=f"Circular dependency detected: {' -> '.join(cycle)}",
            suggestion="Break the circular dependency by restructuring your composition",
        ))

    logger.debug(
        f"Validated {len(connections)} connections: "
        f"{len(result.errors)} errors, {len(result.warnings)} warnings"
    )
    return result
