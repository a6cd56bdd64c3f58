"""
Move Code Generator for MoveMatrix compositions.

This module turns a composition graph into the source text of a single Move
module: imports for every primitive in scope, one function per connection
and an aggregate ``execute`` entry function. Generation is pure and
deterministic; connections that cannot be resolved are skipped.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple

from .dependency_orderer import order_connections
from .models import Composition, Connection, Primitive, Parameter, ParameterMapping


logger = logging.getLogger(__name__)


SIGNER_ARG = "user"
SOURCE_RESULT = "source_result"


@dataclass
class EmitterOptions:
    """Switches for module emission."""
    module_address: str = "defi_matrix"
    default_import_address: str = "0x1"
    # Call every connection function from ``execute`` instead of leaving a
    # commented scaffold.
    auto_chain_calls: bool = False
    # Order connection functions by dependency order instead of list order.
    emit_in_topological_order: bool = False
    include_banner: bool = True


@dataclass
class ConnectionFunction:
    """A rendered per-connection function."""
    number: int
    name: str
    arguments: List[Tuple[str, str]] = field(default_factory=list)
    lines: List[str] = field(default_factory=list)


def sanitize_module_name(name: str, default: str = "composition") -> str:
    """Lower-case, join whitespace runs with '_' and drop other characters."""
    sanitized = re.sub(r'\s+', '_', (name or '').strip().lower())
    sanitized = re.sub(r'[^a-z0-9_]', '', sanitized)
    if not sanitized:
        return default
    if sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


def to_identifier(label: str) -> str:
    identifier = re.sub(r'\W', '_', label.strip())
    if not identifier or identifier[0].isdigit():
        identifier = f"v_{identifier}"
    return identifier


def _unique(name: str, taken: set) -> str:
    candidate = name
    counter = 2
    while candidate in taken:
        candidate = f"{name}_{counter}"
        counter += 1
    taken.add(candidate)
    return candidate


def _comment_safe(text: str) -> str:
    return text.replace('*/', '* /')


class MoveGenerator:
    """Generates Move source for a composition."""

    def __init__(self, options: Optional[EmitterOptions] = None):
        self.options = options or EmitterOptions()
        self.indent_level = 0
        self.indent_size = 4

    def _indent(self, text: str = "") -> str:
        """Return properly indented text."""
        if not text:
            return ""
        return " " * (self.indent_level * self.indent_size) + text

    def module_path(self, primitive: Primitive) -> Tuple[str, str]:
        """Return the (address, module) pair used to import a primitive."""
        address = primitive.module_address or self.options.default_import_address
        module = primitive.module_name or sanitize_module_name(primitive.name, default="primitive")
        return address, module

    def generate_module(self, composition: Composition, ordered_primitives: List[str],
                        primitive_by_id: Dict[str, Primitive]) -> str:
        """Generate the complete module source."""
        lines = []
        module_name = sanitize_module_name(composition.name)
        lines.append(f"module {self.options.module_address}::{module_name} {{")
        self.indent_level = 1

        for import_line in self.generate_imports(composition, primitive_by_id):
            lines.append(self._indent(import_line))
        lines.append("")

        if self.options.include_banner:
            lines.extend(self._generate_banner(composition, primitive_by_id))
            lines.append("")

        if self.options.emit_in_topological_order:
            indexes = order_connections(composition.connections, ordered_primitives)
        else:
            indexes = list(range(len(composition.connections)))

        emitted: List[ConnectionFunction] = []
        for index in indexes:
            function = self.build_connection_function(
                composition.connections[index], index + 1, primitive_by_id
            )
            if function is None:
                continue
            lines.extend(function.lines)
            lines.append("")
            emitted.append(function)

        lines.extend(self._generate_execute(emitted, ordered_primitives, primitive_by_id))
        self.indent_level = 0
        lines.append("}")
        return "\n".join(lines) + "\n"

    def generate_imports(self, composition: Composition,
                         primitive_by_id: Dict[str, Primitive]) -> List[str]:
        """One ``use`` line per primitive in scope, identical paths collapsed."""
        imports = ["use std::signer;"]
        seen = set()
        for primitive_id in composition.primitive_ids:
            primitive = primitive_by_id.get(primitive_id)
            if primitive is None:
                logger.debug(f"No import for unknown primitive {primitive_id}")
                imports.append(f"// unresolved primitive: {primitive_id}")
                continue
            address, module = self.module_path(primitive)
            path = f"{address}::{module}"
            if path in seen:
                continue
            seen.add(path)
            imports.append(f"use {path};")
        return imports

    def _generate_banner(self, composition: Composition,
                         primitive_by_id: Dict[str, Primitive]) -> List[str]:
        lines = [
            self._indent("/*"),
            self._indent(f" * {_comment_safe(composition.name)}"),
            self._indent(f" * {_comment_safe(composition.description or 'No description provided')}"),
            self._indent(" *"),
            self._indent(" * This module connects the following primitives:"),
        ]
        for primitive_id in composition.primitive_ids:
            primitive = primitive_by_id.get(primitive_id)
            if primitive is not None:
                category = primitive.category or 'unknown category'
                lines.append(self._indent(f" * * {_comment_safe(primitive.name)} ({category})"))
        lines.append(self._indent(" *"))
        lines.append(self._indent(" * Generated by MoveMatrix"))
        lines.append(self._indent(" */"))
        return lines

    def emit_connection_function(self, connection: Connection, number: int,
                                 primitive_by_id: Dict[str, Primitive]) -> str:
        """Render one connection function, or '' if it cannot be resolved."""
        function = self.build_connection_function(connection, number, primitive_by_id)
        return "\n".join(function.lines) if function else ""

    def build_connection_function(self, connection: Connection, number: int,
                                  primitive_by_id: Dict[str, Primitive]) -> Optional[ConnectionFunction]:
        source = primitive_by_id.get(connection.source_id)
        target = primitive_by_id.get(connection.target_id)
        source_function = source.get_function(connection.source_function) if source else None
        target_function = target.get_function(connection.target_function) if target else None
        if source_function is None or target_function is None:
            logger.debug(f"Skipping unresolvable connection {number}")
            return None

        _, source_module = self.module_path(source)
        _, target_module = self.module_path(target)

        taken = {SIGNER_ARG, SOURCE_RESULT}
        source_params = source_function.parsed_parameters()
        source_vars: List[str] = []
        arguments: List[Tuple[str, str]] = []
        for param in source_params:
            if param.is_signer:
                source_vars.append(SIGNER_ARG)
                continue
            var = _unique(to_identifier(param.name), taken)
            source_vars.append(var)
            arguments.append((var, param.type))

        function_name = f"execute_connection_{number}"
        signature = ", ".join([f"{SIGNER_ARG}: &signer"] + [f"{n}: {t}" for n, t in arguments])

        lines = [
            self._indent(f"/// Connection {number}: {source.name}.{source_function.name} -> "
                         f"{target.name}.{target_function.name}"),
            self._indent(f"/// {connection.description or 'Connects source function to target function'}"),
            self._indent(f"public fun {function_name}({signature}) {{"),
        ]
        self.indent_level += 1

        source_call = f"{source_module}::{source_function.name}({', '.join(source_vars)})"
        if source_function.has_return_value:
            lines.append(self._indent(f"let {SOURCE_RESULT} = {source_call};"))
        else:
            lines.append(self._indent(f"{source_call};"))

        bindings: Dict[str, str] = {}
        target_args = []
        pairs, unused = self._bind_target_parameters(connection, target_function.parsed_parameters())
        for param, mapping in pairs:
            if mapping is None:
                if param.is_signer:
                    target_args.append(SIGNER_ARG)
                else:
                    target_args.append(f"/* unmapped {param.name}: {param.type} */")
            elif mapping.is_constant:
                target_args.append(mapping.constant_value)
            else:
                target_args.append(self._source_value(
                    mapping, source_params, source_vars, source_function, bindings, taken, lines
                ))

        for mapping in unused:
            value = mapping.constant_value if mapping.is_constant else mapping.source_param
            lines.append(self._indent(f"// unused mapping {mapping.target_param}: {value}"))
        lines.append(self._indent(f"{target_module}::{target_function.name}({', '.join(target_args)});"))
        self.indent_level -= 1
        lines.append(self._indent("}"))

        return ConnectionFunction(number=number, name=function_name, arguments=arguments, lines=lines)

    def _bind_target_parameters(self, connection: Connection, target_params: List[Parameter]):
        """Pair each target parameter with its mapping, in parameter order.

        Mappings naming a parameter bind by name. Mappings naming nothing
        fill the remaining non-signer slots in order. Returns the pairs and
        the mappings left without a slot.
        """
        slots: List[Optional[ParameterMapping]] = [None] * len(target_params)
        unnamed: List[ParameterMapping] = []
        leftover: List[ParameterMapping] = []
        for mapping in connection.parameter_mappings:
            index = next((i for i, p in enumerate(target_params) if p.matches(mapping.target_param)), None)
            if index is None:
                unnamed.append(mapping)
            elif slots[index] is None:
                slots[index] = mapping
            else:
                leftover.append(mapping)

        free = [i for i, p in enumerate(target_params) if slots[i] is None and not p.is_signer]
        for index, mapping in zip(free, unnamed):
            slots[index] = mapping
        leftover.extend(unnamed[len(free):])
        return list(zip(target_params, slots)), leftover

    def _source_value(self, mapping, source_params, source_vars, source_function,
                      bindings, taken, lines) -> str:
        """Resolve a source-param mapping to a variable reference."""
        for param, var in zip(source_params, source_vars):
            if param.matches(mapping.source_param):
                return var
        label = mapping.source_param
        if label in bindings:
            return bindings[label]
        var = _unique(to_identifier(label), taken)
        bindings[label] = var
        if source_function.has_return_value:
            lines.append(self._indent(f"let {var} = {SOURCE_RESULT};"))
        else:
            lines.append(self._indent(f"// {label} is not produced by {source_function.name}"))
        return var

    def _generate_execute(self, functions: List[ConnectionFunction], ordered_primitives: List[str],
                          primitive_by_id: Dict[str, Primitive]) -> List[str]:
        """Aggregate entry function.

        By default the body only documents the workflow; wiring the calls is
        left to the author unless ``auto_chain_calls`` is set.
        """
        parameters = [f"{SIGNER_ARG}: &signer"]
        calls = []
        for function in functions:
            args = [SIGNER_ARG]
            for name, type_tag in function.arguments:
                prefixed = f"c{function.number}_{name}"
                args.append(prefixed)
                if self.options.auto_chain_calls:
                    parameters.append(f"{prefixed}: {type_tag}")
            calls.append(f"{function.name}({', '.join(args)});")

        lines = [
            self._indent("/// Execute the full composition workflow"),
            self._indent(f"public entry fun execute({', '.join(parameters)}) {{"),
        ]
        self.indent_level += 1
        if ordered_primitives:
            names = [primitive_by_id[p].name if p in primitive_by_id else p for p in ordered_primitives]
            lines.append(self._indent(f"// Dependency order: {' -> '.join(names)}"))
        if not calls:
            lines.append(self._indent("// No connections to execute"))
        elif self.options.auto_chain_calls:
            lines.extend(self._indent(call) for call in calls)
        else:
            lines.append(self._indent("// Wire the connection functions into the workflow:"))
            lines.extend(self._indent(f"// {call}") for call in calls)
        self.indent_level -= 1
        lines.append(self._indent("}"))
        return lines


def emit_module(composition: Composition, ordered_primitives: List[str],
                primitive_by_id: Dict[str, Primitive],
                options: Optional[EmitterOptions] = None) -> str:
    """Generate Move source text for a composition."""
    return MoveGenerator(options).generate_module(composition, ordered_primitives, primitive_by_id)
