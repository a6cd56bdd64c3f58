"""
Composition pipeline: validate, order, emit, refine and deploy.

Each stage finishes before the next starts. Validation issues never stop
code generation, which stays available for inspection; they do stop
deployment.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Dict, Any

from .catalog import PrimitiveCatalog
from .code_refiner import CodeRefiner
from .config import Settings
from .connection_validator import ValidationRules, validate_composition
from .dependency_orderer import topological_order
from .exceptions import CompositionError
from .models import Composition, CompositionStatus, ValidationResult
from .move_compiler import MoveCompiler, DeploymentResult
from .move_generator import EmitterOptions, emit_module


logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Output of a generation run."""
    code: str
    emitted_code: str
    validation: ValidationResult
    order: List[str] = field(default_factory=list)
    refined: bool = False
    refinement_note: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'emittedCode': self.emitted_code,
            'validation': self.validation.to_dict(),
            'order': list(self.order),
            'refined': self.refined,
            'refinementNote': self.refinement_note,
        }


class CompositionPipeline:
    """Runs compositions through validation, generation and deployment."""

    def __init__(self, catalog: PrimitiveCatalog, refiner: Optional[CodeRefiner] = None,
                 options: Optional[EmitterOptions] = None, rules: Optional[ValidationRules] = None):
        self.catalog = catalog
        self.refiner = refiner
        self.options = options or EmitterOptions()
        self.rules = rules or ValidationRules()

    @classmethod
    def from_settings(cls, catalog: PrimitiveCatalog, settings: Settings) -> 'CompositionPipeline':
        refiner = CodeRefiner(
            endpoint=settings.llm_endpoint,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout=settings.llm_timeout,
        )
        return cls(catalog, refiner=refiner, options=EmitterOptions(module_address=settings.module_address))

    def primitive_lookup(self, composition: Composition):
        """Primitives in the composition's scope. Out-of-scope ids do not resolve."""
        return self.catalog.as_lookup(composition.primitive_ids)

    def validate(self, composition: Composition) -> ValidationResult:
        result = validate_composition(composition.connections, self.primitive_lookup(composition), self.rules)
        if result.is_valid and composition.status == CompositionStatus.DRAFT:
            composition.transition_to(CompositionStatus.VALIDATED)
        logger.info(
            f"Validated composition '{composition.name}': "
            f"{'valid' if result.is_valid else f'{len(result.errors)} errors'}"
        )
        return result

    def generate(self, composition: Composition, refine: bool = True,
                 options: Optional[EmitterOptions] = None) -> GenerationResult:
        """Generate Move code and store it on the composition.

        Raises:
            CircularDependencyError: if the connections contain a cycle.
        """
        lookup = self.primitive_lookup(composition)
        validation = validate_composition(composition.connections, lookup, self.rules)
        order = topological_order(composition.connections, composition.primitive_ids)

        emitted = emit_module(composition, order, lookup, options or self.options)
        code, refined, note = emitted, False, ""
        if refine and self.refiner is not None:
            primitives = [lookup[pid] for pid in order if pid in lookup]
            refinement = self.refiner.refine(emitted, composition, primitives)
            code, refined, note = refinement.code, refinement.refined, refinement.note

        composition.generated_code = code
        composition.transition_to(CompositionStatus.COMPILED)
        logger.info(f"Generated code for composition '{composition.name}' (refined={refined})")

        return GenerationResult(
            code=code,
            emitted_code=emitted,
            validation=validation,
            order=order,
            refined=refined,
            refinement_note=note,
        )

    def deploy(self, composition: Composition, compiler: MoveCompiler,
               wallet_address: Optional[str] = None) -> DeploymentResult:
        """Compile and publish the composition's generated code."""
        validation = validate_composition(composition.connections, self.primitive_lookup(composition), self.rules)
        if not validation.is_valid:
            messages = '; '.join(issue.message for issue in validation.errors)
            logger.warning(f"Refusing to deploy '{composition.name}': {messages}")
            return DeploymentResult(
                success=False,
                error=f"Composition has {len(validation.errors)} validation error(s): {messages}",
            )
        if not composition.generated_code:
            return DeploymentResult(success=False, error="No generated code; generate the composition first")

        result = compiler.deploy(composition.generated_code, wallet_address)
        if result.success:
            self.record_deployment(composition, result.tx_hash)
        return result

    def record_deployment(self, composition: Composition, tx_hash: str) -> Composition:
        """Mark a composition as deployed in the given transaction."""
        if not tx_hash:
            raise CompositionError("A transaction hash is required", composition.id)
        composition.transition_to(CompositionStatus.DEPLOYED)
        composition.deployment_tx_hash = tx_hash
        logger.info(f"Composition '{composition.name}' deployed in {tx_hash}")
        return composition


def with_overrides(options: EmitterOptions, **overrides) -> EmitterOptions:
    """Copy emitter options, ignoring overrides that are None."""
    return replace(options, **{k: v for k, v in overrides.items() if v is not None})
