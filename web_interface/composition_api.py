"""
Composition API - REST routes for the MoveMatrix composition pipeline.

Routes:
  GET    /api/primitives                       - catalog (optional ?category=)
  GET    /api/primitives/<id>                  - single primitive
  GET    /api/compositions                     - list (optional ?ownerId=)
  POST   /api/compositions                     - create
  GET    /api/compositions/<id>                - load
  PUT    /api/compositions/<id>                - update
  DELETE /api/compositions/<id>                - delete
  POST   /api/compositions/<id>/validate       - validate the graph
  POST   /api/compositions/<id>/generate       - generate (and refine) Move code
  POST   /api/compositions/<id>/deploy         - compile and publish
  POST   /api/compositions/<id>/deployment     - record a client-side deployment
  POST   /api/validate                         - validate posted connections
  POST   /api/compile                          - compile raw Move code
  POST   /api/deploy                           - publish raw Move code
  GET    /api/settings                         - effective settings
  PUT    /api/settings                         - set overrides
  DELETE /api/settings/<key>                   - revert an override
"""

import logging
from typing import Any, Dict

from flask import Blueprint, jsonify, request

from movematrix_core.catalog import PrimitiveCatalog, load_catalog
from movematrix_core.config import SETTING_SOURCES, SECRET_SETTINGS, Settings, catalog_path
from movematrix_core.connection_validator import validate_composition
from movematrix_core.exceptions import (
    CircularDependencyError, CompositionError, CompositionNotFoundError,
    InvalidStatusTransitionError, PrimitiveNotFoundError
)
from movematrix_core.models import Composition, CompositionStatus, Connection
from movematrix_core.move_compiler import MoveCompiler
from movematrix_core.pipeline import CompositionPipeline, with_overrides
from web_interface import composition_db


logger = logging.getLogger(__name__)

composition_bp = Blueprint('compositions', __name__)

DEFAULT_OWNER = 'default-user'

_catalog = None


# ─────────────────────────────────────────────────────────────────────
# Collaborators
# ─────────────────────────────────────────────────────────────────────

def get_catalog() -> PrimitiveCatalog:
    """Load the primitive catalog once per process."""
    global _catalog
    if _catalog is None:
        _catalog = load_catalog(catalog_path())
    return _catalog


def set_catalog(catalog: PrimitiveCatalog):
    global _catalog
    _catalog = catalog


def current_settings() -> Settings:
    return Settings.from_values({
        key: entry['value'] for key, entry in composition_db.resolved_settings().items()
    })


def get_pipeline() -> CompositionPipeline:
    return CompositionPipeline.from_settings(get_catalog(), current_settings())


def get_compiler() -> MoveCompiler:
    settings = current_settings()
    return MoveCompiler(
        cli_path=settings.aptos_cli,
        timeout=settings.compile_timeout,
        default_wallet=settings.default_wallet,
    )


def _body() -> Dict[str, Any]:
    return request.get_json(force=True, silent=True) or {}


def _fail(error, status: int = 500, **extra):
    payload = {'success': False, 'error': str(error)}
    payload.update(extra)
    return jsonify(payload), status


def _error_status(error: Exception) -> int:
    if isinstance(error, (CompositionNotFoundError, PrimitiveNotFoundError)):
        return 404
    if isinstance(error, (InvalidStatusTransitionError, CircularDependencyError)):
        return 409
    if isinstance(error, (CompositionError, ValueError)):
        return 400
    return 500


def _require_composition(composition_id: str) -> Composition:
    composition = composition_db.load_composition(composition_id)
    if composition is None:
        raise CompositionNotFoundError(f"Composition not found: {composition_id}", composition_id)
    return composition


# ─────────────────────────────────────────────────────────────────────
# ROUTES: Primitive catalog
# ─────────────────────────────────────────────────────────────────────

@composition_bp.route('/api/primitives', methods=['GET'])
def list_primitives():
    try:
        catalog = get_catalog()
        category = request.args.get('category')
        primitives = catalog.by_category(category) if category else catalog.all()
        return jsonify({'success': True, 'data': [p.to_dict() for p in primitives]})
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/primitives/<primitive_id>', methods=['GET'])
def get_primitive(primitive_id: str):
    try:
        return jsonify({'success': True, 'data': get_catalog().require(primitive_id).to_dict()})
    except Exception as e:
        return _fail(e, _error_status(e))


# ─────────────────────────────────────────────────────────────────────
# ROUTES: Composition CRUD
# ─────────────────────────────────────────────────────────────────────

@composition_bp.route('/api/compositions', methods=['GET'])
def list_compositions():
    try:
        owner_id = request.args.get('ownerId')
        return jsonify({'success': True, 'data': composition_db.list_compositions(owner_id)})
    except Exception as e:
        return _fail(e)


@composition_bp.route('/api/compositions', methods=['POST'])
def create_composition():
    """Create a composition in draft status.

    Body: ``{ name, description, ownerId?, primitiveIds | primitives, connections? }``
    """
    data = _body()
    if not data.get('name') or not data.get('description'):
        return _fail('Name and description are required', 400)

    try:
        composition = Composition.from_dict({
            'name': data['name'],
            'description': data['description'],
            'ownerId': data.get('ownerId') or DEFAULT_OWNER,
            'primitiveIds': data.get('primitiveIds'),
            'primitives': data.get('primitives'),
            'connections': data.get('connections'),
        })
        if not composition.primitive_ids:
            return _fail('At least one primitive is required', 400)

        composition_db.save_composition(composition)
        logger.info(f"Created composition {composition.id} '{composition.name}'")
        return jsonify({'success': True, 'data': composition.to_dict()}), 201
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/compositions/<composition_id>', methods=['GET'])
def get_composition(composition_id: str):
    try:
        return jsonify({'success': True, 'data': _require_composition(composition_id).to_dict()})
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/compositions/<composition_id>', methods=['PUT'])
def update_composition(composition_id: str):
    """Update metadata and/or the graph. Graph edits reset the status to draft."""
    data = _body()
    try:
        composition = _require_composition(composition_id)
        for field_name, attr in (('name', 'name'), ('description', 'description')):
            if field_name in data:
                setattr(composition, attr, data[field_name])

        graph_keys = ('primitiveIds', 'primitives', 'connections')
        if any(key in data for key in graph_keys):
            current = composition.to_dict()
            primitive_ids = data.get('primitiveIds')
            if primitive_ids is None and 'primitives' not in data:
                primitive_ids = current['primitiveIds']
            merged = Composition.from_dict({
                'primitiveIds': primitive_ids,
                'primitives': data.get('primitives', current['primitives']),
                'connections': data.get('connections', current['connections']),
            })
            if not merged.primitive_ids:
                return _fail('At least one primitive is required', 400)
            composition.primitive_ids = merged.primitive_ids
            composition.positions = merged.positions
            composition.connections = merged.connections
            composition.transition_to(CompositionStatus.DRAFT)

        composition_db.save_composition(composition)
        return jsonify({'success': True, 'data': composition.to_dict()})
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/compositions/<composition_id>', methods=['DELETE'])
def delete_composition(composition_id: str):
    try:
        if not composition_db.delete_composition(composition_id):
            return _fail(f"Composition not found: {composition_id}", 404)
        return jsonify({'success': True, 'data': {'deleted': True}})
    except Exception as e:
        return _fail(e)


# ─────────────────────────────────────────────────────────────────────
# ROUTES: Pipeline
# ─────────────────────────────────────────────────────────────────────

@composition_bp.route('/api/compositions/<composition_id>/validate', methods=['POST'])
def validate_stored_composition(composition_id: str):
    try:
        composition = _require_composition(composition_id)
        result = get_pipeline().validate(composition)
        composition_db.save_composition(composition)
        return jsonify({'success': True, 'data': result.to_dict(), 'status': composition.status.value})
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/compositions/<composition_id>/generate', methods=['POST'])
def generate_code(composition_id: str):
    """Generate Move code.

    Body: ``{ refine?: bool, autoChainCalls?: bool, emitInTopologicalOrder?: bool }``
    """
    data = _body()
    try:
        composition = _require_composition(composition_id)
        pipeline = get_pipeline()
        options = with_overrides(
            pipeline.options,
            auto_chain_calls=data.get('autoChainCalls'),
            emit_in_topological_order=data.get('emitInTopologicalOrder'),
        )
        result = pipeline.generate(composition, refine=bool(data.get('refine', True)), options=options)
        composition_db.update_generated_code(composition.id, composition.generated_code, composition.status)
        payload = result.to_dict()
        payload['status'] = composition.status.value
        return jsonify({'success': True, 'data': payload})
    except CircularDependencyError as e:
        return _fail(e, 409, cycle=e.cycle)
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/compositions/<composition_id>/deploy', methods=['POST'])
def deploy_composition(composition_id: str):
    """Compile and publish the stored code. Body: ``{ walletAddress? }``"""
    data = _body()
    try:
        composition = _require_composition(composition_id)
        result = get_pipeline().deploy(composition, get_compiler(), data.get('walletAddress'))
        if not result.success:
            return _fail(result.error, 400, data=result.to_dict())
        composition_db.update_deployment(composition.id, composition.deployment_tx_hash)
        return jsonify({'success': True, 'data': result.to_dict()})
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/compositions/<composition_id>/deployment', methods=['POST'])
def record_deployment(composition_id: str):
    """Record a deployment made outside the server. Body: ``{ txHash }``"""
    data = _body()
    try:
        composition = _require_composition(composition_id)
        get_pipeline().record_deployment(composition, data.get('txHash', ''))
        composition_db.update_deployment(composition.id, composition.deployment_tx_hash)
        return jsonify({'success': True, 'data': composition.to_dict()})
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/validate', methods=['POST'])
def validate_connections():
    """Validate posted connections. Body: ``{ connections, primitiveIds? }``"""
    data = _body()
    try:
        connections = [Connection.from_dict(c) for c in data.get('connections') or []]
        lookup = get_catalog().as_lookup(data.get('primitiveIds'))
        result = validate_composition(connections, lookup)
        return jsonify({'success': True, 'data': result.to_dict()})
    except Exception as e:
        return _fail(e, _error_status(e))


@composition_bp.route('/api/compile', methods=['POST'])
def compile_code():
    data = _body()
    if not data.get('code'):
        return _fail('No code provided', 400)
    try:
        result = get_compiler().compile(data['code'], data.get('walletAddress'))
        if not result.success:
            return _fail(result.error, 400, data=result.to_dict())
        return jsonify({'success': True, 'data': result.to_dict()})
    except Exception as e:
        return _fail(e)


@composition_bp.route('/api/deploy', methods=['POST'])
def deploy_code():
    data = _body()
    if not data.get('code'):
        return _fail('No code provided', 400)
    try:
        result = get_compiler().deploy(data['code'], data.get('walletAddress'))
        if not result.success:
            return _fail(result.error, 400, data=result.to_dict())
        return jsonify({'success': True, 'data': result.to_dict()})
    except Exception as e:
        return _fail(e)


# ─────────────────────────────────────────────────────────────────────
# ROUTES: Settings
# ─────────────────────────────────────────────────────────────────────

def _masked_settings() -> Dict[str, Dict[str, Any]]:
    """Every setting with effective value and provenance, secrets hidden."""
    resolved = composition_db.resolved_settings()
    for key in SECRET_SETTINGS:
        if resolved[key]['value']:
            resolved[key]['value'] = '********'
    return resolved


@composition_bp.route('/api/settings', methods=['GET'])
def get_settings():
    try:
        return jsonify({'success': True, 'data': _masked_settings()})
    except Exception as e:
        return _fail(e)


@composition_bp.route('/api/settings', methods=['PUT'])
def update_settings():
    """Body: ``{ "key": "value", ... }``"""
    data = _body()
    unknown = [key for key in data if key.lower() not in SETTING_SOURCES]
    if not data:
        return _fail('No updates provided', 400)
    if unknown:
        return _fail(f"Unknown setting(s): {', '.join(unknown)}", 400)
    try:
        stored = composition_db.save_settings(data)
        logger.info(f"Settings updated: {', '.join(sorted(stored))}")
        return jsonify({'success': True, 'data': _masked_settings()})
    except Exception as e:
        return _fail(e)


@composition_bp.route('/api/settings/<key>', methods=['DELETE'])
def revert_setting(key: str):
    """Remove a DB override so the setting reverts to env/default."""
    if key.lower() not in SETTING_SOURCES:
        return _fail(f'Unknown setting: {key}', 404)
    try:
        return jsonify({'success': True, 'data': {'deleted': composition_db.clear_setting(key)}})
    except Exception as e:
        return _fail(e)


def register_composition_api(app):
    """Register the composition blueprint."""
    app.register_blueprint(composition_bp)
    logger.info("Composition API registered under /api")
