"""
Tests for the composition REST API.
"""

from unittest.mock import MagicMock, patch

import pytest

from movematrix_core.catalog import load_catalog
from movematrix_core.config import SETTING_SOURCES
from movematrix_core.move_compiler import CompilationResult, DeploymentResult, MoveCompiler
from web_interface import composition_api, composition_db
from web_interface.app import app


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(composition_db, 'DB_PATH', str(tmp_path / 'api.db'))
    monkeypatch.setattr(composition_api, '_catalog', load_catalog())
    for env_var, _ in SETTING_SOURCES.values():
        monkeypatch.delenv(env_var, raising=False)
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def compiler(monkeypatch):
    fake = MagicMock(spec=MoveCompiler)
    monkeypatch.setattr(composition_api, 'get_compiler', lambda: fake)
    return fake


COMPOSITION = {
    'name': 'Leveraged Swap',
    'description': 'Borrow then swap',
    'primitives': [
        {'primitiveId': 'lending-primitive-1', 'position': {'x': 0, 'y': 0}},
        {'primitiveId': 'swap-primitive-1', 'position': {'x': 200, 'y': 0}},
    ],
    'connections': [{
        'sourceId': 'lending-primitive-1',
        'sourceFunction': 'borrow',
        'targetId': 'swap-primitive-1',
        'targetFunction': 'swap',
        'parameterMappings': [
            {'targetParam': 'amountIn', 'sourceParam': 'amount'},
            {'targetParam': 'tokenIn', 'sourceParam': None, 'constantValue': '@0x1'},
        ],
        'description': 'Swap the borrowed amount',
    }],
}


def create(client, body=None):
    response = client.post('/api/compositions', json=body or COMPOSITION)
    assert response.status_code == 201
    return response.get_json()['data']


class TestPrimitives:
    """Test cases for catalog routes."""

    def test_list(self, client):
        """Test the catalog is listed."""
        data = client.get('/api/primitives').get_json()
        assert data['success']
        assert 'lending-primitive-1' in [p['id'] for p in data['data']]

    def test_filter_by_category(self, client):
        """Test category filtering."""
        data = client.get('/api/primitives?category=swap').get_json()['data']
        assert [p['id'] for p in data] == ['swap-primitive-1']

    def test_get_one(self, client):
        """Test a single primitive and the not-found case."""
        assert client.get('/api/primitives/swap-primitive-1').get_json()['data']['moduleName'] == 'swap_primitive'
        response = client.get('/api/primitives/ghost')
        assert response.status_code == 404
        assert response.get_json()['success'] is False


class TestCompositionCrud:
    """Test cases for composition CRUD routes."""

    def test_create(self, client):
        """Test creation defaults."""
        data = create(client)
        assert data['status'] == 'draft'
        assert data['ownerId'] == 'default-user'
        assert data['primitiveIds'] == ['lending-primitive-1', 'swap-primitive-1']

    def test_create_requires_fields(self, client):
        """Test name, description and primitives are mandatory."""
        assert client.post('/api/compositions', json={'description': 'x', 'primitiveIds': ['a']}).status_code == 400
        assert client.post('/api/compositions', json={'name': 'x', 'primitiveIds': ['a']}).status_code == 400
        response = client.post('/api/compositions', json={'name': 'x', 'description': 'y'})
        assert response.status_code == 400
        assert 'primitive' in response.get_json()['error']

    def test_create_rejects_bad_mapping(self, client):
        """Test a mapping with neither source nor constant is rejected."""
        body = dict(COMPOSITION, connections=[{
            'sourceId': 'lending-primitive-1', 'sourceFunction': 'borrow',
            'targetId': 'swap-primitive-1', 'targetFunction': 'swap',
            'parameterMappings': [{'targetParam': 'amountIn'}],
        }])
        assert client.post('/api/compositions', json=body).status_code == 400

    def test_get_list_delete(self, client):
        """Test loading, listing and deleting."""
        composition_id = create(client)['id']
        assert client.get(f'/api/compositions/{composition_id}').get_json()['data']['name'] == 'Leveraged Swap'
        assert len(client.get('/api/compositions').get_json()['data']) == 1
        assert client.get('/api/compositions?ownerId=someone').get_json()['data'] == []
        assert client.delete(f'/api/compositions/{composition_id}').status_code == 200
        assert client.get(f'/api/compositions/{composition_id}').status_code == 404
        assert client.delete(f'/api/compositions/{composition_id}').status_code == 404

    def test_update_graph_resets_status(self, client):
        """Test editing connections puts the composition back in draft."""
        composition_id = create(client)['id']
        client.post(f'/api/compositions/{composition_id}/generate', json={'refine': False})

        response = client.put(f'/api/compositions/{composition_id}', json={'connections': []})
        data = response.get_json()['data']
        assert data['status'] == 'draft'
        assert data['connections'] == []
        assert data['primitiveIds'] == ['lending-primitive-1', 'swap-primitive-1']

    def test_update_name_keeps_status(self, client):
        """Test renaming does not reset the status."""
        composition_id = create(client)['id']
        client.post(f'/api/compositions/{composition_id}/generate', json={'refine': False})
        data = client.put(f'/api/compositions/{composition_id}', json={'name': 'New'}).get_json()['data']
        assert data['name'] == 'New'
        assert data['status'] == 'compiled'


class TestPipelineRoutes:
    """Test cases for validation, generation and deployment routes."""

    def test_validate(self, client):
        """Test validating a stored composition."""
        composition_id = create(client)['id']
        body = client.post(f'/api/compositions/{composition_id}/validate').get_json()
        assert body['data']['isValid'] is True
        assert body['status'] == 'validated'

    def test_generate(self, client):
        """Test generation stores code."""
        composition_id = create(client)['id']
        body = client.post(f'/api/compositions/{composition_id}/generate', json={'refine': False}).get_json()
        code = body['data']['code']
        assert body['data']['status'] == 'compiled'
        assert code.startswith('module defi_matrix::leveraged_swap {')
        assert 'swap_primitive::swap(amount, @0x1, /* unmapped tokenOut: address */);' in code

        stored = client.get(f'/api/compositions/{composition_id}').get_json()['data']
        assert stored['generatedCode'] == code

    def test_generate_options(self, client):
        """Test emitter switches in the request body."""
        composition_id = create(client)['id']
        body = client.post(f'/api/compositions/{composition_id}/generate',
                           json={'refine': False, 'autoChainCalls': True}).get_json()
        assert '        execute_connection_1(user, c1_amount);' in body['data']['code']

    def test_generate_cycle(self, client):
        """Test a cyclic composition is rejected with the cycle."""
        body = dict(COMPOSITION, connections=COMPOSITION['connections'] + [{
            'sourceId': 'swap-primitive-1', 'sourceFunction': 'swap',
            'targetId': 'lending-primitive-1', 'targetFunction': 'borrow',
            'parameterMappings': [],
        }])
        composition_id = create(client, body)['id']
        response = client.post(f'/api/compositions/{composition_id}/generate', json={'refine': False})
        assert response.status_code == 409
        assert response.get_json()['cycle'][0] == response.get_json()['cycle'][-1]

    def test_deploy(self, client, compiler):
        """Test deploying a generated composition."""
        composition_id = create(client)['id']
        client.post(f'/api/compositions/{composition_id}/generate', json={'refine': False})
        compiler.deploy.return_value = DeploymentResult(success=True, tx_hash='0xabc', network='testnet')

        body = client.post(f'/api/compositions/{composition_id}/deploy', json={'walletAddress': None}).get_json()

        assert body['data']['txHash'] == '0xabc'
        stored = client.get(f'/api/compositions/{composition_id}').get_json()['data']
        assert stored['status'] == 'deployed'
        assert stored['deploymentTxHash'] == '0xabc'

    def test_deploy_without_code(self, client, compiler):
        """Test deployment is refused before generation."""
        composition_id = create(client)['id']
        response = client.post(f'/api/compositions/{composition_id}/deploy', json={})
        assert response.status_code == 400
        compiler.deploy.assert_not_called()

    def test_record_deployment(self, client):
        """Test recording a wallet-side deployment."""
        composition_id = create(client)['id']
        assert client.post(f'/api/compositions/{composition_id}/deployment',
                           json={'txHash': '0xabc'}).status_code == 409
        client.post(f'/api/compositions/{composition_id}/generate', json={'refine': False})
        body = client.post(f'/api/compositions/{composition_id}/deployment', json={'txHash': '0xabc'}).get_json()
        assert body['data']['status'] == 'deployed'
        assert client.post(f'/api/compositions/{composition_id}/deployment', json={}).status_code == 400

    def test_adhoc_validate(self, client):
        """Test validating posted connections."""
        body = client.post('/api/validate', json={
            'connections': [{
                'sourceId': 'lending-primitive-1', 'sourceFunction': 'borrow',
                'targetId': 'options-primitive-1', 'targetFunction': 'write_call',
            }],
        }).get_json()
        assert body['data']['isValid'] is True
        assert [w['type'] for w in body['data']['warnings']] == ['SecurityIssue']

    def test_compile_and_deploy_raw(self, client, compiler):
        """Test the raw code routes."""
        assert client.post('/api/compile', json={}).status_code == 400
        compiler.compile.return_value = CompilationResult(success=True, module_name='m', metadata_hex='0x00')
        assert client.post('/api/compile', json={'code': 'module a::m {}'}).get_json()['data']['moduleName'] == 'm'
        compiler.deploy.return_value = DeploymentResult(success=False, error='no CLI')
        response = client.post('/api/deploy', json={'code': 'module a::m {}'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'no CLI'

    def test_compile_rejects_path_module_name(self, client):
        """Test a module name with path segments never reaches the CLI."""
        with patch('movematrix_core.move_compiler.subprocess.run') as run:
            response = client.post('/api/compile', json={'code': 'module a::../../../x {}'})
        assert response.status_code == 400
        assert "Invalid module name" in response.get_json()['error']
        run.assert_not_called()


class TestSettingsRoutes:
    """Test cases for settings routes."""

    def test_defaults(self, client):
        """Test settings report their defaults."""
        data = client.get('/api/settings').get_json()['data']
        assert data['llm_model'] == {'value': 'gpt-4o', 'source': 'default', 'default': 'gpt-4o'}

    def test_update_and_revert(self, client):
        """Test overrides and reverting them."""
        data = client.put('/api/settings', json={'llm_model': 'local-model', 'llm_api_key': 'sk-1'}).get_json()['data']
        assert data['llm_model']['value'] == 'local-model'
        assert data['llm_model']['source'] == 'database'
        assert data['llm_api_key']['value'] == '********'

        assert client.delete('/api/settings/llm_model').get_json()['data']['deleted'] is True
        assert client.get('/api/settings').get_json()['data']['llm_model']['value'] == 'gpt-4o'

    def test_unknown_setting(self, client):
        """Test unknown keys are rejected."""
        assert client.put('/api/settings', json={'bogus': 1}).status_code == 400
        assert client.delete('/api/settings/bogus').status_code == 404

    def test_module_address_setting(self, client):
        """Test the module address override reaches generation."""
        client.put('/api/settings', json={'module_address': '0xcafe'})
        composition_id = create(client)['id']
        code = client.post(f'/api/compositions/{composition_id}/generate', json={'refine': False}).get_json()['data']['code']
        assert code.startswith('module 0xcafe::leveraged_swap {')

    def test_settings_reach_pipeline(self, client):
        """Test stored overrides are what the pipeline is built from."""
        client.put('/api/settings', json={'llm_endpoint': 'http://llm.local/v1', 'llm_model': 'tiny'})
        pipeline = composition_api.get_pipeline()
        assert pipeline.refiner.enabled
        assert pipeline.refiner.model == 'tiny'

    def test_bad_endpoint_does_not_break_generation(self, client):
        """Test an unusable refinement endpoint still yields the emitted code."""
        client.put('/api/settings', json={'llm_endpoint': 'localhost:9/v1'})
        composition_id = create(client)['id']
        response = client.post(f'/api/compositions/{composition_id}/generate', json={'refine': True})
        data = response.get_json()['data']
        assert response.status_code == 200
        assert data['refined'] is False
        assert data['code'].startswith('module defi_matrix::leveraged_swap {')
