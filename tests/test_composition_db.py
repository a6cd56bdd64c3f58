"""
Tests for SQLite composition persistence.
"""

import pytest

from movematrix_core.config import SETTING_SOURCES
from movematrix_core.models import Composition, CompositionStatus, Connection, ParameterMapping
from web_interface import composition_db


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(composition_db, 'DB_PATH', str(tmp_path / 'test.db'))


def make_composition(name="Test", owner_id="alice"):
    return Composition(
        name=name,
        description="desc",
        owner_id=owner_id,
        primitive_ids=['lending', 'swap'],
        positions={'lending': (10.0, 20.0), 'swap': (30.0, 40.0)},
        connections=[Connection('lending', 'borrow', 'swap', 'swapExact',
                                [ParameterMapping('amountIn', constant_value='100')])],
    )


class TestCompositionStore:
    """Test cases for composition CRUD."""

    def test_save_and_load(self):
        """Test a saved composition loads back with its graph."""
        composition = make_composition()
        meta = composition_db.save_composition(composition)
        assert meta['id'] == composition.id

        loaded = composition_db.load_composition(composition.id)
        assert loaded.name == "Test"
        assert loaded.owner_id == "alice"
        assert loaded.status == CompositionStatus.DRAFT
        assert loaded.primitive_ids == ['lending', 'swap']
        assert loaded.positions['swap'] == (30.0, 40.0)
        assert loaded.connections[0].parameter_mappings[0].constant_value == '100'

    def test_load_missing(self):
        """Test unknown ids load as None."""
        assert composition_db.load_composition('nope') is None

    def test_save_overwrites(self):
        """Test saving again updates the row."""
        composition = make_composition()
        composition_db.save_composition(composition)
        composition.name = "Renamed"
        composition.generated_code = "module a::b {}"
        composition.status = CompositionStatus.COMPILED
        composition_db.save_composition(composition)

        loaded = composition_db.load_composition(composition.id)
        assert loaded.name == "Renamed"
        assert loaded.generated_code == "module a::b {}"
        assert loaded.status == CompositionStatus.COMPILED
        assert len(composition_db.list_compositions()) == 1

    def test_list_by_owner(self):
        """Test listing filters by owner."""
        composition_db.save_composition(make_composition("A", "alice"))
        composition_db.save_composition(make_composition("B", "bob"))
        assert [c['name'] for c in composition_db.list_compositions('bob')] == ['B']
        assert len(composition_db.list_compositions()) == 2
        assert 'connections' not in composition_db.list_compositions()[0]

    def test_delete(self):
        """Test deletion."""
        composition = make_composition()
        composition_db.save_composition(composition)
        assert composition_db.delete_composition(composition.id) is True
        assert composition_db.delete_composition(composition.id) is False
        assert composition_db.load_composition(composition.id) is None

    def test_update_generated_code(self):
        """Test storing code marks the composition compiled."""
        composition = make_composition()
        composition_db.save_composition(composition)
        assert composition_db.update_generated_code(composition.id, "module x::y {}")
        loaded = composition_db.load_composition(composition.id)
        assert loaded.generated_code == "module x::y {}"
        assert loaded.status == CompositionStatus.COMPILED

    def test_update_deployment(self):
        """Test recording a deployment."""
        composition = make_composition()
        composition_db.save_composition(composition)
        assert composition_db.update_deployment(composition.id, '0xabc')
        loaded = composition_db.load_composition(composition.id)
        assert loaded.deployment_tx_hash == '0xabc'
        assert loaded.status == CompositionStatus.DEPLOYED
        assert not composition_db.update_deployment('nope', '0xabc')


class TestSettings:
    """Test cases for the settings overrides."""

    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch):
        for env_var, _ in SETTING_SOURCES.values():
            monkeypatch.delenv(env_var, raising=False)

    def test_save_and_clear(self):
        """Test overrides are stored lower-cased and can be cleared."""
        stored = composition_db.save_settings({'LLM_Model': 'gpt-test', 'llm_timeout': 30})
        assert stored == {'llm_model': 'gpt-test', 'llm_timeout': '30'}
        assert composition_db.setting_overrides() == {'llm_model': 'gpt-test', 'llm_timeout': '30'}
        assert composition_db.clear_setting('llm_model') is True
        assert composition_db.clear_setting('llm_model') is False
        assert composition_db.setting_overrides() == {'llm_timeout': '30'}

    def test_save_overwrites(self):
        """Test saving a key again replaces its value."""
        composition_db.save_settings({'llm_model': 'a'})
        composition_db.save_settings({'llm_model': 'b'})
        assert composition_db.setting_overrides() == {'llm_model': 'b'}

    def test_resolve_order(self, monkeypatch):
        """Test database, then environment, then default."""
        assert composition_db.resolved_settings()['llm_model'] == {
            'value': 'gpt-4o', 'source': 'default', 'default': 'gpt-4o'
        }
        monkeypatch.setenv('MOVEMATRIX_LLM_MODEL', 'from-env')
        assert composition_db.resolved_settings()['llm_model']['value'] == 'from-env'
        assert composition_db.resolved_settings()['llm_model']['source'] == 'environment'
        composition_db.save_settings({'llm_model': 'from-db'})
        assert composition_db.resolved_settings()['llm_model']['value'] == 'from-db'
        assert composition_db.resolved_settings()['llm_model']['source'] == 'database'

    def test_every_key_resolved(self):
        """Test all known settings are reported."""
        assert set(composition_db.resolved_settings()) == set(SETTING_SOURCES)
