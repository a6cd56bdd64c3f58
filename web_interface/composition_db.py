"""
Composition Database - SQLite-backed composition persistence.

Stores compositions (graph state, generated code, deployment hash) and the
settings overrides used by the web interface.

Schema:
  compositions - id, name, description, owner_id, status, state_json,
                 generated_code, deployment_tx_hash, created_at, updated_at
  settings     - key, value, updated_at
"""

import os
import json
import sqlite3
import time
from typing import Dict, List, Optional, Any

from movematrix_core.config import SETTING_SOURCES, database_path, resolve_setting
from movematrix_core.models import Composition, CompositionStatus


DB_PATH = database_path()


def _get_db() -> sqlite3.Connection:
    """Return a connection to the compositions database, creating tables if needed."""
    os.makedirs(os.path.dirname(DB_PATH) or '.', exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA journal_mode=WAL')

    conn.executescript('''
        CREATE TABLE IF NOT EXISTS compositions (
            id                  TEXT PRIMARY KEY,
            name                TEXT NOT NULL,
            description         TEXT DEFAULT '',
            owner_id            TEXT NOT NULL,
            status              TEXT NOT NULL DEFAULT 'draft',
            state_json          TEXT NOT NULL DEFAULT '{}',
            generated_code      TEXT,
            deployment_tx_hash  TEXT,
            created_at          REAL NOT NULL,
            updated_at          REAL NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_compositions_owner ON compositions(owner_id);

        CREATE TABLE IF NOT EXISTS settings (
            key           TEXT PRIMARY KEY,
            value         TEXT NOT NULL,
            updated_at    REAL NOT NULL
        );
    ''')
    conn.commit()
    return conn


def _graph_state(composition: Composition) -> Dict[str, Any]:
    data = composition.to_dict()
    return {
        'primitiveIds': data['primitiveIds'],
        'primitives': data['primitives'],
        'connections': data['connections'],
    }


def _row_to_composition(row: sqlite3.Row) -> Composition:
    data = json.loads(row['state_json'])
    data.update({
        'id': row['id'],
        'name': row['name'],
        'description': row['description'],
        'ownerId': row['owner_id'],
        'status': row['status'],
        'generatedCode': row['generated_code'],
        'deploymentTxHash': row['deployment_tx_hash'],
        'createdAt': row['created_at'],
        'updatedAt': row['updated_at'],
    })
    return Composition.from_dict(data)


# ─────────────────────────────────────────────────────────────────────
# Composition CRUD
# ─────────────────────────────────────────────────────────────────────

def save_composition(composition: Composition) -> Dict[str, Any]:
    """Insert or overwrite a composition. Returns its metadata."""
    conn = _get_db()
    now = time.time()
    composition.updated_at = now
    conn.execute('''
        INSERT INTO compositions (id, name, description, owner_id, status, state_json,
                                  generated_code, deployment_tx_hash, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE
           SET name = excluded.name,
               description = excluded.description,
               owner_id = excluded.owner_id,
               status = excluded.status,
               state_json = excluded.state_json,
               generated_code = excluded.generated_code,
               deployment_tx_hash = excluded.deployment_tx_hash,
               updated_at = excluded.updated_at
    ''', (
        composition.id, composition.name, composition.description, composition.owner_id,
        composition.status.value, json.dumps(_graph_state(composition)),
        composition.generated_code, composition.deployment_tx_hash,
        composition.created_at, now,
    ))
    conn.commit()
    conn.close()

    return {
        'id': composition.id,
        'name': composition.name,
        'status': composition.status.value,
        'updatedAt': now,
    }


def load_composition(composition_id: str) -> Optional[Composition]:
    """Load a full composition, or None if it does not exist."""
    conn = _get_db()
    row = conn.execute('SELECT * FROM compositions WHERE id = ?', (composition_id,)).fetchone()
    conn.close()
    return _row_to_composition(row) if row else None


def list_compositions(owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return composition metadata (no graph state), newest first."""
    conn = _get_db()
    query = '''
        SELECT id, name, description, owner_id, status, deployment_tx_hash, created_at, updated_at
          FROM compositions
    '''
    params = ()
    if owner_id:
        query += ' WHERE owner_id = ?'
        params = (owner_id,)
    rows = conn.execute(query + ' ORDER BY updated_at DESC', params).fetchall()
    conn.close()

    return [{
        'id': r['id'],
        'name': r['name'],
        'description': r['description'],
        'ownerId': r['owner_id'],
        'status': r['status'],
        'deploymentTxHash': r['deployment_tx_hash'],
        'createdAt': r['created_at'],
        'updatedAt': r['updated_at'],
    } for r in rows]


def delete_composition(composition_id: str) -> bool:
    conn = _get_db()
    cursor = conn.execute('DELETE FROM compositions WHERE id = ?', (composition_id,))
    conn.commit()
    deleted = cursor.rowcount > 0
    conn.close()
    return deleted


def update_generated_code(composition_id: str, code: str,
                          status: CompositionStatus = CompositionStatus.COMPILED) -> bool:
    """Store freshly generated code without touching the graph."""
    conn = _get_db()
    cursor = conn.execute('''
        UPDATE compositions
           SET generated_code = ?, status = ?, updated_at = ?
         WHERE id = ?
    ''', (code, status.value, time.time(), composition_id))
    conn.commit()
    updated = cursor.rowcount > 0
    conn.close()
    return updated


def update_deployment(composition_id: str, tx_hash: str) -> bool:
    """Record the deployment transaction and mark the composition deployed."""
    conn = _get_db()
    cursor = conn.execute('''
        UPDATE compositions
           SET deployment_tx_hash = ?, status = ?, updated_at = ?
         WHERE id = ?
    ''', (tx_hash, CompositionStatus.DEPLOYED.value, time.time(), composition_id))
    conn.commit()
    updated = cursor.rowcount > 0
    conn.close()
    return updated


# ─────────────────────────────────────────────────────────────────────
# Settings overrides
# ─────────────────────────────────────────────────────────────────────
#
# Rows here shadow the environment for the keys in
# movematrix_core.config.SETTING_SOURCES. Keys are stored lower-cased.

def setting_overrides() -> Dict[str, str]:
    """Return every stored override."""
    conn = _get_db()
    rows = conn.execute('SELECT key, value FROM settings').fetchall()
    conn.close()
    return {r['key']: r['value'] for r in rows}


def save_settings(values: Dict[str, Any]) -> Dict[str, str]:
    """Upsert several overrides in one transaction and return what was stored."""
    now = time.time()
    stored = {key.lower(): str(value) for key, value in values.items()}
    conn = _get_db()
    with conn:
        conn.executemany('''
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE
               SET value = excluded.value,
                   updated_at = excluded.updated_at
        ''', [(key, value, now) for key, value in stored.items()])
    conn.close()
    return stored


def clear_setting(key: str) -> bool:
    """Drop an override so the key falls back to the environment."""
    conn = _get_db()
    with conn:
        cursor = conn.execute('DELETE FROM settings WHERE key = ?', (key.lower(),))
    conn.close()
    return cursor.rowcount > 0


def resolved_settings() -> Dict[str, Dict[str, str]]:
    """Effective value and provenance of every known setting, from one read."""
    overrides = setting_overrides()
    resolved = {}
    for key, (_, default) in SETTING_SOURCES.items():
        value, source = resolve_setting(key, overrides)
        resolved[key] = {'value': value, 'source': source, 'default': default}
    return resolved
