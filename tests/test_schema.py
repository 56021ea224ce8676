"""Tests for schema definitions and DDL generation."""

import pytest

from database.exceptions import DatabaseSchemaError
from database.lib.schema_manager import SchemaManager

def tables_by_name(schema):
    return {table['name']: table for table in schema['tables']}

def test_schema_files_load():
    """Test that versioned schema files load and are keyed by version."""
    schema_files = SchemaManager(pool=None).load_schema_files()

    assert 1 in schema_files
    latest = schema_files[max(schema_files)]
    assert set(tables_by_name(latest)) == {
        'users',
        'categories',
        'items',
        'transaction_evidences',
        'shippings',
        'configs'
    }

def test_items_table_sql():
    schema = SchemaManager(pool=None).load_schema_files()[1]
    sql = SchemaManager.table_sql(tables_by_name(schema)['items'])

    assert sql.startswith('CREATE TABLE items (')
    assert 'id BIGSERIAL' in sql
    assert 'PRIMARY KEY (id)' in sql
    assert 'buyer_id INT8,' in sql
    assert 'price INT4 NOT NULL' in sql
    assert 'CHECK (price BETWEEN 100 AND 1000000)' in sql
    assert "CHECK ((buyer_id IS NOT NULL) = (status IN ('trading', 'sold_out')))" in sql

def test_one_open_evidence_per_item():
    schema = SchemaManager(pool=None).load_schema_files()[1]
    indexes = tables_by_name(schema)['transaction_evidences']['indexes']

    open_index = next(idx for idx in indexes if idx.get('unique'))
    assert open_index['columns'] == ['item_id']
    assert open_index['where'] == "status <> 'done'"

def test_column_defaults_and_unique():
    sql = SchemaManager.table_sql({
        'name': 'configs',
        'columns': [
            {'name': 'name', 'type': 'VARCHAR(191)', 'primary_key': True},
            {'name': 'val', 'type': 'VARCHAR(255)', 'nullable': False, 'default': "''", 'unique': True}
        ]
    })
    assert sql == (
        "CREATE TABLE configs (name VARCHAR(191), val VARCHAR(255) DEFAULT '' NOT NULL, "
        "PRIMARY KEY (name), UNIQUE (val))"
    )

def test_schema_statements_order():
    """Test that tables come before foreign keys, and foreign keys before indexes."""
    schema = SchemaManager(pool=None).load_schema_files()[1]
    statements = SchemaManager.schema_statements(schema)

    kinds = [statement.split(' ', 2)[:2] for statement in statements]
    first_fk = kinds.index(['ALTER', 'TABLE'])
    first_index = next(i for i, kind in enumerate(kinds) if kind[0] == 'CREATE' and kind[1] != 'TABLE')
    assert all(kind == ['CREATE', 'TABLE'] for kind in kinds[:first_fk])
    assert first_fk < first_index
    assert len([kind for kind in kinds if kind == ['CREATE', 'TABLE']]) == 6

    assert (
        "ALTER TABLE shippings ADD CONSTRAINT fk_shippings_transaction_evidence_id "
        "FOREIGN KEY (transaction_evidence_id) REFERENCES transaction_evidences(id)"
    ) in statements
    assert (
        "CREATE UNIQUE INDEX idx_evidences_open_item ON transaction_evidences (item_id) "
        "WHERE status <> 'done'"
    ) in statements

def test_schema_files_from_custom_dir(tmp_path):
    """Test that schema files are read from the configured directory."""
    (tmp_path / 'v2.py').write_text("schema = {'version': 2, 'tables': []}\n")
    (tmp_path / 'notes.py').write_text("schema = None\n")

    schema_files = SchemaManager(pool=None, schema_dir=tmp_path).load_schema_files()

    assert schema_files == {2: {'version': 2, 'tables': []}}

def test_schema_file_version_mismatch(tmp_path):
    (tmp_path / 'v3.py').write_text("schema = {'version': 4, 'tables': []}\n")

    with pytest.raises(DatabaseSchemaError):
        SchemaManager(pool=None, schema_dir=tmp_path).load_schema_files()
