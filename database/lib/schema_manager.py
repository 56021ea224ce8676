"""Database schema management module.

Schema versions live in ``database/schema/vN.py`` as plain dicts. A fresh
database gets the latest version created in one transaction; an existing one
runs the ``migrations`` statements of every newer version in order.
"""
import importlib.util
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'

class SchemaManager:
    """Creates and migrates the trading schema."""

    def __init__(self, pool, schema_dir: Optional[Path] = None) -> None:
        """Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_dir: Directory containing schema version files
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR
        self.current_version = 0

    async def initialize(self) -> None:
        """Bring the database up to the latest schema version.

        Raises:
            DatabaseSchemaError: If no schema files are found or a statement fails
        """
        schema_files = self.load_schema_files()
        if not schema_files:
            raise DatabaseSchemaError(f"No schema files found in {self._schema_dir}")

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    'CREATE TABLE IF NOT EXISTS schema_version ('
                    'version INT8 PRIMARY KEY, '
                    'applied_at TIMESTAMPTZ NOT NULL DEFAULT now())'
                )
                self.current_version = await conn.fetchval(
                    'SELECT COALESCE(MAX(version), 0) FROM schema_version'
                )

                latest = max(schema_files)
                if self.current_version >= latest:
                    logger.info(f"Schema is at version {self.current_version}")
                    return

                async with conn.transaction():
                    if self.current_version == 0:
                        await self._install(conn, schema_files[latest])
                    else:
                        await self._migrate(conn, schema_files)
        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    async def drop(self) -> None:
        """Drop the tables of the latest schema and the version record."""
        schema_files = self.load_schema_files()
        names = [table['name'] for table in schema_files[max(schema_files)]['tables']] if schema_files else []
        async with self.pool.acquire() as conn:
            for name in reversed(names):
                await conn.execute(f'DROP TABLE IF EXISTS {name} CASCADE')
            await conn.execute('DROP TABLE IF EXISTS schema_version')
        logger.info(f"Dropped {len(names)} tables")

    def load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Load all schema version files.

        Returns:
            Dict mapping version numbers to schema definitions, ascending

        Raises:
            DatabaseSchemaError: If a schema file has no definition or the wrong version
        """
        schema_files = {}
        if not self._schema_dir.exists():
            return schema_files

        for file in self._schema_dir.glob('v*.py'):
            try:
                version = int(file.stem[1:])
            except ValueError:
                logger.warning(f"Ignoring schema file {file.name}")
                continue

            spec = importlib.util.spec_from_file_location(f"schema_{file.stem}", file)
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)

            schema = getattr(module, 'schema', None)
            if schema is None:
                raise DatabaseSchemaError(f"Schema file {file.name} has no 'schema' definition")
            if schema['version'] != version:
                raise DatabaseSchemaError(
                    f"Schema file {file.name} declares version {schema['version']}"
                )
            schema_files[version] = schema

        return dict(sorted(schema_files.items()))

    async def _install(self, conn, schema: Dict[str, Any]) -> None:
        """Create every table of ``schema`` on an empty database."""
        for statement in self.schema_statements(schema):
            await conn.execute(statement)
        await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', schema['version'])
        logger.info(f"Created schema version {schema['version']} ({len(schema['tables'])} tables)")

    async def _migrate(self, conn, schema_files: Dict[int, Dict[str, Any]]) -> None:
        """Run the migrations of every version newer than the current one."""
        for version, schema in schema_files.items():
            if version <= self.current_version:
                continue
            for statement in schema.get('migrations', []):
                await conn.execute(statement)
            await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', version)
            logger.info(f"Migrated schema to version {version}")

    @classmethod
    def schema_statements(cls, schema: Dict[str, Any]) -> List[str]:
        """DDL for a schema: all tables, then foreign keys, then indexes."""
        tables = schema.get('tables', [])
        statements = [cls.table_sql(table) for table in tables]

        for table in tables:
            for fk in table.get('foreign_keys', []):
                statements.append(
                    f"ALTER TABLE {table['name']} "
                    f"ADD CONSTRAINT fk_{table['name']}_{fk['columns'][0]} "
                    f"FOREIGN KEY ({', '.join(fk['columns'])}) REFERENCES {fk['references']}"
                )

        for table in tables:
            for idx in table.get('indexes', []):
                unique = 'UNIQUE ' if idx.get('unique') else ''
                where = f" WHERE {idx['where']}" if 'where' in idx else ''
                statements.append(
                    f"CREATE {unique}INDEX {idx['name']} "
                    f"ON {table['name']} ({', '.join(idx['columns'])}){where}"
                )

        return statements

    @staticmethod
    def table_sql(table: Dict[str, Any]) -> str:
        """Build the CREATE TABLE statement for a table definition."""
        columns = []
        constraints = []

        for col in table['columns']:
            col_def = f"{col['name']} {col['type']}"

            if col.get('primary_key'):
                constraints.append(f"PRIMARY KEY ({col['name']})")
            elif col.get('unique'):
                constraints.append(f"UNIQUE ({col['name']})")

            if 'default' in col:
                col_def += f" DEFAULT {col['default']}"

            if col.get('nullable') is False:
                col_def += " NOT NULL"

            columns.append(col_def)

        if isinstance(table.get('primary_key'), list):
            constraints.append(f"PRIMARY KEY ({', '.join(table['primary_key'])})")

        for check in table.get('checks', []):
            constraints.append(f"CHECK ({check})")

        return f"CREATE TABLE {table['name']} ({', '.join(columns + constraints)})"
