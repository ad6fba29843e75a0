"""
Schema Repository for extracting target database schema information.

Reads tables (with comments), columns (type, nullability, comment) and
primary keys from information_schema of a PostgreSQL or MySQL data
source, using three bulk queries per dialect, and returns TableSchema
models.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlbot.domain.base_enums import Dialect
from sqlbot.domain.entities import DataSource
from sqlbot.domain.errors import DatabaseError, SchemaSyncError
from sqlbot.domain.schema_nodes import ColumnSchema, TableSchema
from sqlbot.infrastructure.target_database import TargetDatabaseRegistry
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()

TableKey = Tuple[Optional[str], str]

_PG_EXCLUDED = "('pg_catalog', 'information_schema', 'pg_toast')"

_POSTGRES_QUERIES = {
    "tables": f"""
        SELECT
            t.table_schema AS table_schema,
            t.table_name AS table_name,
            obj_description(
                format('%I.%I', t.table_schema, t.table_name)::regclass, 'pg_class'
            ) AS table_comment
        FROM information_schema.tables t
        WHERE t.table_type = 'BASE TABLE'
          AND t.table_schema NOT IN {_PG_EXCLUDED}
        ORDER BY t.table_schema, t.table_name
    """,
    "columns": f"""
        SELECT
            c.table_schema AS table_schema,
            c.table_name AS table_name,
            c.column_name AS column_name,
            c.data_type AS data_type,
            c.is_nullable AS is_nullable,
            pgd.description AS column_comment
        FROM information_schema.columns c
        LEFT JOIN pg_catalog.pg_statio_all_tables st
               ON st.schemaname = c.table_schema AND st.relname = c.table_name
        LEFT JOIN pg_catalog.pg_description pgd
               ON pgd.objoid = st.relid AND pgd.objsubid = c.ordinal_position
        WHERE c.table_schema NOT IN {_PG_EXCLUDED}
        ORDER BY c.table_schema, c.table_name, c.ordinal_position
    """,
    "primary_keys": f"""
        SELECT
            tc.table_schema AS table_schema,
            tc.table_name AS table_name,
            kcu.column_name AS column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON tc.constraint_name = kcu.constraint_name
         AND tc.table_schema = kcu.table_schema
         AND tc.table_name = kcu.table_name
        WHERE tc.constraint_type = 'PRIMARY KEY'
          AND tc.table_schema NOT IN {_PG_EXCLUDED}
        ORDER BY tc.table_schema, tc.table_name, kcu.ordinal_position
    """,
}

_MYSQL_QUERIES = {
    "tables": """
        SELECT
            TABLE_SCHEMA AS table_schema,
            TABLE_NAME AS table_name,
            TABLE_COMMENT AS table_comment
        FROM information_schema.tables
        WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'
        ORDER BY TABLE_NAME
    """,
    "columns": """
        SELECT
            TABLE_SCHEMA AS table_schema,
            TABLE_NAME AS table_name,
            COLUMN_NAME AS column_name,
            COLUMN_TYPE AS data_type,
            IS_NULLABLE AS is_nullable,
            COLUMN_COMMENT AS column_comment
        FROM information_schema.columns
        WHERE TABLE_SCHEMA = %s
        ORDER BY TABLE_NAME, ORDINAL_POSITION
    """,
    "primary_keys": """
        SELECT
            TABLE_SCHEMA AS table_schema,
            TABLE_NAME AS table_name,
            COLUMN_NAME AS column_name
        FROM information_schema.KEY_COLUMN_USAGE
        WHERE TABLE_SCHEMA = %s AND CONSTRAINT_NAME = 'PRIMARY'
        ORDER BY TABLE_NAME, ORDINAL_POSITION
    """,
}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_tables(
    table_rows: Sequence[Dict[str, Any]],
    column_rows: Sequence[Dict[str, Any]],
    pk_rows: Sequence[Dict[str, Any]],
    include_schema: bool = True,
) -> List[TableSchema]:
    """
    Group introspection rows into TableSchema models.

    Args:
        table_rows: {table_schema, table_name, table_comment}
        column_rows: {table_schema, table_name, column_name, data_type, is_nullable, column_comment}
        pk_rows: {table_schema, table_name, column_name}
        include_schema: Keep the schema name on tables (PostgreSQL) or drop it (MySQL)

    Returns:
        Tables in the order of table_rows
    """
    def key(row: Dict[str, Any]) -> TableKey:
        return (row.get("table_schema") if include_schema else None, row["table_name"])

    tables: Dict[TableKey, TableSchema] = {}
    for row in table_rows:
        table_key = key(row)
        tables[table_key] = TableSchema(
            table_name=row["table_name"],
            schema_name=table_key[0],
            description=_text(row.get("table_comment")),
        )

    for row in column_rows:
        table = tables.get(key(row))
        if table is None:
            # Columns of views and other non-table relations
            continue
        table.columns.append(
            ColumnSchema(
                column_name=row["column_name"],
                data_type=str(row["data_type"]),
                is_nullable=str(row.get("is_nullable", "YES")).upper() == "YES",
                description=_text(row.get("column_comment")),
            )
        )

    for row in pk_rows:
        table = tables.get(key(row))
        if table is not None:
            table.primary_keys.append(row["column_name"])

    return list(tables.values())


class SchemaRepository:
    """
    Repository for target schema metadata.

    Usage:
        schema_repo = SchemaRepository(registry)
        tables = await schema_repo.extract_tables(data_source)
        for table in tables:
            print(table.to_document_text())
    """

    def __init__(self, registry: TargetDatabaseRegistry):
        self.registry = registry

    async def extract_tables(
        self,
        data_source: DataSource,
        on_table: Optional[Callable[[str], None]] = None,
    ) -> List[TableSchema]:
        """
        Extract all base tables of a data source.

        Args:
            data_source: Target data source
            on_table: Optional callback invoked with each table's full name

        Raises:
            SchemaSyncError: If introspection fails
        """
        trace_id = current_trace_id()
        logger.info(
            "Extracting schema",
            data_source_id=data_source.id,
            dialect=data_source.dialect.value,
            trace_id=trace_id,
        )

        if data_source.dialect == Dialect.MYSQL:
            queries, params, include_schema = _MYSQL_QUERIES, [data_source.db_name], False
        else:
            queries, params, include_schema = _POSTGRES_QUERIES, [], True

        try:
            target = await self.registry.get(data_source)
            table_rows = await target.fetch(queries["tables"], params)
            column_rows = await target.fetch(queries["columns"], params)
            pk_rows = await target.fetch(queries["primary_keys"], params)
        except DatabaseError as e:
            logger.error("Schema extraction failed", error=e.message, trace_id=trace_id)
            raise SchemaSyncError(f"Schema extraction failed: {e.message}") from e

        tables = build_tables(table_rows, column_rows, pk_rows, include_schema=include_schema)
        if on_table is not None:
            for table in tables:
                on_table(table.full_name)

        logger.info(
            "Schema extracted",
            data_source_id=data_source.id,
            table_count=len(tables),
            column_count=sum(len(t.columns) for t in tables),
            trace_id=trace_id,
        )
        return tables
