from __future__ import annotations

from pathlib import Path
from typing import Mapping

from csvbench.engine.base import Row, dataset_is_readable, has_columns, normalize_criteria, query_failed
from csvbench.util.deps import quote_sql_identifier, quote_sql_string, require_duckdb

ENGINE_NAME = "duckdb_scan"


def _source_sql(file_path: str | Path) -> str:
    return f"read_csv({quote_sql_string(str(file_path))}, header=true, all_varchar=true)"


def _projection_sql(columns) -> str:
    quoted = [quote_sql_identifier(name) for name in columns]
    return ", ".join(f"COALESCE({name}, '') AS {name}" for name in quoted)


def query(file_path: str | Path, criteria: Mapping[str, str]) -> list[Row]:
    """In-memory DuckDB scan with a parameterised ``WHERE`` clause.

    Empty fields come back as ``""`` rather than NULL.
    """
    if not dataset_is_readable(file_path, engine=ENGINE_NAME):
        return []
    duckdb = require_duckdb("duckdb_scan.query()")
    wanted = normalize_criteria(criteria)
    source = _source_sql(file_path)
    con = duckdb.connect(database=":memory:")
    try:
        columns = [column[0] for column in con.execute(f"SELECT * FROM {source} LIMIT 0").description]
        if not has_columns(columns, wanted):
            return []
        sql = f"SELECT * FROM (SELECT {_projection_sql(columns)} FROM {source}) AS dataset"
        params: list[str] = []
        if wanted:
            sql += " WHERE " + " AND ".join(f"{quote_sql_identifier(field)} = ?" for field in wanted)
            params = list(wanted.values())
        cursor = con.execute(sql, params)
        names = [column[0] for column in cursor.description]
        return [dict(zip(names, record)) for record in cursor.fetchall()]
    except Exception as exc:
        return query_failed(ENGINE_NAME, file_path, exc)
    finally:
        con.close()
