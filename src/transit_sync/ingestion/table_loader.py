import io
import os
from typing import Any, Dict, List, Mapping, Optional

import pyarrow
import sqlalchemy as sa
from pyarrow import csv

from transit_sync.database.database_utils import DatabaseManager
from transit_sync.ingestion.gtfs_schema_map import TableIndex
from transit_sync.runtime_utils.process_logger import ProcessLogger

BATCH_SIZE = 500

# bytes read from the file per pyarrow block. rows are re-batched to
# BATCH_SIZE before insert, so this only bounds memory.
READ_BLOCK_BYTES = 1 << 20


def read_header(file_path: str) -> List[str]:
    """
    read the header row of a delimited file and return its trimmed field names
    """
    with open(file_path, "rb") as reader:
        header_line = reader.readline()

    header = csv.read_csv(io.BytesIO(header_line)).column_names
    return [name.strip() for name in header]


def create_table_statements(
    db_manager: DatabaseManager,
    table_name: str,
    columns: Mapping[str, str],
) -> List[sa.sql.elements.TextClause]:
    """
    CREATE TABLE (if missing) and DELETE statements that prepare a table to be
    reloaded from scratch
    """
    quoted_table = db_manager.quote(table_name)
    column_defs = ", ".join(f"{db_manager.quote(name)} {storage_type}" for name, storage_type in columns.items())

    return [
        sa.text(f"CREATE TABLE IF NOT EXISTS {quoted_table} ({column_defs});"),
        sa.text(f"DELETE FROM {quoted_table};"),
    ]


def rebuild_index(db_manager: DatabaseManager, table_name: str, index: TableIndex) -> None:
    """
    drop and recreate the secondary index of a table. index names are global
    in sqlite, so they are prefixed with the table name.
    """
    index_name = db_manager.quote(f"{table_name}_{index.index_name}")
    db_manager.execute_many(
        [
            sa.text(f"DROP INDEX IF EXISTS {index_name};"),
            sa.text(
                f"CREATE INDEX IF NOT EXISTS {index_name} "
                f"ON {db_manager.quote(table_name)}({db_manager.quote(index.column_name)});"
            ),
        ]
    )


def load_table(
    db_manager: DatabaseManager,
    table_name: str,
    columns: Mapping[str, str],
    index: Optional[TableIndex],
    file_path: str,
    batch_size: int = BATCH_SIZE,
) -> int:
    """
    replace the contents of table_name with the rows of a delimited file

    rows are streamed from the file and committed batch_size rows at a time.
    a crash part way through leaves the table partially loaded, so callers
    must only trust the table once their own pipeline reports success.

    @param db_manager - manager for the relational store
    @param table_name - fully qualified table name (ie. NSW_metro_stop_times)
    @param columns - ordered column name -> storage type
    @param index - optional secondary index rebuilt after the load
    @param file_path - delimited text file with a header row

    @return int - number of rows inserted
    """
    if len(columns) == 0:
        return 0

    process_logger = ProcessLogger("load_table", table_name=table_name, file_path=file_path)
    process_logger.log_start()

    if not os.path.exists(file_path):
        process_logger.add_metadata(skipped=True, row_count=0, print_log=False)
        process_logger.log_complete()
        return 0

    try:
        if os.path.getsize(file_path) == 0:
            db_manager.execute_many(create_table_statements(db_manager, table_name, columns))
            process_logger.add_metadata(empty_file=True, row_count=0, print_log=False)
            process_logger.log_complete()
            return 0

        column_names = list(columns.keys())
        header = read_header(file_path)

        read_options = csv.ReadOptions(column_names=header, skip_rows=1, block_size=READ_BLOCK_BYTES)
        convert_options = csv.ConvertOptions(
            column_types={name: pyarrow.string() for name in header},
            include_columns=column_names,
            include_missing_columns=True,
            strings_can_be_null=True,
        )

        db_manager.execute_many(create_table_statements(db_manager, table_name, columns))

        row_count = 0
        batch_count = 0
        rows: List[Dict[str, Any]] = []
        for record_batch in csv.open_csv(file_path, read_options=read_options, convert_options=convert_options):
            rows.extend(record_batch.to_pylist())
            while len(rows) >= batch_size:
                db_manager.insert_rows(table_name, column_names, rows[:batch_size])
                row_count += batch_size
                batch_count += 1
                del rows[:batch_size]

        if rows:
            db_manager.insert_rows(table_name, column_names, rows)
            row_count += len(rows)
            batch_count += 1

        if index is not None:
            rebuild_index(db_manager, table_name, index)

        process_logger.add_metadata(row_count=row_count, batch_count=batch_count, print_log=False)
        process_logger.log_complete()

        return row_count

    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception
