import os
from typing import Any, Dict, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

from transit_sync.runtime_utils.local_files import GTFS_DB_PATH
from transit_sync.runtime_utils.process_logger import ProcessLogger

# seconds a connection waits on a locked database before raising. concurrent
# table loads from different sources all write to the same sqlite file.
BUSY_TIMEOUT_SECONDS = 60


def sqlite_event_set_pragmas(dbapi_connection: Any, _: Any) -> None:
    """
    configure every new sqlite connection. write ahead logging lets readers
    continue while a table is being reloaded.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_SECONDS * 1000};")
    cursor.close()


def get_local_engine(db_path: str = GTFS_DB_PATH, echo: bool = False) -> sa.engine.Engine:
    """
    Get an SQL Alchemy engine connected to a local sqlite database file
    """
    process_logger = ProcessLogger("create_sql_engine", db_path=db_path)
    process_logger.log_start()
    try:
        db_folder = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(db_folder, exist_ok=True)

        engine = sa.create_engine(
            f"sqlite:///{db_path}",
            echo=echo,
            # parallel table loads each open their own connection
            poolclass=sa.pool.NullPool,
            connect_args={
                "timeout": BUSY_TIMEOUT_SECONDS,
                # table loads run in worker threads
                "check_same_thread": False,
            },
        )
        sa.event.listen(engine, "connect", sqlite_event_set_pragmas)

        process_logger.log_complete()
        return engine
    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception


class DatabaseManager:
    """
    manager class for the relational store holding loaded schedule tables
    """

    def __init__(self, db_path: str = GTFS_DB_PATH, verbose: bool = False):
        """
        initialize db manager object, creates engine and sessionmaker
        """
        self.db_path = db_path
        self.engine = get_local_engine(db_path, echo=verbose)
        self.session = sessionmaker(bind=self.engine)

    def quote(self, identifier: str) -> str:
        """quote a table, index or column name for the active dialect"""
        return self.engine.dialect.identifier_preparer.quote(identifier)

    def execute_many(self, statements: Sequence[sa.sql.elements.TextClause]) -> None:
        """
        execute several db actions inside of a single transaction
        """
        with self.session.begin() as cursor:
            for statement in statements:
                cursor.execute(statement)

    def insert_rows(
        self,
        table_name: str,
        column_names: Sequence[str],
        rows: List[Dict[str, Any]],
    ) -> None:
        """
        insert a batch of rows into a table in one transaction. values are
        passed through untyped, the column storage types of the table decide
        how they are kept.
        """
        if len(rows) == 0:
            return

        insert_as = sa.table(table_name, *[sa.column(name) for name in column_names])

        with self.session.begin() as cursor:
            cursor.execute(sa.insert(insert_as), rows)

    def select_as_list(self, select_query: sa.sql.selectable.Select) -> List[Dict[str, Any]]:
        """
        select data from db table and return list
        """
        with self.session.begin() as cursor:
            return [row._asdict() for row in cursor.execute(select_query)]

    def count_rows(self, table_name: str) -> int:
        """number of rows currently in table_name"""
        count_query = sa.select(sa.func.count().label("row_count")).select_from(sa.table(table_name))
        return int(self.select_as_list(count_query)[0]["row_count"])

    def table_exists(self, table_name: str) -> bool:
        """check if table_name has been created"""
        return sa.inspect(self.engine).has_table(table_name)

    def index_names(self, table_name: str) -> List[Optional[str]]:
        """names of the secondary indexes on table_name"""
        return [index["name"] for index in sa.inspect(self.engine).get_indexes(table_name)]

    def dispose(self) -> None:
        """close all pooled connections"""
        self.engine.dispose()
