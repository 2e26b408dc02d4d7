import sqlite3
from flask import current_app
from flask.cli import with_appcontext
import click
import logging


# Configure logging
logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Custom exception raised for database-related errors."""
    pass


class DatabaseManager:
    def __init__(self, connection):
        """
        Initialize the DatabaseManager with a database connection.

        :param connection: A database connection object.
        """
        self.connection = connection

    def close(self):
        """
        Close the database connection.

        :raises DatabaseError: If closing the connection fails.
        """
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                raise DatabaseError(f"Failed to close the database connection: {e}")

    def __del__(self):
        """
        Ensure the database connection is closed when the object is deleted.
        """
        try:
            self.close()
        except DatabaseError as e:
            logger.error(f"Warning: {e}")

    def execute_query(self, query, params=None, auto_commit=False):
        """
        Execute a single SQL query with optional parameters.

        :param query: The SQL query to execute.
        :type query: str
        :param params: A list or tuple of query parameters, defaults to None.
        :type params: list | tuple, optional
        :param auto_commit: Commit straight after executing.
        :return: The cursor after executing the query.
        :rtype: sqlite3.Cursor
        :raises DatabaseError: If an error occurs during query execution.
        """
        if params is None:
            params = []
        try:
            cursor = self.connection.cursor()
            cursor.execute(query, params)

            if auto_commit:
                self.commit()

            return cursor
        except Exception as e:
            raise DatabaseError(f"Database query failed: {e}")

    def commit(self):
        """
        Commit the current database transaction.

        :raises DatabaseError: If an error occurs during the commit operation.
        """
        try:
            self.connection.commit()
        except Exception as e:
            raise DatabaseError(f"Commit failed: {e}")

    def rollback(self):
        """
        Rollback the current transaction in case of errors.

        :raises DatabaseError: If the rollback operation fails.
        """
        try:
            self.connection.rollback()
            logger.info("Transaction rolled back successfully.")
        except Exception as e:
            raise DatabaseError(f"Rollback failed: {e}")

    def insert_item(self, table, data):
        """
        Insert a new record into a specified table.

        :param table: The name of the table to insert into.
        :type table: str
        :param data: A dictionary of column-value pairs to insert.
        :type data: dict
        :return: The rowid of the inserted record.
        :raises DatabaseError: If the insertion fails.
        """
        query = f"INSERT OR IGNORE INTO {table} ({', '.join(data.keys())}) VALUES ({', '.join(['?'] * len(data))})"
        try:
            cursor = self.execute_query(query, tuple(data.values()))
            self.commit()
            return cursor.lastrowid
        except DatabaseError as e:
            raise DatabaseError(f"Insertion failed: {e}")

    def get_item(self, table, criteria):
        """
        Retrieve records from a table based on search criteria.

        :param table: The name of the table to query.
        :type table: str
        :param criteria: A dictionary of column-value pairs for filtering results.
        :type criteria: dict
        :return: A list of matching records.
        :rtype: list
        :raises DatabaseError: If the retrieval fails.
        """
        query = f"SELECT * FROM {table} WHERE " + " AND ".join(f"{k}=?" for k in criteria.keys())
        try:
            cursor = self.execute_query(query, tuple(criteria.values()))
            return cursor.fetchall()
        except DatabaseError as e:
            raise DatabaseError(f"Retrieval failed: {e}")

    def delete_item(self, table, criteria):
        """
        Delete records from a table based on search criteria.

        :param table: The name of the table to delete from.
        :type table: str
        :param criteria: A dictionary of column-value pairs for filtering records to delete.
        :type criteria: dict
        :raises DatabaseError: If the deletion fails.
        """
        query = f"DELETE FROM {table} WHERE " + " AND ".join(f"{k}=?" for k in criteria.keys())
        try:
            self.execute_query(query, tuple(criteria.values()))
            self.commit()
        except DatabaseError as e:
            raise DatabaseError(f"Deletion failed: {e}")

    def upsert_items(self, table, rows, conflict_columns):
        """
        Insert or update many records in one statement batch, keyed by a unique constraint.

        Columns missing from a row keep their stored value on update.

        :param table: The name of the table to upsert into.
        :type table: str
        :param rows: The records to write, as dictionaries.
        :type rows: list[dict]
        :param conflict_columns: Columns of the unique constraint the upsert is keyed on.
        :type conflict_columns: list[str] | tuple[str, ...]
        :return: The number of records written.
        :rtype: int
        :raises DatabaseError: If the upsert fails; nothing from the batch is kept.
        """
        if not rows:
            return 0

        columns = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)

        updates = ", ".join(
            f"{col} = COALESCE(excluded.{col}, {table}.{col})"
            for col in columns if col not in conflict_columns
        )
        action = f"DO UPDATE SET {updates}" if updates else "DO NOTHING"
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(['?'] * len(columns))}) "
            f"ON CONFLICT({', '.join(conflict_columns)}) {action}"
        )
        params = [tuple(row.get(col) for col in columns) for row in rows]

        try:
            cursor = self.connection.cursor()
            cursor.executemany(query, params)
            self.commit()
            return len(rows)
        except Exception as e:
            try:
                self.rollback()
            except DatabaseError:
                logger.exception("Rollback after failed upsert also failed")
            raise DatabaseError(f"Upsert failed: {e}")


def create_db_manager(db_file: str):
    """
    Creates a DatabaseManager instance with a static SQLite connection.
    """
    connection = sqlite3.connect(
        db_file,
        timeout=30.0,
        detect_types=sqlite3.PARSE_DECLTYPES,
        check_same_thread=False
    )
    connection.execute("PRAGMA journal_mode=WAL;")
    connection.execute("PRAGMA synchronous=NORMAL;")
    connection.execute("PRAGMA foreign_keys=ON;")
    connection.row_factory = sqlite3.Row
    return DatabaseManager(connection)


@click.command('init-db')
@with_appcontext
def init_db_command():
    """
    Initialize the database using the CLI command.
    """
    db_manager = current_app.extensions['db_manager']
    init_db(db_manager)


def init_db(db_manager: DatabaseManager):
    """
    Create every table the app uses, if it does not exist yet.
    """
    try:
        logger.info("Initializing the database...")
        tables = {
            "jobs": '''
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    status TEXT,          -- 'running', 'paused', 'completed', 'failed', 'aborted'
                    pct INTEGER,
                    log TEXT,             -- JSON array of log lines
                    error TEXT,
                    result TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            ''',

            "projects": '''
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    fabric_pool TEXT NOT NULL DEFAULT '{}',   -- JSON map fabric_id -> pool entry
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );
            ''',

            "inventory_items": '''
                CREATE TABLE IF NOT EXISTS inventory_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    sku TEXT,
                    name TEXT,
                    description TEXT,
                    category TEXT,
                    subcategory TEXT,
                    quantity REAL,
                    unit TEXT,
                    cost_price REAL,
                    selling_price REAL,
                    unit_price REAL,
                    supplier TEXT,
                    location TEXT,
                    reorder_point REAL,
                    active INTEGER,
                    fabric_width REAL,
                    fabric_composition TEXT,
                    pattern_repeat_horizontal REAL,
                    pattern_repeat_vertical REAL,
                    price_per_meter REAL,
                    price_per_unit REAL,
                    markup_percentage REAL,
                    color TEXT,
                    collection_name TEXT,
                    price_group TEXT,
                    product_category TEXT,
                    tags TEXT,            -- JSON array
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (user_id, sku)
                );
            ''',

            "pricing_grids": '''
                CREATE TABLE IF NOT EXISTS pricing_grids (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    grid_code TEXT,
                    product_type TEXT,
                    price_group TEXT,
                    grid_data TEXT NOT NULL,   -- JSON standard grid
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );
            ''',

            "pricing_grid_rules": '''
                CREATE TABLE IF NOT EXISTS pricing_grid_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    grid_id INTEGER NOT NULL,
                    product_type TEXT,
                    system_type TEXT,
                    price_group TEXT,
                    priority INTEGER NOT NULL DEFAULT 0,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (grid_id) REFERENCES pricing_grids (id) ON DELETE CASCADE
                );
            ''',
        }

        for name, schema in tables.items():
            logger.info(f"Creating table: {name} (if required)")
            db_manager.execute_query(schema)

        db_manager.commit()
        logger.info("Database initialized successfully!")
    except DatabaseError as e:
        logger.error(f"An error occurred: {e}")
