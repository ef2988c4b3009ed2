from sqlthrottle.db.database import Connection, Database, PreparedStatement
from sqlthrottle.db.engine import create_engine

__all__ = [
    "Connection",
    "Database",
    "PreparedStatement",
    "create_engine",
]
