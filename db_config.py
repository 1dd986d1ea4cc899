"""
Database settings for the correlation engine.

Values come from the real environment first, then from a .env file in
the project root.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).resolve().parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path, override=False)

DB_CONFIG = {
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'fleet_operations'),
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD', ''),
    'connect_timeout': int(os.environ.get('DB_CONNECT_TIMEOUT', '10')),
    'application_name': os.environ.get('DB_APPLICATION_NAME', 'trip-correlation'),
}


def describe_target() -> str:
    """host:port/dbname, for log lines (no credentials)."""
    return f"{DB_CONFIG['host']}:{DB_CONFIG['port']}/{DB_CONFIG['dbname']}"


def get_connection(cursor_factory=None):
    """Open a new psycopg2 connection with the shared settings."""
    import psycopg2
    kwargs = dict(DB_CONFIG)
    if cursor_factory is not None:
        kwargs['cursor_factory'] = cursor_factory
    return psycopg2.connect(**kwargs)
