"""SQLite schema definitions for SealKeep."""

SCHEMA_VERSION = 1

CREATE_TABLES = [
    # Generic key-value table backing custody records, the key directory,
    # TOTP enrolments and consumed-code markers. One row per key; the
    # revision column drives compare-and-set.
    """
    CREATE TABLE IF NOT EXISTS kv_records (
        record_key TEXT PRIMARY KEY,
        record_value TEXT NOT NULL,
        revision INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # Schema version table
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_kv_records_updated_at ON kv_records(updated_at)",
]


def get_init_schema():
    """
    Get complete schema initialization SQL

    Returns:
        List of SQL statements to execute
    """
    statements = []
    statements.extend(CREATE_TABLES)
    statements.extend(CREATE_INDEXES)
    statements.append(
        f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})"
    )
    return statements


def get_drop_schema():
    """
    Get SQL statements to drop all tables for testing
    """
    return [
        "DROP TABLE IF EXISTS kv_records",
        "DROP TABLE IF EXISTS schema_version",
    ]
