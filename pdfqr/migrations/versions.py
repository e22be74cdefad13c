"""Migrations shipped with the application, in the order they apply.

Every procedure is guarded so that running it against a database that
already has its effect is harmless: tables use `IF NOT EXISTS`, seed rows
use `INSERT OR IGNORE` or an existence check, and columns are only added
when `PRAGMA table_info` does not list them.
"""

import uuid
from datetime import datetime, timezone

from ..config import settings
from ..database import column_names
from .registry import MigrationRegistry

REGISTRY = MigrationRegistry([
    "create_tables",
    "create_settings_table",
    "create_audit_log_table",
    "add_user_settings",
    "add_storage_settings",
    "add_system_variables",
    "update_document_table",
])

_INSERT_SETTING = (
    "INSERT OR IGNORE INTO settings "
    "(setting_key, setting_value, setting_description, setting_type, is_public, is_editable) "
    "VALUES (?, ?, ?, ?, ?, ?)"
)

DEFAULT_SETTINGS = [
    ("general.site_title", "PDF QR Link", "Site Title", "text", 1, 1),
    ("general.site_description_short", "Modern PDF Sharing Platform", "Short Description", "text", 1, 1),
    ("general.site_description", "Share PDF documents with ease. Upload your PDFs and get a secure link immediately.", "Site Description", "text", 1, 1),
    ("general.admin_email", "admin@example.com", "Admin Email", "email", 0, 1),
    ("general.items_per_page", "10", "Items Per Page", "number", 0, 1),
    ("upload.max_file_size", "10485760", "Maximum File Size (bytes)", "number", 0, 1),
    ("security.session_timeout", "3600", "Session Timeout (seconds)", "number", 0, 1),
    ("security.max_login_attempts", "5", "Maximum Login Attempts", "number", 0, 1),
    ("qrcode.size", "300", "QR Code Size", "number", 0, 1),
    ("system.last_migration", "", "Last applied migration", "text", 0, 0),
]

STORAGE_SETTINGS = [
    ("storage.max_space", "1048576000", "Maximum storage space (bytes, default 1000MB)", "number", 0, 1),
    ("storage.warning_threshold", "80", "Storage warning threshold percentage", "number", 0, 1),
]


@REGISTRY.migration("create_tables", accept_conflicts=True)
def create_tables(conn):
    """Core tables plus the default `admin` account."""
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uuid TEXT UNIQUE,
            username TEXT NOT NULL UNIQUE,
            password TEXT NOT NULL,
            email TEXT,
            is_admin INTEGER DEFAULT 0,
            last_login TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS documents (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uuid TEXT UNIQUE,
            title TEXT NOT NULL,
            description TEXT,
            filename TEXT NOT NULL,
            original_filename TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            mime_type TEXT NOT NULL,
            short_url TEXT NOT NULL UNIQUE,
            qr_code TEXT NOT NULL,
            user_id INTEGER NOT NULL,
            user_uuid TEXT,
            is_public INTEGER DEFAULT 1,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(id),
            FOREIGN KEY (user_uuid) REFERENCES users(uuid)
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS stats (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uuid TEXT UNIQUE,
            document_id INTEGER,
            document_uuid TEXT UNIQUE,
            views INTEGER DEFAULT 0,
            downloads INTEGER DEFAULT 0,
            last_view_at DATETIME,
            last_download_at DATETIME,
            FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE,
            FOREIGN KEY (document_uuid) REFERENCES documents(uuid) ON DELETE CASCADE
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS views (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uuid TEXT UNIQUE,
            document_id INTEGER NOT NULL,
            document_uuid TEXT,
            ip_address TEXT,
            user_agent TEXT,
            referer TEXT,
            device_type TEXT,
            country TEXT,
            city TEXT,
            viewed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE,
            FOREIGN KEY (document_uuid) REFERENCES documents(uuid) ON DELETE CASCADE
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS tags (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uuid TEXT UNIQUE,
            name TEXT NOT NULL UNIQUE,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS document_tags (
            document_id INTEGER NOT NULL,
            tag_id INTEGER NOT NULL,
            document_uuid TEXT,
            tag_uuid TEXT,
            PRIMARY KEY (document_id, tag_id),
            FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE,
            FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE,
            FOREIGN KEY (document_uuid) REFERENCES documents(uuid) ON DELETE CASCADE,
            FOREIGN KEY (tag_uuid) REFERENCES tags(uuid) ON DELETE CASCADE
        )
    """)

    existing = conn.exec_driver_sql("SELECT COUNT(*) FROM users WHERE username = ?", ("admin",)).scalar()
    if not existing:
        from ..services import PWD_CTX  # services imports this package
        conn.exec_driver_sql(
            "INSERT INTO users (username, password, is_admin, uuid) VALUES (?, ?, ?, ?)",
            ("admin", PWD_CTX.hash(settings.DEFAULT_ADMIN_PASSWORD), 1, str(uuid.uuid4())),
        )


@REGISTRY.migration("create_settings_table")
def create_settings_table(conn):
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS settings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            setting_key TEXT NOT NULL UNIQUE,
            setting_value TEXT NOT NULL,
            setting_description TEXT,
            setting_type TEXT DEFAULT 'text',
            is_public INTEGER DEFAULT 0,
            is_editable INTEGER DEFAULT 1,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    for row in DEFAULT_SETTINGS:
        conn.exec_driver_sql(_INSERT_SETTING, row)


@REGISTRY.migration("create_audit_log_table")
def create_audit_log_table(conn):
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uuid TEXT UNIQUE,
            user_id INTEGER,
            user_uuid TEXT,
            action TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            entity_uuid TEXT,
            details TEXT,
            ip_address TEXT,
            created_at DATETIME NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id),
            FOREIGN KEY (user_uuid) REFERENCES users(uuid)
        )
    """)


@REGISTRY.migration("add_user_settings")
def add_user_settings(conn):
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS user_settings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            setting_key TEXT NOT NULL,
            setting_value TEXT,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(id),
            UNIQUE(user_id, setting_key)
        )
    """)


@REGISTRY.migration("add_storage_settings")
def add_storage_settings(conn):
    for row in STORAGE_SETTINGS:
        conn.exec_driver_sql(_INSERT_SETTING, row)


@REGISTRY.migration("add_system_variables")
def add_system_variables(conn):
    conn.exec_driver_sql("""
        CREATE TABLE IF NOT EXISTS system_variables (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            variable_key TEXT NOT NULL UNIQUE,
            variable_value TEXT,
            description TEXT,
            is_encrypted INTEGER DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    variables = [
        ("system.last_backup", "", "Last database backup date"),
        ("system.installation_id", str(uuid.uuid4()), "Unique installation identifier"),
        ("system.is_maintenance_enabled", "0", "Enable maintenance mode"),
        ("system.installation_date", now, "Installation date"),
        ("system.database_version", "1.0", "Database schema version"),
    ]
    for row in variables:
        conn.exec_driver_sql(
            "INSERT OR IGNORE INTO system_variables (variable_key, variable_value, description) VALUES (?, ?, ?)",
            row,
        )


@REGISTRY.migration("update_document_table")
def update_document_table(conn):
    """Add `download_count` and `expiry_date` to documents when missing."""
    existing = column_names(conn, "documents")
    if "download_count" not in existing:
        conn.exec_driver_sql("ALTER TABLE documents ADD COLUMN download_count INTEGER DEFAULT 0")
    if "expiry_date" not in existing:
        conn.exec_driver_sql("ALTER TABLE documents ADD COLUMN expiry_date DATETIME DEFAULT NULL")
