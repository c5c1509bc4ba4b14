"""
database.py - SQLite Database Layer

Tables:
  employees    - remote identities (the enrollment id is the row id)
  templates    - current base64 template per employee
  scan_events  - clock IN / OUT history
"""

import sqlite3
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def get_connection(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_db(db_path: str):
    """Create tables if they don't already exist."""
    with get_connection(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS employees (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                name        TEXT NOT NULL,
                site_id     TEXT,
                device_id   TEXT,
                created_at  INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS templates (
                employee_id     INTEGER PRIMARY KEY REFERENCES employees(id) ON DELETE CASCADE,
                template_b64    TEXT NOT NULL,
                stored_at       INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS scan_events (
                id                  INTEGER PRIMARY KEY AUTOINCREMENT,
                employee_id         INTEGER NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
                action              TEXT NOT NULL,      -- 'IN' | 'OUT'
                confidence          REAL,
                client_local_time   TEXT,
                timestamp           INTEGER NOT NULL,
                client_ip           TEXT
            );
        """)
    logger.info("Database initialised.")


def employee_ref(employee_id: int) -> str:
    return f"EMP-{employee_id:05d}"


def formatted_enrollment_id(employee_id: int) -> str:
    return f"ENR-{employee_id:06d}"


# ─────────────────────────────────────────────
# EMPLOYEE OPERATIONS
# ─────────────────────────────────────────────
def create_employee(db_path: str, name: str, site_id: str, device_id: str,
                    template_b64: str, timestamp: int) -> int:
    with get_connection(db_path) as conn:
        cur = conn.execute(
            "INSERT INTO employees(name, site_id, device_id, created_at) VALUES(?,?,?,?)",
            (name, site_id, device_id, timestamp),
        )
        employee_id = cur.lastrowid
        conn.execute(
            "INSERT INTO templates(employee_id, template_b64, stored_at) VALUES(?,?,?)",
            (employee_id, template_b64, timestamp),
        )
    logger.info(f"Employee {employee_id} created for '{name}'")
    return employee_id


def get_employee(db_path: str, employee_id: int) -> Optional[dict]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT id, name, site_id, device_id, created_at FROM employees WHERE id=?",
            (employee_id,),
        ).fetchone()
    return dict(row) if row else None


def search_employees(db_path: str, query: str) -> list:
    """Case-insensitive substring match, in id order."""
    pattern = "%" + query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT id, name FROM employees WHERE name LIKE ? ESCAPE '\\' ORDER BY id",
            (pattern,),
        ).fetchall()
    return [{"id": r["id"], "name": r["name"], "ref": employee_ref(r["id"])} for r in rows]


def delete_employee(db_path: str, employee_id: int) -> bool:
    with get_connection(db_path) as conn:
        cur = conn.execute("DELETE FROM employees WHERE id=?", (employee_id,))
    if cur.rowcount:
        logger.info(f"Employee {employee_id} deleted with templates and events")
    return cur.rowcount > 0


# ─────────────────────────────────────────────
# TEMPLATE OPERATIONS
# ─────────────────────────────────────────────
def replace_template(db_path: str, employee_id: int, template_b64: str, timestamp: int):
    with get_connection(db_path) as conn:
        conn.execute(
            """INSERT INTO templates(employee_id, template_b64, stored_at)
               VALUES(?,?,?)
               ON CONFLICT(employee_id) DO UPDATE SET template_b64=excluded.template_b64,
                                                      stored_at=excluded.stored_at""",
            (employee_id, template_b64, timestamp),
        )
    logger.info(f"Template replaced for employee {employee_id}")


def get_template(db_path: str, employee_id: int) -> Optional[str]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT template_b64 FROM templates WHERE employee_id=?", (employee_id,)
        ).fetchone()
    return row["template_b64"] if row else None


# ─────────────────────────────────────────────
# SCAN EVENTS
# ─────────────────────────────────────────────
def record_scan(db_path: str, employee_id: int, confidence: float,
                client_local_time: str, timestamp: int, client_ip: str = "") -> str:
    """Insert the next event for *employee_id*, toggling from its last one."""
    with get_connection(db_path) as conn:
        last = conn.execute(
            "SELECT action FROM scan_events WHERE employee_id=? ORDER BY id DESC LIMIT 1",
            (employee_id,),
        ).fetchone()
        action = "OUT" if last is not None and last["action"] == "IN" else "IN"
        conn.execute(
            """INSERT INTO scan_events(employee_id, action, confidence, client_local_time,
                                       timestamp, client_ip)
               VALUES(?,?,?,?,?,?)""",
            (employee_id, action, confidence, client_local_time, timestamp, client_ip),
        )
    return action


def get_scan_events(db_path: str, employee_id: int = None, limit: int = 50) -> list:
    query = "SELECT * FROM scan_events"
    params: tuple = ()
    if employee_id is not None:
        query += " WHERE employee_id=?"
        params = (employee_id,)
    query += " ORDER BY id DESC LIMIT ?"
    params += (limit,)
    with get_connection(db_path) as conn:
        rows = conn.execute(query, params).fetchall()
    return [dict(r) for r in rows]
