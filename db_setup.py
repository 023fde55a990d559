import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List

from db_models import Contact, LinkPrecedence, contact_adapter
from errors import StorageFailure
from logging_config import get_logger

logger = get_logger(__name__)

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS Contact (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        phoneNumber TEXT,
        email TEXT,
        linkedId INTEGER,
        linkPrecedence TEXT CHECK(linkPrecedence IN ('secondary', 'primary')),
        createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
        updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP,
        deletedAt DATETIME,
        FOREIGN KEY (linkedId) REFERENCES Contact (id)
    );
    CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email);
    CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber);
    CREATE INDEX IF NOT EXISTS idx_contact_linked ON Contact (linkedId);
'''


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _to_contacts(rows) -> List[Contact]:
    return [contact_adapter.validate_python(dict(row)) for row in rows]


class ContactTransaction:
    """Contact store primitives bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def find_contacts(self, email: str = None, phone: str = None) -> List[Contact]:
        """Contacts whose email OR phone matches, oldest first.

        Only the supplied fields take part in the match.
        """
        conditions = []
        params = []
        if email:
            conditions.append("email = ?")
            params.append(email)
        if phone:
            conditions.append("phoneNumber = ?")
            params.append(phone)
        if not conditions:
            return []

        query = f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND ({" OR ".join(conditions)})
            ORDER BY createdAt ASC, id ASC
        """
        return _to_contacts(self.conn.execute(query, params).fetchall())

    def get_contacts_by_ids(self, contact_ids) -> List[Contact]:
        contact_ids = list(contact_ids)
        if not contact_ids:
            return []
        placeholders = ", ".join("?" for _ in contact_ids)
        query = f"""
            SELECT * FROM Contact
            WHERE id IN ({placeholders}) AND deletedAt IS NULL
            ORDER BY createdAt ASC, id ASC
        """
        return _to_contacts(self.conn.execute(query, contact_ids).fetchall())

    def get_all_linked_contacts(self, primary_id: int) -> List[Contact]:
        """The primary and every contact linked to it, oldest first."""
        rows = self.conn.execute("""
            SELECT * FROM Contact
            WHERE (id = ? OR linkedId = ?) AND deletedAt IS NULL
            ORDER BY createdAt ASC, id ASC
        """, (primary_id, primary_id)).fetchall()
        return _to_contacts(rows)

    def create_contact(
        self,
        email: str = None,
        phone: str = None,
        linked_id: int = None,
        precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
    ) -> Contact:
        now = _now()
        cursor = self.conn.execute("""
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (phone, email, linked_id, LinkPrecedence(precedence).value, now, now))
        row = self.conn.execute(
            "SELECT * FROM Contact WHERE id = ?", (cursor.lastrowid,)
        ).fetchone()
        return contact_adapter.validate_python(dict(row))

    def update_to_secondary(self, contact_id: int, primary_id: int) -> None:
        self.conn.execute("""
            UPDATE Contact
            SET linkedId = ?, linkPrecedence = 'secondary', updatedAt = ?
            WHERE id = ?
        """, (primary_id, _now(), contact_id))

    def relink_secondaries(self, old_primary_id: int, new_primary_id: int) -> int:
        """Re-point every contact linked to old_primary_id; returns the row count."""
        cursor = self.conn.execute("""
            UPDATE Contact
            SET linkedId = ?, updatedAt = ?
            WHERE linkedId = ? AND deletedAt IS NULL
        """, (new_primary_id, _now(), old_primary_id))
        return cursor.rowcount


class ContactStore:
    """SQLite-backed contact store.

    Every unit of work opens its own connection, so a store instance can be
    shared between request threads.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def get_db_connection(self) -> sqlite3.Connection:
        try:
            # isolation_level=None: transactions are opened explicitly below
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            raise StorageFailure(f"Could not open contact store: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        conn = self.get_db_connection()
        try:
            conn.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise StorageFailure(f"Could not initialise contact store: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[ContactTransaction]:
        """Run a unit of work atomically.

        BEGIN IMMEDIATE takes the write lock up front, so concurrent units of
        work against the same database run one after another. Everything is
        committed on a clean exit and rolled back on any exception.
        """
        conn = self.get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield ContactTransaction(conn)
            except BaseException:
                conn.rollback()
                logger.warning("Contact store transaction rolled back")
                raise
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageFailure(f"Contact store error: {exc}") from exc
        finally:
            conn.close()

    def soft_delete(self, contact_id: int) -> None:
        with self.transaction() as tx:
            now = _now()
            tx.conn.execute(
                "UPDATE Contact SET deletedAt = ?, updatedAt = ? WHERE id = ?",
                (now, now, contact_id),
            )

    def list_contacts(self, include_deleted: bool = False) -> List[Contact]:
        query = "SELECT * FROM Contact"
        if not include_deleted:
            query += " WHERE deletedAt IS NULL"
        query += " ORDER BY id ASC"
        conn = self.get_db_connection()
        try:
            return _to_contacts(conn.execute(query).fetchall())
        except sqlite3.Error as exc:
            raise StorageFailure(f"Contact store error: {exc}") from exc
        finally:
            conn.close()
