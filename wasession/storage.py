"""
Persistent SQLite-backed credential store for the wasession client.

Holds at most one device identity (the paired local device) plus its
session material. The protocol engine writes into it as a side effect of
pairing and logging out; everything else only asks whether an identity is
present.

Storage structure:
<session_dir>/
    wa_session.db       - SQLite database, single `device` table
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from wasession.errors import StorageUnavailable
from wasession.keys import KeyPair
from wasession.shared.log import get_logger
from wasession.state import DeviceIdentity

logger = get_logger(__name__)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS device (
    jid             TEXT PRIMARY KEY,
    registration_id INTEGER NOT NULL,
    noise_key       BLOB NOT NULL,
    identity_key    BLOB NOT NULL,
    adv_secret      BLOB NOT NULL,
    platform        TEXT,
    business_name   TEXT
)
"""


class CredentialStore:
    """
    Durable mapping from this install to zero-or-one DeviceIdentity.

    Usable as a context manager; the connection is opened lazily by load()
    if open() was not called first.
    """

    def __init__(self, session_dir: Path, db_name: str = "wa_session.db"):
        """
        Args:
            session_dir: Directory holding the database file
            db_name: Database file name inside session_dir
        """
        self.session_dir = Path(session_dir).expanduser()
        self.db_path = self.session_dir / db_name
        self._conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> "CredentialStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def ensure_location(self) -> None:
        """Create the session directory if it does not exist yet."""
        try:
            self.session_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"cannot create {self.session_dir}: {e}") from e

    def open(self) -> None:
        """Open the database file and make sure the schema exists."""
        if self._conn is not None:
            return
        self.ensure_location()
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = sqlite3.connect(self.db_path)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute(_SCHEMA)
            conn.commit()
        except sqlite3.Error as e:
            if conn is not None:
                conn.close()
            raise StorageUnavailable(f"cannot open {self.db_path}: {e}") from e
        self._conn = conn
        logger.info(f"Opened credential store at {self.db_path}")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        assert self._conn is not None
        return self._conn

    # ========== Queries ==========

    def load(self) -> Optional[DeviceIdentity]:
        """
        Return the resident paired identity, or None.

        Raises:
            StorageUnavailable: the database cannot be opened or read, or the
                stored row is damaged
        """
        try:
            row = self._connection().execute(
                "SELECT jid, registration_id, noise_key, identity_key, adv_secret,"
                " platform, business_name FROM device LIMIT 1"
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"cannot read {self.db_path}: {e}") from e
        if row is None:
            logger.debug("No device identity stored")
            return None

        jid, registration_id, noise_key, identity_key, adv_secret, platform, business_name = row
        try:
            identity = DeviceIdentity(
                registration_id=registration_id,
                noise_key=KeyPair.from_private(bytes(noise_key)),
                identity_key=KeyPair.from_private(bytes(identity_key)),
                adv_secret=bytes(adv_secret),
                jid=jid,
                platform=platform,
                business_name=business_name,
            )
        except (TypeError, ValueError) as e:
            raise StorageUnavailable(f"corrupt identity in {self.db_path}: {e}") from e
        logger.debug("Loaded device identity", extra={"jid": jid})
        return identity

    # ========== Engine-side mutations ==========

    def save(self, identity: DeviceIdentity) -> None:
        """
        Replace the resident identity. Only paired identities are stored.
        """
        if not identity.is_paired:
            raise ValueError("only a paired identity can be stored")
        conn = self._connection()
        try:
            with conn:
                conn.execute("DELETE FROM device")
                conn.execute(
                    "INSERT INTO device (jid, registration_id, noise_key, identity_key,"
                    " adv_secret, platform, business_name) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        identity.jid,
                        identity.registration_id,
                        identity.noise_key.private,
                        identity.identity_key.private,
                        identity.adv_secret,
                        identity.platform,
                        identity.business_name,
                    ),
                )
        except sqlite3.Error as e:
            raise StorageUnavailable(f"cannot write {self.db_path}: {e}") from e
        logger.info("Saved device identity", extra={"jid": identity.jid})

    def clear(self) -> None:
        """Delete the resident identity (explicit logout)."""
        conn = self._connection()
        try:
            with conn:
                conn.execute("DELETE FROM device")
        except sqlite3.Error as e:
            raise StorageUnavailable(f"cannot write {self.db_path}: {e}") from e
        logger.info("Cleared device identity")
