"""
ENGINE DATABASE
================
SQLite persistence for the minimal state the trading engine needs to resume
after a restart: the account (capital, open position, trades, counters) and
the learning state (weights, score).

Each is stored as one JSON blob under a key, so several engine instances can
share a file by using different keys.
"""
import sqlite3
import json
import os
from typing import Dict, Optional

from config import ENGINE_DB_PATH
from logging_config import log
from models.trade_models import EngineState, LearningState

ENGINE_STATE_TABLE = "engine_state"
LEARNING_STATE_TABLE = "learning_state"


class EngineDatabase:
    """
    SQLite store for resumable engine state.

    Schema:
    - engine_state:   key -> EngineState JSON
    - learning_state: key -> LearningState JSON
    """

    def __init__(self, db_path: str = ENGINE_DB_PATH):
        self.db_path = db_path

        # Ensure data directory exists
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self._init_database()

    def _get_connection(self):
        """
        Get a database connection with proper settings for concurrent access.
        Uses WAL mode for better read/write concurrency.
        """
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    def _init_database(self):
        """Create database tables if they don't exist."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")

        for table in (ENGINE_STATE_TABLE, LEARNING_STATE_TABLE):
            cursor.execute(f'''
                CREATE TABLE IF NOT EXISTS {table} (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            ''')

        conn.commit()
        conn.close()

    def _save(self, table: str, key: str, data: Dict):
        conn = self._get_connection()
        try:
            conn.execute(f'''
                INSERT INTO {table} (key, data, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET data = excluded.data, updated_at = CURRENT_TIMESTAMP
            ''', (key, json.dumps(data)))
            conn.commit()
        finally:
            conn.close()

    def _load(self, table: str, key: str) -> Optional[Dict]:
        conn = self._get_connection()
        try:
            row = conn.execute(f"SELECT data FROM {table} WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            log(f"[Engine] Corrupt {table} row for '{key}': {e}", level='WARNING')
            return None

    def save_engine_state(self, state: EngineState, key: str = "default"):
        self._save(ENGINE_STATE_TABLE, key, state.to_dict())

    def load_engine_state(self, key: str = "default") -> Optional[EngineState]:
        data = self._load(ENGINE_STATE_TABLE, key)
        if data is None:
            return None
        try:
            return EngineState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            log(f"[Engine] Unreadable engine state for '{key}': {e}", level='WARNING')
            return None

    def save_learning_state(self, learning: LearningState, key: str = "default"):
        self._save(LEARNING_STATE_TABLE, key, learning.to_dict())

    def load_learning_state(self, key: str = "default") -> Optional[LearningState]:
        data = self._load(LEARNING_STATE_TABLE, key)
        if data is None:
            return None
        try:
            return LearningState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            log(f"[Learning] Unreadable learning state for '{key}': {e}", level='WARNING')
            return None

    def clear(self, key: str = "default"):
        """Forget both states for key (fresh start)."""
        conn = self._get_connection()
        try:
            for table in (ENGINE_STATE_TABLE, LEARNING_STATE_TABLE):
                conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()


# Singleton instance
_db_instance: Optional[EngineDatabase] = None


def get_engine_db(db_path: str = None) -> EngineDatabase:
    """Get or create the engine database singleton."""
    global _db_instance
    if _db_instance is None:
        _db_instance = EngineDatabase(db_path or ENGINE_DB_PATH)
    return _db_instance
