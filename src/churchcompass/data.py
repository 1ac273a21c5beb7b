import json
import logging
import os
import sqlite3
from typing import Dict, List

from churchcompass.errors import StoreError
from churchcompass.models import (
    CODECS, MEMBERS, SMALL_GROUPS, MINISTRY_AREAS, MEETING_SERIES, MEETINGS, ATTENDANCE_RECORDS,
)

logger = logging.getLogger(__name__)


class RecordStore:
    """Abstrakte Ablage: pro Collection nur alles lesen / alles schreiben."""

    def load_all(self, collection: str) -> List[dict]:
        raise NotImplementedError

    def save_all(self, collection: str, records: List[dict]):
        self.save_many({collection: records})

    def save_many(self, batch: Dict[str, List[dict]]):
        """Mehrere Collections gemeinsam schreiben: alle oder keine."""
        raise NotImplementedError

    def close(self):
        pass


class MemoryStore(RecordStore):
    def __init__(self, initial: Dict[str, List[dict]] = None):
        self._data = {name: json.loads(json.dumps(recs)) for name, recs in (initial or {}).items()}

    def load_all(self, collection):
        return json.loads(json.dumps(self._data.get(collection, [])))

    def save_many(self, batch):
        # erst alles serialisieren, dann übernehmen
        try:
            staged = {name: json.loads(json.dumps(recs)) for name, recs in batch.items()}
        except (TypeError, ValueError) as e:
            raise StoreError(f"Failed to write {', '.join(batch)}") from e
        self._data.update(staged)


class JsonFileStore(RecordStore):
    """Eine JSON-Datei pro Collection in einem Verzeichnis."""

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, collection: str) -> str:
        return os.path.join(self.directory, f"{collection}.json")

    def load_all(self, collection):
        path = self._path(collection)
        if not os.path.exists(path):
            return []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {path}: {e}")
            raise StoreError(f"Failed to read {collection}") from e

    def save_many(self, batch):
        staged = [(self._path(c) + '.tmp', self._path(c)) for c in batch]
        try:
            for (tmp, _), records in zip(staged, batch.values()):
                with open(tmp, 'w', encoding='utf-8') as f:
                    json.dump(records, f, ensure_ascii=False, indent=2)
        except (OSError, TypeError, ValueError) as e:
            for tmp, _ in staged:
                if os.path.exists(tmp):
                    os.remove(tmp)
            logger.error(f"Failed to write {list(batch)}: {e}")
            raise StoreError(f"Failed to write {', '.join(batch)}") from e
        for tmp, final in staged:
            os.replace(tmp, final)


class SqliteStore(RecordStore):
    def __init__(self, db_path: str = None):
        try:
            self.db_path = db_path or os.path.join(os.path.expanduser("~"), ".churchcompass", "churchcompass.db")
            if self.db_path != ':memory:':
                os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self._ensure_tables()
        except sqlite3.Error as e:
            logging.error(f"Database connection error: {e}")
            raise StoreError(str(e)) from e

    def _ensure_tables(self):
        cur = self.conn.cursor()
        cur.execute("""
        CREATE TABLE IF NOT EXISTS records (
          collection TEXT NOT NULL,
          position INTEGER NOT NULL,
          payload TEXT NOT NULL,
          PRIMARY KEY (collection, position)
        )""")
        self.conn.commit()

    def load_all(self, collection):
        cur = self.conn.cursor()
        cur.execute(
            "SELECT payload FROM records WHERE collection=? ORDER BY position", (collection,)
        )
        out = [json.loads(row['payload']) for row in cur.fetchall()]
        cur.close()
        return out

    def save_many(self, batch):
        try:
            with self.conn:
                for collection, records in batch.items():
                    self.conn.execute("DELETE FROM records WHERE collection=?", (collection,))
                    self.conn.executemany(
                        "INSERT INTO records (collection, position, payload) VALUES (?,?,?)",
                        [(collection, i, json.dumps(rec, ensure_ascii=False)) for i, rec in enumerate(records)]
                    )
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Failed to write {list(batch)}: {e}")
            raise StoreError(f"Failed to write {', '.join(batch)}") from e

    # Export/Import
    def export_to_sql(self, filename: str):
        """Dump aller Tabellen als SQL-Statements"""
        with open(filename, 'w', encoding='utf-8') as f:
            for line in self.conn.iterdump():
                f.write(f"{line}\n")

    def import_from_sql(self, filename: str):
        """Dump erst in einer Scratch-DB prüfen, dann die Tabelle ersetzen."""
        with open(filename, 'r', encoding='utf-8') as f:
            script = f.read()
        scratch = sqlite3.connect(':memory:')
        try:
            scratch.executescript(script)
            rows = scratch.execute(
                "SELECT collection, position, payload FROM records"
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Restore from {filename} failed: {e}")
            raise StoreError(f"Invalid dump {filename}") from e
        finally:
            scratch.close()

        with self.conn:
            self.conn.execute("DELETE FROM records")
            self.conn.executemany(
                "INSERT INTO records (collection, position, payload) VALUES (?,?,?)", rows
            )
        logger.info(f"Restored {len(rows)} records from {filename}")

    def close(self):
        """Schließe die Datenbankverbindung sauber"""
        if self.conn:
            self.conn.close()
            self.conn = None


def open_store(cfg: dict) -> RecordStore:
    kind = cfg.get('store', 'sqlite')
    if kind == 'sqlite':
        return SqliteStore(cfg.get('db_path'))
    if kind == 'json':
        return JsonFileStore(cfg['json_dir'])
    if kind == 'memory':
        return MemoryStore()
    raise ValueError(f"Unknown store type: {kind}")


class Repository:
    """Typisierter Zugriff auf die Collections eines RecordStore."""

    def __init__(self, store: RecordStore):
        self.store = store

    def load(self, collection: str) -> list:
        _, decode = CODECS[collection]
        return [decode(rec) for rec in self.store.load_all(collection)]

    def save(self, collection: str, items: list):
        self.save_many({collection: items})

    def save_many(self, batch: Dict[str, list]):
        encoded = {}
        for collection, items in batch.items():
            encode, _ = CODECS[collection]
            encoded[collection] = [encode(item) for item in items]
        self.store.save_many(encoded)

    def members(self):
        return self.load(MEMBERS)

    def small_groups(self):
        return self.load(SMALL_GROUPS)

    def ministry_areas(self):
        return self.load(MINISTRY_AREAS)

    def series(self):
        return self.load(MEETING_SERIES)

    def meetings(self):
        return self.load(MEETINGS)

    def attendance(self):
        return self.load(ATTENDANCE_RECORDS)
