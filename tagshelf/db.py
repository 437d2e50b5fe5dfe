import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

INDEX_DIRNAME = ".tagshelf"
_DB_FILENAME = "index.sqlite"


@dataclass
class ItemRecord:
    id: int
    path: str
    sha256: Optional[str]
    size_bytes: Optional[int]
    modified_time_utc: Optional[int]
    width: Optional[int]
    height: Optional[int]
    tags: List[str] = field(default_factory=list)


@dataclass
class TagCount:
    name: str
    count: int


def normalize_tag(name: str) -> str:
    return (name or "").strip().lower()


class Database:
    """Tag index for one repository, stored under ``<repo>/.tagshelf/``.

    Item paths are kept relative to the repository root with ``/`` separators.
    Rows for vanished files are soft-deleted so their ids and tags survive if
    the file comes back.
    """

    def __init__(self, repo_dir: str) -> None:
        self.repo_dir = os.path.abspath(repo_dir)
        self.base_dir = os.path.join(self.repo_dir, INDEX_DIRNAME)
        self.db_path = os.path.join(self.base_dir, _DB_FILENAME)
        os.makedirs(self.base_dir, exist_ok=True)
        self._initialize_schema()

    @contextmanager
    def connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.executescript(
                """
                PRAGMA journal_mode=WAL;
                PRAGMA synchronous=NORMAL;

                CREATE TABLE IF NOT EXISTS items (
                    id INTEGER PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    sha256 TEXT,
                    size_bytes INTEGER,
                    modified_time_utc INTEGER,
                    width INTEGER,
                    height INTEGER,
                    status TEXT NOT NULL DEFAULT 'active',
                    error TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_items_sha256 ON items(sha256);
                CREATE INDEX IF NOT EXISTS idx_items_status ON items(status);

                CREATE TABLE IF NOT EXISTS tags (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE
                );

                CREATE TABLE IF NOT EXISTS item_tags (
                    item_id INTEGER NOT NULL,
                    tag_id INTEGER NOT NULL,
                    PRIMARY KEY (item_id, tag_id),
                    FOREIGN KEY (item_id) REFERENCES items(id) ON DELETE CASCADE,
                    FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_item_tags_item_id ON item_tags(item_id);
                CREATE INDEX IF NOT EXISTS idx_item_tags_tag_id ON item_tags(tag_id);
                """
            )
            conn.commit()

    def upsert_item(
        self,
        *,
        path: str,
        sha256: Optional[str],
        size_bytes: Optional[int],
        modified_time_utc: Optional[int],
        width: Optional[int] = None,
        height: Optional[int] = None,
        error: Optional[str] = None,
    ) -> int:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO items (
                    path, sha256, size_bytes, modified_time_utc, width, height, status, error
                ) VALUES (?, ?, ?, ?, ?, ?, 'active', ?)
                ON CONFLICT(path) DO UPDATE SET
                    sha256=excluded.sha256,
                    size_bytes=excluded.size_bytes,
                    modified_time_utc=excluded.modified_time_utc,
                    width=excluded.width,
                    height=excluded.height,
                    status='active',
                    error=excluded.error
                """,
                (path, sha256, size_bytes, modified_time_utc, width, height, error),
            )
            conn.commit()
            return int(cur.execute("SELECT id FROM items WHERE path=?", (path,)).fetchone()[0])

    def rename_item(self, item_id: int, new_path: str) -> None:
        """Move an item to a new path, keeping its id and tags.

        A soft-deleted row already holding ``new_path`` is dropped first.
        """
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "DELETE FROM items WHERE path = ? AND id != ? AND status = 'deleted'",
                (new_path, item_id),
            )
            cur.execute(
                "UPDATE items SET path = ?, status = 'active' WHERE id = ?",
                (new_path, item_id),
            )
            conn.commit()

    def mark_items_deleted(self, item_ids: Sequence[int]) -> int:
        if not item_ids:
            return 0
        with self.connect() as conn:
            cur = conn.cursor()
            placeholders = ",".join(["?"] * len(item_ids))
            cur.execute(
                f"UPDATE items SET status='deleted' WHERE status='active' AND id IN ({placeholders})",
                list(item_ids),
            )
            conn.commit()
            return cur.rowcount or 0

    def existing_item_map(self) -> Dict[str, Dict[str, Optional[object]]]:
        """Return a map of path -> minimal fields used for incremental scanning."""
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT id, path, size_bytes, modified_time_utc, sha256
                FROM items
                WHERE status = 'active'
                """
            ).fetchall()
            out: Dict[str, Dict[str, Optional[object]]] = {}
            for row in rows:
                out[str(row["path"])] = {
                    "id": int(row["id"]),
                    "size_bytes": int(row["size_bytes"]) if row["size_bytes"] is not None else None,
                    "modified_time_utc": int(row["modified_time_utc"]) if row["modified_time_utc"] is not None else None,
                    "sha256": str(row["sha256"]) if row["sha256"] else None,
                }
            return out

    def upsert_tags(self, tag_names: Sequence[str]) -> List[int]:
        if not tag_names:
            return []
        tag_ids: List[int] = []
        with self.connect() as conn:
            cur = conn.cursor()
            for name in tag_names:
                name_norm = normalize_tag(name)
                if not name_norm:
                    continue
                cur.execute(
                    "INSERT INTO tags(name) VALUES (?) ON CONFLICT(name) DO NOTHING",
                    (name_norm,),
                )
                row = cur.execute("SELECT id FROM tags WHERE name=?", (name_norm,)).fetchone()
                if row:
                    tag_ids.append(int(row[0]))
            conn.commit()
        return tag_ids

    def add_item_tags(self, item_ids: Sequence[int], tag_names: Sequence[str]) -> None:
        tag_ids = self.upsert_tags(tag_names)
        if not tag_ids or not item_ids:
            return
        with self.connect() as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO item_tags(item_id, tag_id) VALUES (?, ?)",
                [(item_id, tag_id) for item_id in item_ids for tag_id in tag_ids],
            )
            conn.commit()

    def remove_item_tags(self, item_ids: Sequence[int], tag_names: Sequence[str]) -> None:
        names_norm = [normalize_tag(t) for t in tag_names if normalize_tag(t)]
        if not names_norm or not item_ids:
            return
        with self.connect() as conn:
            cur = conn.cursor()
            placeholders = ",".join(["?"] * len(names_norm))
            rows = cur.execute(
                f"SELECT id FROM tags WHERE name IN ({placeholders})",
                names_norm,
            ).fetchall()
            tag_ids = [int(r[0]) for r in rows]
            if not tag_ids:
                return
            cur.executemany(
                "DELETE FROM item_tags WHERE item_id = ? AND tag_id = ?",
                [(item_id, tag_id) for item_id in item_ids for tag_id in tag_ids],
            )
            # Drop tags nothing refers to anymore
            cur.execute("DELETE FROM tags WHERE id NOT IN (SELECT DISTINCT tag_id FROM item_tags)")
            conn.commit()

    def get_item(self, item_id: int) -> Optional[ItemRecord]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM items WHERE id = ? AND status = 'active'",
                (item_id,),
            ).fetchone()
            if row is None:
                return None
            return self._record_from_row(conn, row)

    def get_items(self, item_ids: Iterable[int]) -> List[ItemRecord]:
        records = []
        for item_id in item_ids:
            record = self.get_item(item_id)
            if record is not None:
                records.append(record)
        return records

    def get_item_by_path(self, path: str) -> Optional[ItemRecord]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM items WHERE path = ? AND status = 'active'",
                (path,),
            ).fetchone()
            if row is None:
                return None
            return self._record_from_row(conn, row)

    def query_ids(
        self,
        where_sql: str = "1=1",
        params: Sequence[object] = (),
        order_by: str = "i.path ASC, i.id ASC",
    ) -> List[int]:
        """Return ids of active items matching ``where_sql`` (items aliased as ``i``)."""
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT i.id FROM items i WHERE i.status='active' AND ({where_sql}) ORDER BY {order_by}",
                list(params),
            ).fetchall()
            return [int(r[0]) for r in rows]

    def all_tags(self) -> List[TagCount]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT t.name AS name, COUNT(i.id) AS cnt
                FROM tags t
                JOIN item_tags it ON it.tag_id = t.id
                JOIN items i ON i.id = it.item_id AND i.status = 'active'
                GROUP BY t.id
                ORDER BY t.name ASC
                """
            ).fetchall()
            return [TagCount(name=r["name"], count=int(r["cnt"])) for r in rows]

    def _record_from_row(self, conn: sqlite3.Connection, row: sqlite3.Row) -> ItemRecord:
        tag_rows = conn.execute(
            """
            SELECT t.name
            FROM tags t
            JOIN item_tags it ON it.tag_id = t.id
            WHERE it.item_id = ?
            ORDER BY t.name ASC
            """,
            (row["id"],),
        ).fetchall()
        return ItemRecord(
            id=int(row["id"]),
            path=row["path"],
            sha256=row["sha256"],
            size_bytes=row["size_bytes"],
            modified_time_utc=row["modified_time_utc"],
            width=row["width"],
            height=row["height"],
            tags=[r[0] for r in tag_rows],
        )

