import json
import logging
import os
import sqlite3
import threading

from .constants import DEFAULT_LICENSE, SCHEMA_VERSION
from .models import PictogramRecord, PrefetchSettings, SavedPictogram
from .paths import get_db_path
from .schema import SCHEMA_SQL
from .utils import json_dumps, json_loads_list, normalize_text, now_iso

logger = logging.getLogger("PictoVault")

PICTOGRAM_FIELDS = (
    "p.arasaac_id, p.language, p.keywords_json, p.category, p.categories_json, p.tags_json, "
    "p.description, p.image_url, p.local_file_path, p.width, p.height, p.license"
)

TEXT_COLUMNS = ("keywords_text", "categories_text", "tags_text", "description_text")


def search_text(values):
    """Lower-case and join values with "\\n", which normalized queries never contain."""
    return "\n".join(v.lower() for v in values if v)


class PictogramStore:
    """SQLite-backed local index of resolved pictograms, bookmarks and prefetch settings.

    The schema is created lazily on first use so that a broken database file only
    fails the calls that touch it; the resolver treats such failures as "store
    unavailable" and keeps serving from the origin.
    """

    def __init__(
        self,
        db_path=None,
        license=DEFAULT_LICENSE,
        search_limit=60,
        fulltext_min_token_len=2,
        fulltext_min_query_len=4,
    ):
        self.db_path = db_path or get_db_path()
        self.license = license
        self.search_limit = int(search_limit)
        self.fulltext_min_token_len = int(fulltext_min_token_len)
        self.fulltext_min_query_len = int(fulltext_min_query_len)
        self._ready = False
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(
            db_path=config["db_path"],
            license=config["license"],
            search_limit=config["search_limit"],
            fulltext_min_token_len=config["fulltext_min_token_len"],
            fulltext_min_query_len=config["fulltext_min_query_len"],
        )

    def _open(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        return conn

    def _connect(self):
        self.ensure_ready()
        return self._open()

    def ensure_ready(self):
        """Create the schema if needed. Raises sqlite3.Error when the store is unusable."""
        if self._ready:
            return
        with self._lock:
            if self._ready:
                return
            parent = os.path.dirname(self.db_path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            self._init_db()
            self._ready = True

    def _init_db(self):
        conn = self._open()
        try:
            conn.executescript(SCHEMA_SQL)
            self._migrate_db(conn)
            conn.execute(
                "INSERT OR REPLACE INTO meta(key,value) VALUES('schema_version', ?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
        finally:
            conn.close()

    def _migrate_db(self, conn):
        cols = {row["name"] for row in conn.execute("PRAGMA table_info(pictograms)").fetchall()}
        missing = [c for c in TEXT_COLUMNS if c not in cols]
        if not missing:
            return
        for col in missing:
            conn.execute(f"ALTER TABLE pictograms ADD COLUMN {col} TEXT NOT NULL DEFAULT ''")
        rows = conn.execute(
            "SELECT arasaac_id, keywords_json, categories_json, tags_json, description FROM pictograms"
        ).fetchall()
        for r in rows:
            conn.execute(
                "UPDATE pictograms SET keywords_text=?, categories_text=?, tags_text=?, description_text=? "
                "WHERE arasaac_id = ?",
                (
                    search_text(json_loads_list(r["keywords_json"])),
                    search_text(json_loads_list(r["categories_json"])),
                    search_text(json_loads_list(r["tags_json"])),
                    search_text([r["description"]]),
                    r["arasaac_id"],
                ),
            )
        logger.info("Backfilled search text for %d pictogram rows", len(rows))

    # ── Pictograms ──

    def _fts_upsert(self, conn, arasaac_id, keywords, categories, tags, description):
        conn.execute("DELETE FROM pictograms_fts WHERE arasaac_id = ?", (arasaac_id,))
        conn.execute(
            "INSERT INTO pictograms_fts(arasaac_id,keywords,categories,tags,description) VALUES(?,?,?,?,?)",
            (arasaac_id, " ".join(keywords), " ".join(categories), " ".join(tags), description or ""),
        )

    def upsert_pictogram(self, language, pic, image_url=None, local_file_path=None):
        """Insert or replace the cached row for an origin pictogram (last writer wins)."""
        keywords = pic.keyword_tokens()
        categories = list(pic.categories)
        tags = list(pic.tags)
        category = pic.primary_category
        now = now_iso()

        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO pictograms(
                  arasaac_id,language,keywords_json,category,categories_json,tags_json,
                  description,keywords_text,categories_text,tags_text,description_text,
                  image_url,local_file_path,width,height,license,metadata_json,
                  created_at,updated_at
                ) VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(arasaac_id) DO UPDATE SET
                  language=excluded.language,
                  keywords_json=excluded.keywords_json,
                  category=excluded.category,
                  categories_json=excluded.categories_json,
                  tags_json=excluded.tags_json,
                  description=excluded.description,
                  keywords_text=excluded.keywords_text,
                  categories_text=excluded.categories_text,
                  tags_text=excluded.tags_text,
                  description_text=excluded.description_text,
                  image_url=excluded.image_url,
                  local_file_path=excluded.local_file_path,
                  width=excluded.width,
                  height=excluded.height,
                  license=excluded.license,
                  metadata_json=excluded.metadata_json,
                  updated_at=excluded.updated_at
                """,
                (
                    pic.id,
                    language,
                    json_dumps(keywords),
                    category,
                    json_dumps(categories),
                    json_dumps(tags),
                    pic.desc,
                    search_text(keywords),
                    search_text(categories),
                    search_text(tags),
                    search_text([pic.desc]),
                    image_url,
                    local_file_path,
                    None,
                    None,
                    self.license,
                    json_dumps(pic.to_json()),
                    now,
                    now,
                ),
            )
            self._fts_upsert(conn, pic.id, keywords, categories, tags, pic.desc)
            conn.commit()
        finally:
            conn.close()

    def get_pictogram(self, arasaac_id):
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {PICTOGRAM_FIELDS} FROM pictograms p WHERE p.arasaac_id = ?",
                (int(arasaac_id),),
            ).fetchone()
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    def get_pictograms_by_ids(self, ids):
        ids = [int(i) for i in ids or []]
        if not ids:
            return []
        conn = self._connect()
        try:
            placeholders = ",".join("?" for _ in ids)
            rows = conn.execute(
                f"SELECT {PICTOGRAM_FIELDS} FROM pictograms p WHERE p.arasaac_id IN ({placeholders})",
                ids,
            ).fetchall()
        finally:
            conn.close()
        by_id = {r["arasaac_id"]: self._row_to_record(r) for r in rows}
        out = []
        seen = set()
        for i in ids:
            if i in by_id and i not in seen:
                seen.add(i)
                out.append(by_id[i])
        return out

    def get_local_path(self, arasaac_id):
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT local_file_path FROM pictograms WHERE arasaac_id = ?",
                (int(arasaac_id),),
            ).fetchone()
            return row["local_file_path"] if row else None
        finally:
            conn.close()

    def count_pictograms(self, arasaac_id=None):
        conn = self._connect()
        try:
            if arasaac_id is None:
                row = conn.execute("SELECT COUNT(*) AS total FROM pictograms").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS total FROM pictograms WHERE arasaac_id = ?",
                    (int(arasaac_id),),
                ).fetchone()
            return int(row["total"])
        finally:
            conn.close()

    # ── Text search ──

    @staticmethod
    def _escape_fts_query(tokens):
        """Quote each token as a prefix phrase so FTS5 treats special chars as literals."""
        escaped = []
        for t in tokens:
            t = t.replace('"', '""')
            escaped.append(f'"{t}"*')
        return " OR ".join(escaped)

    def _should_use_fulltext(self, q):
        tokens = q.split()
        if not tokens or len(q) < self.fulltext_min_query_len:
            return False
        return all(len(t) >= self.fulltext_min_token_len for t in tokens)

    def search_pictograms(self, language, q):
        q = normalize_text(q)
        if not q:
            return []

        conn = self._connect()
        try:
            if not self._should_use_fulltext(q):
                rows = self._search_rows_like(conn, language, q)
                logger.debug("LIKE rows=%d (short query %r)", len(rows), q)
            else:
                rows = self._search_rows_fts(conn, language, q)
            return [self._row_to_record(r) for r in rows]
        finally:
            conn.close()

    def _search_rows_fts(self, conn, language, q):
        fts_q = self._escape_fts_query(q.split())
        sql = f"""
        SELECT {PICTOGRAM_FIELDS}
        FROM pictograms_fts f
        JOIN pictograms p ON p.arasaac_id = f.arasaac_id
        WHERE p.language = ? AND pictograms_fts MATCH ?
        ORDER BY bm25(pictograms_fts) ASC, p.updated_at DESC
        LIMIT ?
        """
        try:
            rows = conn.execute(sql, (language, fts_q, self.search_limit)).fetchall()
            logger.debug("FTS rows=%d", len(rows))
        except sqlite3.OperationalError:
            logger.warning("FTS failed, fallback to LIKE")
            return self._search_rows_like(conn, language, q)

        if not rows:
            rows = self._search_rows_like(conn, language, q)
            logger.debug("LIKE rows=%d (fts empty)", len(rows))
        return rows

    def _search_rows_like(self, conn, language, q):
        escaped = q.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        like_q = f"%{escaped}%"
        sql = f"""
        SELECT {PICTOGRAM_FIELDS}
        FROM pictograms p
        WHERE p.language = ?
          AND (
            p.keywords_text LIKE ? ESCAPE '\\'
            OR p.categories_text LIKE ? ESCAPE '\\'
            OR p.tags_text LIKE ? ESCAPE '\\'
            OR p.description_text LIKE ? ESCAPE '\\'
          )
        ORDER BY p.updated_at DESC, p.rowid DESC
        LIMIT ?
        """
        return conn.execute(
            sql,
            (language, like_q, like_q, like_q, like_q, self.search_limit),
        ).fetchall()

    # ── Bookmarks ──

    def save_bookmark(self, user_id, arasaac_id, label=None):
        if label is not None:
            label = normalize_text(label) or None
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO saved_pictograms(user_id,arasaac_id,label,used_count,saved_at)
                VALUES(?,?,?,0,?)
                ON CONFLICT(user_id,arasaac_id) DO UPDATE SET
                  label=COALESCE(excluded.label, saved_pictograms.label)
                """,
                (user_id, int(arasaac_id), label, now_iso()),
            )
            conn.commit()
        finally:
            conn.close()

    def delete_bookmark(self, user_id, arasaac_id):
        conn = self._connect()
        try:
            cur = conn.execute(
                "DELETE FROM saved_pictograms WHERE user_id = ? AND arasaac_id = ?",
                (user_id, int(arasaac_id)),
            )
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def increment_bookmark_use(self, user_id, arasaac_id):
        conn = self._connect()
        try:
            cur = conn.execute(
                "UPDATE saved_pictograms SET used_count = used_count + 1 WHERE user_id = ? AND arasaac_id = ?",
                (user_id, int(arasaac_id)),
            )
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def list_bookmarks(self, user_id, language, limit=200):
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT
                  sp.arasaac_id, sp.label, sp.used_count, sp.saved_at,
                  p.keywords_json, p.categories_json, p.tags_json,
                  COALESCE(p.language, ?) AS language,
                  p.image_url, p.local_file_path, p.license, p.description
                FROM saved_pictograms sp
                LEFT JOIN pictograms p ON p.arasaac_id = sp.arasaac_id
                WHERE sp.user_id = ?
                ORDER BY sp.used_count DESC, sp.saved_at DESC, sp.rowid DESC
                LIMIT ?
                """,
                (language, user_id, int(limit)),
            ).fetchall()
        finally:
            conn.close()
        return [
            SavedPictogram(
                arasaac_id=r["arasaac_id"],
                label=r["label"],
                used_count=int(r["used_count"] or 0),
                saved_at=r["saved_at"],
                keywords=json_loads_list(r["keywords_json"]),
                categories=json_loads_list(r["categories_json"]),
                tags=json_loads_list(r["tags_json"]),
                language=r["language"] or language,
                image_url=r["image_url"],
                local_file_path=r["local_file_path"],
                license=r["license"] or self.license,
                description=r["description"],
            )
            for r in rows
        ]

    def bookmark_ids(self, user_id):
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT arasaac_id FROM saved_pictograms WHERE user_id = ? ORDER BY arasaac_id ASC",
                (user_id,),
            ).fetchall()
            return [int(r["arasaac_id"]) for r in rows]
        finally:
            conn.close()

    # ── Prefetch settings (singleton row id = 1) ──

    def get_prefetch_settings(self, defaults):
        conn = self._connect()
        try:
            self._ensure_settings_row(conn, defaults)
            conn.commit()
            row = conn.execute(
                "SELECT enabled, idle_minutes, batch_size, last_run_at, last_result_json "
                "FROM prefetch_settings WHERE id = 1"
            ).fetchone()
            return self._row_to_settings(row)
        finally:
            conn.close()

    def update_prefetch_settings(self, defaults, enabled=None, idle_minutes=None, batch_size=None):
        conn = self._connect()
        try:
            self._ensure_settings_row(conn, defaults)
            sets = []
            params = []
            if enabled is not None:
                sets.append("enabled = ?")
                params.append(1 if enabled else 0)
            if idle_minutes is not None:
                sets.append("idle_minutes = ?")
                params.append(int(idle_minutes))
            if batch_size is not None:
                sets.append("batch_size = ?")
                params.append(int(batch_size))
            if sets:
                sets.append("updated_at = ?")
                params.append(now_iso())
                conn.execute(f"UPDATE prefetch_settings SET {', '.join(sets)} WHERE id = 1", params)
            conn.commit()
        finally:
            conn.close()
        return self.get_prefetch_settings(defaults)

    def record_prefetch_run(self, result):
        now = now_iso()
        conn = self._connect()
        try:
            cur = conn.execute(
                "UPDATE prefetch_settings SET last_run_at = ?, last_result_json = ?, updated_at = ? WHERE id = 1",
                (now, json_dumps(result), now),
            )
            conn.commit()
            if cur.rowcount == 0:
                raise sqlite3.OperationalError("prefetch settings row missing")
            return now
        finally:
            conn.close()

    @staticmethod
    def _ensure_settings_row(conn, defaults):
        now = now_iso()
        conn.execute(
            """
            INSERT INTO prefetch_settings(id,enabled,idle_minutes,batch_size,created_at,updated_at)
            VALUES(1,?,?,?,?,?)
            ON CONFLICT(id) DO NOTHING
            """,
            (
                1 if defaults["enabled"] else 0,
                int(defaults["idle_minutes"]),
                int(defaults["batch_size"]),
                now,
                now,
            ),
        )

    # ── Prefetch candidates / card library ──

    def upsert_activity_card(self, card_id, arasaac_id=None, local_image_path=None, is_system=False):
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO activity_cards(id,arasaac_id,local_image_path,is_system,updated_at)
                VALUES(?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET
                  arasaac_id=excluded.arasaac_id,
                  local_image_path=excluded.local_image_path,
                  is_system=excluded.is_system,
                  updated_at=excluded.updated_at
                """,
                (card_id, arasaac_id, local_image_path, 1 if is_system else 0, now_iso()),
            )
            conn.commit()
        finally:
            conn.close()

    def list_seeded_card_assets(self, public_prefix):
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT arasaac_id, local_image_path
                FROM activity_cards
                WHERE is_system = 1
                  AND arasaac_id IS NOT NULL
                  AND local_image_path LIKE ?
                ORDER BY arasaac_id ASC
                """,
                (public_prefix.rstrip("/") + "/%",),
            ).fetchall()
            return [(int(r["arasaac_id"]), r["local_image_path"]) for r in rows]
        finally:
            conn.close()

    def prefetch_candidate_ids(self, limit):
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT DISTINCT t.arasaac_id AS arasaac_id
                FROM (
                  SELECT arasaac_id FROM activity_cards WHERE arasaac_id IS NOT NULL
                  UNION
                  SELECT arasaac_id FROM saved_pictograms
                  UNION
                  SELECT arasaac_id FROM pictograms
                ) t
                WHERE t.arasaac_id > 0
                ORDER BY t.arasaac_id ASC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
            return [int(r["arasaac_id"]) for r in rows]
        finally:
            conn.close()

    # ── Row mapping ──

    def _row_to_record(self, row):
        return PictogramRecord(
            arasaac_id=int(row["arasaac_id"]),
            keywords=json_loads_list(row["keywords_json"]),
            category=row["category"],
            categories=json_loads_list(row["categories_json"]),
            tags=json_loads_list(row["tags_json"]),
            language=row["language"],
            image_url=row["image_url"],
            local_file_path=row["local_file_path"],
            width=row["width"],
            height=row["height"],
            license=row["license"] or self.license,
            description=row["description"],
        )

    @staticmethod
    def _row_to_settings(row):
        last_result = None
        if row["last_result_json"]:
            try:
                parsed = json.loads(row["last_result_json"])
            except (TypeError, ValueError):
                parsed = None
            last_result = parsed if isinstance(parsed, dict) else None
        return PrefetchSettings(
            enabled=bool(row["enabled"]),
            idle_minutes=max(1, int(row["idle_minutes"])),
            batch_size=max(1, int(row["batch_size"])),
            last_run_at=row["last_run_at"],
            last_result=last_result,
        )
