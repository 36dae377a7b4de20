SCHEMA_SQL = r"""
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

-- *_text columns hold lower-cased values joined by "\n" for substring search.
CREATE TABLE IF NOT EXISTS pictograms (
  arasaac_id INTEGER PRIMARY KEY,
  language TEXT NOT NULL DEFAULT 'en',
  keywords_json TEXT NOT NULL,
  category TEXT,
  categories_json TEXT NOT NULL DEFAULT '[]',
  tags_json TEXT NOT NULL DEFAULT '[]',
  description TEXT,
  keywords_text TEXT NOT NULL DEFAULT '',
  categories_text TEXT NOT NULL DEFAULT '',
  tags_text TEXT NOT NULL DEFAULT '',
  description_text TEXT NOT NULL DEFAULT '',
  image_url TEXT,
  local_file_path TEXT,
  width INTEGER,
  height INTEGER,
  license TEXT NOT NULL,
  metadata_json TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

-- FTS over the text columns; rows are replaced whenever a pictogram is upserted.
CREATE VIRTUAL TABLE IF NOT EXISTS pictograms_fts USING fts5(
  arasaac_id UNINDEXED,
  keywords,
  categories,
  tags,
  description,
  tokenize = 'unicode61'
);

CREATE TABLE IF NOT EXISTS saved_pictograms (
  user_id TEXT NOT NULL,
  arasaac_id INTEGER NOT NULL,
  label TEXT,
  used_count INTEGER NOT NULL DEFAULT 0,
  saved_at TEXT NOT NULL,
  PRIMARY KEY (user_id, arasaac_id)
);

CREATE TABLE IF NOT EXISTS prefetch_settings (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  enabled INTEGER NOT NULL DEFAULT 0,
  idle_minutes INTEGER NOT NULL DEFAULT 20,
  batch_size INTEGER NOT NULL DEFAULT 50,
  last_run_at TEXT,
  last_result_json TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

-- Card library owned by the visual-support pages; only the pictogram references are read here.
CREATE TABLE IF NOT EXISTS activity_cards (
  id TEXT PRIMARY KEY,
  arasaac_id INTEGER,
  local_image_path TEXT,
  is_system INTEGER NOT NULL DEFAULT 0,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_pictograms_language_updated ON pictograms(language, updated_at);
CREATE INDEX IF NOT EXISTS idx_pictograms_category ON pictograms(category);
CREATE INDEX IF NOT EXISTS idx_saved_user_used ON saved_pictograms(user_id, used_count);
CREATE INDEX IF NOT EXISTS idx_activity_cards_arasaac ON activity_cards(arasaac_id);
"""
