"""
Database schema for the backer import pipeline.

Both scripts are idempotent and safe to run on every start.
"""

POSTGRES_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id SERIAL PRIMARY KEY,
    shop TEXT NOT NULL,
    name TEXT NOT NULL,
    platform TEXT CHECK (platform IN ('KICKSTARTER', 'INDIEGOGO')),
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS backers (
    id SERIAL PRIMARY KEY,
    shop TEXT NOT NULL,
    email TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    UNIQUE (shop, email)
);

CREATE TABLE IF NOT EXISTS products (
    id SERIAL PRIMARY KEY,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    UNIQUE (project_id, name)
);

CREATE TABLE IF NOT EXISTS pledges (
    id SERIAL PRIMARY KEY,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    pledge_id TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    UNIQUE (project_id, pledge_id)
);

CREATE TABLE IF NOT EXISTS surveys (
    id SERIAL PRIMARY KEY,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    backer_id INTEGER NOT NULL REFERENCES backers(id) ON DELETE CASCADE,
    pledge_ref INTEGER NOT NULL REFERENCES pledges(id) ON DELETE CASCADE,
    platform TEXT NOT NULL CHECK (platform IN ('KICKSTARTER', 'INDIEGOGO')),
    bonus_support NUMERIC(12, 2) DEFAULT 0 NOT NULL,
    price NUMERIC(12, 2) NOT NULL,
    country TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('COLLECTED', 'ERRORED')),
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    UNIQUE (project_id, backer_id)
);

CREATE TABLE IF NOT EXISTS inventory (
    id SERIAL PRIMARY KEY,
    survey_id INTEGER NOT NULL REFERENCES surveys(id) ON DELETE CASCADE,
    product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
    qty INTEGER NOT NULL CHECK (qty > 0),
    UNIQUE (survey_id, product_id)
);

CREATE TABLE IF NOT EXISTS csv_uploads (
    id SERIAL PRIMARY KEY,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    status TEXT DEFAULT 'PENDING' NOT NULL CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')),
    total_chunks INTEGER NOT NULL,
    processed_chunks INTEGER DEFAULT 0 NOT NULL,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    completed_at TIMESTAMPTZ,
    CHECK (processed_chunks <= total_chunks)
);

CREATE TABLE IF NOT EXISTS csv_upload_chunks (
    id SERIAL PRIMARY KEY,
    upload_id INTEGER NOT NULL REFERENCES csv_uploads(id) ON DELETE CASCADE,
    chunk_index INTEGER DEFAULT 0 NOT NULL,
    row_offset INTEGER DEFAULT 0 NOT NULL,
    status TEXT DEFAULT 'PENDING' NOT NULL CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')),
    data JSONB NOT NULL,
    errors JSONB,
    processed_at TIMESTAMPTZ,
    settled_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    id SERIAL PRIMARY KEY,
    queue_name TEXT NOT NULL,
    name TEXT NOT NULL,
    payload JSONB NOT NULL,
    status TEXT DEFAULT 'waiting' NOT NULL CHECK (status IN ('waiting', 'active', 'completed', 'failed')),
    priority INTEGER DEFAULT 0 NOT NULL,
    attempts INTEGER DEFAULT 3 NOT NULL,
    attempts_made INTEGER DEFAULT 0 NOT NULL,
    backoff_delay DOUBLE PRECISION DEFAULT 2.0 NOT NULL,
    remove_on_complete BOOLEAN DEFAULT TRUE NOT NULL,
    available_at DOUBLE PRECISION NOT NULL,
    locked_at DOUBLE PRECISION,
    finished_at DOUBLE PRECISION,
    failed_reason TEXT,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_surveys_project_id ON surveys(project_id);
CREATE INDEX IF NOT EXISTS idx_inventory_survey_id ON inventory(survey_id);
CREATE INDEX IF NOT EXISTS idx_csv_uploads_project_id ON csv_uploads(project_id);
CREATE INDEX IF NOT EXISTS idx_csv_upload_chunks_upload_id ON csv_upload_chunks(upload_id);
CREATE INDEX IF NOT EXISTS idx_jobs_claim ON jobs(queue_name, status, available_at);
"""

SQLITE_SCHEMA = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    shop TEXT NOT NULL,
    name TEXT NOT NULL,
    platform TEXT CHECK (platform IN ('KICKSTARTER', 'INDIEGOGO')),
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS backers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    shop TEXT NOT NULL,
    email TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    UNIQUE (shop, email)
);

CREATE TABLE IF NOT EXISTS products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    UNIQUE (project_id, name)
);

CREATE TABLE IF NOT EXISTS pledges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    pledge_id TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    UNIQUE (project_id, pledge_id)
);

CREATE TABLE IF NOT EXISTS surveys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    backer_id INTEGER NOT NULL REFERENCES backers(id) ON DELETE CASCADE,
    pledge_ref INTEGER NOT NULL REFERENCES pledges(id) ON DELETE CASCADE,
    platform TEXT NOT NULL CHECK (platform IN ('KICKSTARTER', 'INDIEGOGO')),
    bonus_support REAL DEFAULT 0 NOT NULL,
    price REAL NOT NULL,
    country TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('COLLECTED', 'ERRORED')),
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    UNIQUE (project_id, backer_id)
);

CREATE TABLE IF NOT EXISTS inventory (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    survey_id INTEGER NOT NULL REFERENCES surveys(id) ON DELETE CASCADE,
    product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
    qty INTEGER NOT NULL CHECK (qty > 0),
    UNIQUE (survey_id, product_id)
);

CREATE TABLE IF NOT EXISTS csv_uploads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    status TEXT DEFAULT 'PENDING' NOT NULL CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')),
    total_chunks INTEGER NOT NULL,
    processed_chunks INTEGER DEFAULT 0 NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    completed_at DATETIME,
    CHECK (processed_chunks <= total_chunks)
);

CREATE TABLE IF NOT EXISTS csv_upload_chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    upload_id INTEGER NOT NULL REFERENCES csv_uploads(id) ON DELETE CASCADE,
    chunk_index INTEGER DEFAULT 0 NOT NULL,
    row_offset INTEGER DEFAULT 0 NOT NULL,
    status TEXT DEFAULT 'PENDING' NOT NULL CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')),
    data TEXT NOT NULL,
    errors TEXT,
    processed_at DATETIME,
    settled_at DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    queue_name TEXT NOT NULL,
    name TEXT NOT NULL,
    payload TEXT NOT NULL,
    status TEXT DEFAULT 'waiting' NOT NULL CHECK (status IN ('waiting', 'active', 'completed', 'failed')),
    priority INTEGER DEFAULT 0 NOT NULL,
    attempts INTEGER DEFAULT 3 NOT NULL,
    attempts_made INTEGER DEFAULT 0 NOT NULL,
    backoff_delay REAL DEFAULT 2.0 NOT NULL,
    remove_on_complete BOOLEAN DEFAULT 1 NOT NULL,
    available_at REAL NOT NULL,
    locked_at REAL,
    finished_at REAL,
    failed_reason TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_surveys_project_id ON surveys(project_id);
CREATE INDEX IF NOT EXISTS idx_inventory_survey_id ON inventory(survey_id);
CREATE INDEX IF NOT EXISTS idx_csv_uploads_project_id ON csv_uploads(project_id);
CREATE INDEX IF NOT EXISTS idx_csv_upload_chunks_upload_id ON csv_upload_chunks(upload_id);
CREATE INDEX IF NOT EXISTS idx_jobs_claim ON jobs(queue_name, status, available_at);
"""
