"""Database schema for vital sign measurements and recommendations.

Timestamps are stored as UTC ISO-8601 strings with microseconds so that
string comparison matches chronological order.
"""

SCHEMA = """
-- Reference configuration for each measurable vital sign
CREATE TABLE IF NOT EXISTS vital_sign_types (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    display_name TEXT NOT NULL,
    unit_primary TEXT NOT NULL,
    unit_secondary TEXT,
    has_secondary_value INTEGER DEFAULT 0,
    normal_range_min REAL NOT NULL,
    normal_range_max REAL NOT NULL,
    warning_range_min REAL NOT NULL,
    warning_range_max REAL NOT NULL,
    min_value REAL,
    max_value REAL
);

-- One row per reading
CREATE TABLE IF NOT EXISTS measurements (
    id TEXT PRIMARY KEY,
    subject_id TEXT NOT NULL,
    vital_sign_type_id TEXT NOT NULL REFERENCES vital_sign_types(id),
    value_primary REAL NOT NULL,
    value_secondary REAL,
    unit TEXT NOT NULL,
    measured_at TEXT NOT NULL,
    measurement_method TEXT DEFAULT 'manual',
    device_name TEXT,
    notes TEXT,
    is_flagged INTEGER DEFAULT 0,
    flag_reason TEXT
);

CREATE INDEX IF NOT EXISTS idx_measurements_subject_type_time
    ON measurements(subject_id, vital_sign_type_id, measured_at);

-- Generated recommendations
CREATE TABLE IF NOT EXISTS recommendations (
    id TEXT PRIMARY KEY,
    subject_id TEXT NOT NULL,
    recommendation_type TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    priority TEXT NOT NULL DEFAULT 'low',
    action_required INTEGER DEFAULT 0,
    evidence TEXT,                  -- JSON object
    source_measurement_id TEXT,
    vital_sign_type_id TEXT,
    created_at TEXT NOT NULL,
    expires_at TEXT,
    read_at TEXT,
    dismissed_at TEXT,
    dismissal_reason TEXT,
    is_active INTEGER DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_recommendations_subject_created
    ON recommendations(subject_id, created_at);
CREATE INDEX IF NOT EXISTS idx_recommendations_source
    ON recommendations(subject_id, source_measurement_id, created_at);
"""
