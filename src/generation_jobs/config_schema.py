"""
JSON schemas for configuration validation.
"""

JOBS_SCHEMA = {
    "type": "object",
    "properties": {
        "stuck_threshold_seconds": {"type": "number", "exclusiveMinimum": 0},
        "retention_seconds": {"type": "number", "exclusiveMinimum": 0},
        "stuck_sweep_interval_seconds": {"type": "number", "exclusiveMinimum": 0},
        "cleanup_sweep_interval_seconds": {"type": "number", "exclusiveMinimum": 0},
        "sweep_batch_size": {"type": "integer", "minimum": 1},
        "scope_overrides": {
            "type": "object",
            "additionalProperties": {"type": "string", "enum": ["owner", "subject"]},
        },
    },
    "additionalProperties": False,
}

STORAGE_SCHEMA = {
    "type": "object",
    "properties": {
        "backend": {"type": "string", "enum": ["memory", "postgres", "redis"]},
        "pg_dsn": {"type": ["string", "null"]},
        "table_name": {"type": "string", "pattern": "^[a-zA-Z0-9_]+$"},
        "pool_min_size": {"type": "integer", "minimum": 0},
        "pool_max_size": {"type": "integer", "minimum": 1},
        "redis_url": {"type": ["string", "null"]},
        "key_prefix": {"type": "string", "minLength": 1},
        "max_watch_retries": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}

LOGGING_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "format": {"type": "string", "enum": ["text", "json"]},
        "logger_name": {"type": "string"},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "jobs": JOBS_SCHEMA,
        "storage": STORAGE_SCHEMA,
        "logging": LOGGING_SCHEMA,
    },
    "additionalProperties": False,
}
