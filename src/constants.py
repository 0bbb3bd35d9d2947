"""Project-wide constants shared by models, migrations and settings."""

DB_SCHEMA = "engagements"

# Bump when EngagementSnapshot gains or renames fields.
SNAPSHOT_SCHEMA_VERSION = 1
