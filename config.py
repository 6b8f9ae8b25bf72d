"""Environment variables, database names, and reconciliation defaults."""

import os

from dotenv import load_dotenv

# Load .env from RECON_ENV_FILE (defaults to the working directory)
load_dotenv(os.getenv("RECON_ENV_FILE", ".env"))

# --- Database Connection Vars ---
SQL_SERVER_HOST = os.getenv("SQL_SERVER_HOST", "")
SQL_SERVER_PORT = int(os.getenv("SQL_SERVER_PORT", "1433"))
SQL_SERVER_USER = os.getenv("SQL_SERVER_USER", "")
SQL_SERVER_PASSWORD = os.getenv("SQL_SERVER_PASSWORD", "")

# Staged relations (one per domain+entity+system) live in STAGE_DB.
# Mapping metadata, reconciliation types and the ledger live in GENERAL_DB.
STAGE_DB = os.getenv("STAGE_DB", "Recon_Stage")
GENERAL_DB = os.getenv("GENERAL_DB", "General")

# --- ODBC Driver ---
ODBC_DRIVER = os.getenv("ODBC_DRIVER", "ODBC Driver 18 for SQL Server")

# --- Metadata tables (GENERAL_DB) ---
MAPPING_TABLE = os.getenv("MAPPING_TABLE", "dbo.ReconAttributeMapping")
RECONCILIATION_TYPE_TABLE = os.getenv("RECONCILIATION_TYPE_TABLE", "dbo.ReconReconciliationType")
LEDGER_TABLE = os.getenv("LEDGER_TABLE", "ops.ReconciliationLedger")

# ---------------------------------------------------------------------------
# Staged relation naming
# ---------------------------------------------------------------------------
# Placeholders: {database}, {domain}, {entity}, {system}. System is rendered
# in lower case ("a" / "b"). Must resolve to a 3-part name (db.schema.table).
STAGED_TABLE_PATTERN = os.getenv(
    "STAGED_TABLE_PATTERN", "{database}.{domain}.{entity}_{system}"
)

# ---------------------------------------------------------------------------
# Reconciliation defaults
# ---------------------------------------------------------------------------
# Applied when neither side of a mapping declares a reconciliation type.
DEFAULT_RECONCILIATION_TYPE = os.getenv("DEFAULT_RECONCILIATION_TYPE", "EXACT")

# Epsilon for NUMERIC_TOLERANCE rules that do not carry their own tolerance.
NUMERIC_TOLERANCE_EPSILON = float(os.getenv("NUMERIC_TOLERANCE_EPSILON", "0.01"))

# Domain/entity canonical casing: "lower" or "upper".
CANONICAL_CASE = os.getenv("CANONICAL_CASE", "lower").lower()

# Separator for composite key rendering in key_a / key_b.
KEY_SEPARATOR = os.getenv("KEY_SEPARATOR", "|")

# Parallel entity reconciliations. Each worker holds two staged relations
# in memory at once, so size this to available RAM, not core count.
RECON_WORKERS = int(os.getenv("RECON_WORKERS", "4"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
