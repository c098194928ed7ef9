import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ROOT_DIR = os.path.dirname(os.path.dirname(BASE_DIR))
DATA_DIR = os.path.join(ROOT_DIR, "data")


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


# Logging
LOG_LEVEL = os.getenv("INTAKE_LOG_LEVEL", "INFO").upper()

# Rate limiting (fixed window per client fingerprint)
RATE_LIMIT_WINDOW_SEC = float(os.getenv("INTAKE_RATE_LIMIT_WINDOW_SEC", "60"))
RATE_LIMIT_MAX = int(os.getenv("INTAKE_RATE_LIMIT_MAX", "5"))
# "memory" is single-process only; use "redis" when running several workers
RATE_LIMIT_BACKEND = os.getenv("INTAKE_RATE_LIMIT_BACKEND", "memory").lower()
REDIS_URL = os.getenv("INTAKE_REDIS_URL", "redis://localhost:6379/0")

# Consent audit trail
CONSENT_VERSION = os.getenv("INTAKE_CONSENT_VERSION", "1.0")
HASH_PEPPER = os.getenv("INTAKE_HASH_PEPPER", "")

# Session tokens are issued by the external auth provider and share this secret
SESSION_SECRET = os.getenv("INTAKE_SESSION_SECRET", "dev-secret-change-me")  # override in prod
SESSION_ALGORITHM = os.getenv("INTAKE_SESSION_ALGORITHM", "HS256")
ADMIN_ROLE = os.getenv("INTAKE_ADMIN_ROLE", "admin")

# Document storage
DOCUMENT_BACKEND = os.getenv("INTAKE_DOCUMENT_BACKEND", "local").lower()
DOCUMENT_ROOT = os.getenv("INTAKE_DOCUMENT_ROOT", os.path.join(DATA_DIR, "documents"))
PUBLIC_BASE_URL = os.getenv("INTAKE_PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
SUPABASE_URL = os.getenv("SUPABASE_URL", "").rstrip("/")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")
ID_DOCS_BUCKET = "id_docs"
PROOF_OF_ADDRESS_BUCKET = "proof_of_address"

UPLOAD_TIMEOUT = float(os.getenv("INTAKE_UPLOAD_TIMEOUT", "30"))  # seconds, per file
UPLOAD_WORKERS = int(os.getenv("INTAKE_UPLOAD_WORKERS", "4"))
MAX_UPLOAD_BYTES = int(os.getenv("INTAKE_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
SIGNED_URL_TTL = int(os.getenv("INTAKE_SIGNED_URL_TTL", "3600"))

# CORS
CORS_ORIGINS = _csv(os.getenv(
    "INTAKE_CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000",
))
