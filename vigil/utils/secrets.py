"""
Secrets and connection settings for VIGIL.

A secret NAME is looked up in this order:
1. NAME_FILE environment variable pointing at a file (Docker/Kubernetes secrets)
2. NAME environment variable
3. /run/secrets/name

Usage:
    from vigil.utils.secrets import get_audit_api_key, database_url

    engine = create_engine(database_url())
"""
import os
import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

SECRETS_DIR = Path("/run/secrets")


def _read_secret_file(path: Union[str, Path]) -> Optional[str]:
    try:
        return Path(path).read_text(encoding="utf-8").strip() or None
    except OSError as e:
        logger.warning(f"Failed to read secret file {path}: {e}")
        return None


def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get a secret value from a secrets file or the environment.

    Args:
        name: Secret name (e.g., "PERPLEXITY_API_KEY")
        default: Returned when no source provides a value

    Returns:
        Secret value or default
    """
    file_path = os.environ.get(f"{name}_FILE")
    if file_path and os.path.isfile(file_path):
        value = _read_secret_file(file_path)
        if value:
            logger.debug(f"Loaded secret {name} from file")
            return value

    value = os.environ.get(name)
    if value:
        return value

    mounted = SECRETS_DIR / name.lower()
    if mounted.is_file():
        value = _read_secret_file(mounted)
        if value:
            logger.debug(f"Loaded secret {name} from {SECRETS_DIR}")
            return value

    return default


def get_audit_api_key() -> Optional[str]:
    """Get the audit service API key (Perplexity)."""
    return get_secret("PERPLEXITY_API_KEY") or get_secret("AUDIT_API_KEY")


def database_url() -> str:
    """
    SQLAlchemy URL for the VIGIL database.

    VIGIL_DATABASE_URL wins; otherwise a PostgreSQL URL is assembled from
    POSTGRES_HOST/PORT/DB/USER and the POSTGRES_PASSWORD secret.
    """
    url = os.getenv("VIGIL_DATABASE_URL")
    if url:
        return url

    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "vigil")
    user = os.getenv("POSTGRES_USER", "vigil_user")
    password = get_secret("POSTGRES_PASSWORD", "")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def mask_secret(secret: Optional[str], visible_chars: int = 4) -> str:
    """
    Mask a secret for safe logging.

    Returns:
        Masked string like "pplx...9f3a"
    """
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}...{secret[-visible_chars:]}"
