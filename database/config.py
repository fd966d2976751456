"""
Database Configuration Management

Handles database configuration for different environments (development, production)
with support for local PostgreSQL, Supabase/Neon deployments and in-process SQLite
(used by the test suite and quick local runs).
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any
from urllib.parse import urlparse

from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration container."""

    # Connection parameters
    host: str = ""
    port: int = 5432
    database: str = ""
    username: str = ""
    password: str = ""

    # Connection string (optional, overrides individual parameters)
    database_url: Optional[str] = None

    # Connection pooling settings
    use_connection_pooling: bool = True
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True

    # SSL settings
    ssl_mode: str = "prefer"  # disable, allow, prefer, require, verify-ca, verify-full

    # Application settings
    application_name: str = "arena_tracker"

    # Hosted Postgres detection
    is_supabase: bool = False
    is_neon: bool = False

    # Connection retry settings
    max_retries: int = 3
    retry_delay: float = 1.0

    # Query settings
    statement_timeout: int = 30000  # 30 seconds in milliseconds

    # Environment
    environment: str = "development"
    debug: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.database_url:
            self._parse_database_url()

        if self.is_sqlite:
            return

        # Validate required fields
        if not all([self.host, self.port, self.database, self.username]):
            raise ValueError("Missing required database configuration parameters")

        host = self.host.lower()
        if "supabase" in host:
            self.is_supabase = True
        if "neon.tech" in host:
            self.is_neon = True

        # Hosted Postgres only accepts TLS
        if (self.is_supabase or self.is_neon) and self.ssl_mode == "prefer":
            self.ssl_mode = "require"

    @property
    def is_sqlite(self) -> bool:
        return bool(self.database_url) and self.database_url.startswith("sqlite")

    def _parse_database_url(self):
        """Parse DATABASE_URL into component parts."""
        if self.is_sqlite:
            return
        try:
            parsed = urlparse(self.database_url)

            self.username = parsed.username or self.username
            self.password = parsed.password or self.password
            self.host = parsed.hostname or self.host
            self.port = parsed.port or self.port
            self.database = parsed.path.lstrip('/') or self.database

            if parsed.query:
                params = dict(param.split('=', 1) for param in parsed.query.split('&') if '=' in param)
                if 'sslmode' in params:
                    self.ssl_mode = params['sslmode']

        except ValueError as e:
            logger.warning(f"Failed to parse database URL: {e}")

    @property
    def connection_string(self) -> str:
        """Generate SQLAlchemy connection string."""
        if self.database_url:
            url = self.database_url
            # Heroku and Neon hand out postgres:// URLs
            if url.startswith("postgres://"):
                url = "postgresql://" + url[len("postgres://"):]
            return url

        conn_str = f"postgresql://{self.username}:{self.password}@{self.host}:{self.port}/{self.database}"

        params = []
        if self.ssl_mode != "prefer":
            params.append(f"sslmode={self.ssl_mode}")
        if self.application_name:
            params.append(f"application_name={self.application_name}")
        if params:
            conn_str += "?" + "&".join(params)

        return conn_str

    @property
    def engine_kwargs(self) -> Dict[str, Any]:
        """Get SQLAlchemy engine configuration."""
        if self.is_sqlite:
            # One shared in-process connection, usable from Flask worker threads
            return {
                "echo": self.debug,
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }

        kwargs = {
            "echo": self.debug,
            "pool_pre_ping": self.pool_pre_ping,
            "connect_args": {
                "application_name": self.application_name,
                "options": f"-c statement_timeout={self.statement_timeout}"
            }
        }

        if self.use_connection_pooling:
            kwargs.update({
                "pool_size": self.pool_size,
                "max_overflow": self.max_overflow,
                "pool_timeout": self.pool_timeout,
                "pool_recycle": self.pool_recycle,
            })
        else:
            kwargs["poolclass"] = StaticPool

        return kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (excluding sensitive data)."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "password": "***" if self.password else None,
            "dialect": "sqlite" if self.is_sqlite else "postgresql",
            "use_connection_pooling": self.use_connection_pooling,
            "pool_size": self.pool_size,
            "ssl_mode": self.ssl_mode,
            "application_name": self.application_name,
            "is_supabase": self.is_supabase,
            "is_neon": self.is_neon,
            "environment": self.environment,
            "debug": self.debug
        }


def load_env_file(env_file_path: str = ".env") -> Dict[str, str]:
    """Load environment variables from .env file, then overlay the real environment."""
    env_vars = {}

    if env_file_path and os.path.exists(env_file_path):
        try:
            with open(env_file_path, 'r', encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        env_vars[key.strip()] = value.strip().strip('"\'')
        except OSError as e:
            logger.warning(f"Failed to load .env file: {e}")

    env_vars.update(os.environ)
    return env_vars


def get_database_config(env_file: str = ".env") -> DatabaseConfig:
    """
    Load database configuration from environment variables.

    Environment variables (in order of precedence):
    1. DATABASE_URL or NEON_DATABASE_URL (full connection string)
    2. Individual components: DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD
    3. Default values for development

    Args:
        env_file: Path to .env file

    Returns:
        DatabaseConfig: Configured database settings
    """
    env_vars = load_env_file(env_file)

    is_prod = is_production(env_vars)
    database_url = env_vars.get("DATABASE_URL") or env_vars.get("NEON_DATABASE_URL")

    config_data = {
        "environment": "production" if is_prod else "development",
        "debug": env_vars.get("DEBUG", "false").lower() == "true" and not is_prod,
        "database_url": database_url,
        "host": env_vars.get("DB_HOST", "localhost"),
        "port": int(env_vars.get("DB_PORT", 5432)),
        "database": env_vars.get("DB_NAME", "arena_tracker"),
        "username": env_vars.get("DB_USER", "arena"),
        "password": env_vars.get("DB_PASSWORD", ""),
        "use_connection_pooling": env_vars.get("DB_USE_POOLING", "true").lower() == "true",
        "pool_size": int(env_vars.get("DB_POOL_SIZE", 5)),
        "max_overflow": int(env_vars.get("DB_MAX_OVERFLOW", 10)),
        "pool_timeout": int(env_vars.get("DB_POOL_TIMEOUT", 30)),
        "pool_recycle": int(env_vars.get("DB_POOL_RECYCLE", 1800)),
        "ssl_mode": env_vars.get("DB_SSL_MODE", "require" if is_prod else "prefer"),
        "max_retries": int(env_vars.get("DB_MAX_RETRIES", 3)),
        "retry_delay": float(env_vars.get("DB_RETRY_DELAY", 1.0)),
        "statement_timeout": int(env_vars.get("DB_STATEMENT_TIMEOUT", 30000)),
    }

    return DatabaseConfig(**config_data)


def is_production(env_vars: Optional[Dict[str, str]] = None) -> bool:
    """Check if we're running in production environment."""
    env = os.environ if env_vars is None else env_vars
    return env.get("ENVIRONMENT", "").lower() == "production" or \
        env.get("VERCEL_ENV", "").lower() == "production"


def validate_config(config: DatabaseConfig) -> Dict[str, Any]:
    """
    Validate database configuration.

    Args:
        config: Database configuration to validate

    Returns:
        Dict with validation results
    """
    issues = []
    warnings = []

    if config.is_sqlite:
        warnings.append("SQLite backend in use; intended for tests and local runs only")
        return {"valid": True, "issues": issues, "warnings": warnings}

    if not config.host:
        issues.append("Database host is required")

    if not config.database:
        issues.append("Database name is required")

    if not config.username:
        issues.append("Database username is required")

    if not config.password:
        issues.append("Database password is required")

    if not (1 <= config.port <= 65535):
        issues.append(f"Invalid port number: {config.port}")

    if config.use_connection_pooling:
        if config.pool_size < 1:
            issues.append("Pool size must be at least 1")
        if config.max_overflow < 0:
            issues.append("Max overflow cannot be negative")

    valid_ssl_modes = ["disable", "allow", "prefer", "require", "verify-ca", "verify-full"]
    if config.ssl_mode not in valid_ssl_modes:
        issues.append(f"Invalid SSL mode: {config.ssl_mode}")

    if (config.is_supabase or config.is_neon) and config.ssl_mode == "disable":
        warnings.append("SSL is disabled for a hosted Postgres connection")

    return {
        "valid": len(issues) == 0,
        "issues": issues,
        "warnings": warnings
    }
