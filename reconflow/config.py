"""Configuration management for ReconFlow."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum


ENV_PREFIX = "RECONFLOW_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="ReconFlow", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Database settings (workflow definitions only)
    database_url: str = Field(
        default="sqlite:///./reconflow.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Task backend settings
    backend_base_url: str = Field(
        default="http://127.0.0.1:8080",
        description="Base URL of the remote task-execution backend"
    )
    backend_auth_token: Optional[str] = Field(default=None, description="Bearer token for the task backend")
    backend_verify_ssl: bool = Field(default=True, description="Verify TLS certificates of the task backend")
    backend_request_timeout: float = Field(default=30.0, description="Timeout of a single backend request in seconds")
    backend_max_retries: int = Field(default=3, description="Attempts for transient backend failures")
    backend_retry_base_delay: float = Field(default=0.5, description="Base delay between backend retries in seconds")
    poll_interval: float = Field(default=2.0, description="Task status poll interval in seconds")
    discovery_task_timeout: float = Field(default=300.0, description="Deadline for discovery tool tasks in seconds")
    analysis_task_timeout: float = Field(default=600.0, description="Deadline for analysis tool tasks in seconds")
    cancel_abandoned_tasks: bool = Field(
        default=True,
        description="Ask the backend to cancel tasks abandoned on timeout or cancellation"
    )

    # Execution engine settings
    max_retained_executions: int = Field(
        default=50,
        description="Finished executions kept in memory for inspection"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")
    structured_logging: bool = Field(default=False, description="Emit JSON log records")

    # Security settings
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )
    cors_methods: list = Field(
        default=["GET", "POST", "PATCH", "DELETE"],
        description="CORS allowed methods"
    )

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('backend_base_url')
    @classmethod
    def validate_backend_base_url(cls, v):
        """Validate and normalize the backend URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Backend base URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('poll_interval', 'discovery_task_timeout', 'analysis_task_timeout', 'backend_request_timeout')
    @classmethod
    def validate_positive_durations(cls, v):
        """Validate durations."""
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v

    @field_validator('backend_max_retries', 'max_retained_executions')
    @classmethod
    def validate_counts(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.lower().startswith("sqlite")

    def get_database_connect_args(self) -> Dict[str, Any]:
        """Get database connection arguments based on database type."""
        if self.is_sqlite:
            return {"check_same_thread": False}
        return {}

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from ``RECONFLOW_*`` environment variables."""
        def get_env(key: str, default=None, type_func=str):
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "ReconFlow"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", "sqlite:///./reconflow.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            backend_base_url=get_env("BACKEND_BASE_URL", "http://127.0.0.1:8080"),
            backend_auth_token=get_env("BACKEND_AUTH_TOKEN", None),
            backend_verify_ssl=get_env("BACKEND_VERIFY_SSL", True, bool),
            backend_request_timeout=get_env("BACKEND_REQUEST_TIMEOUT", 30.0, float),
            backend_max_retries=get_env("BACKEND_MAX_RETRIES", 3, int),
            backend_retry_base_delay=get_env("BACKEND_RETRY_BASE_DELAY", 0.5, float),
            poll_interval=get_env("POLL_INTERVAL", 2.0, float),
            discovery_task_timeout=get_env("DISCOVERY_TASK_TIMEOUT", 300.0, float),
            analysis_task_timeout=get_env("ANALYSIS_TASK_TIMEOUT", 600.0, float),
            cancel_abandoned_tasks=get_env("CANCEL_ABANDONED_TASKS", True, bool),
            max_retained_executions=get_env("MAX_RETAINED_EXECUTIONS", 50, int),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=get_env("LOG_FILE", None),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            structured_logging=get_env("STRUCTURED_LOGGING", False, bool),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
            cors_methods=get_env("CORS_METHODS", ["GET", "POST", "PATCH", "DELETE"], list)
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and the environment."""
    global _config

    from dotenv import load_dotenv

    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """Validate configuration settings that depend on the environment."""
    errors = []

    if config.is_sqlite and ":memory:" not in config.database_url:
        db_path = config.database_url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.poll_interval >= config.discovery_task_timeout:
        errors.append("Poll interval must be shorter than the discovery task timeout")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


# Environment-specific configurations
def get_development_config() -> AppConfig:
    """Get development configuration."""
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_echo=True,
        backend_verify_ssl=False
    )


def get_production_config() -> AppConfig:
    """Get production configuration."""
    return AppConfig(
        debug=False,
        reload=False,
        log_level=LogLevel.INFO,
        database_echo=False,
        structured_logging=True,
        cors_origins=[]  # Restrict CORS in production
    )


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        backend_base_url="http://backend.test",
        backend_auth_token="test-token",
        backend_max_retries=2,
        backend_retry_base_delay=0.01,
        poll_interval=0.01,
        discovery_task_timeout=2.0,
        analysis_task_timeout=2.0
    )
