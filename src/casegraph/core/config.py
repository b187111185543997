"""Application configuration loaded from environment and config files."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class DatabaseConfig(BaseSettings):
    """Relational store configuration."""

    model_config = {"env_prefix": "CASEGRAPH_DB_"}

    url: str = "sqlite+aiosqlite:///./casegraph.db"
    echo: bool = False
    pool_size: int = 5


class MergeConfig(BaseSettings):
    """Case consolidation configuration."""

    model_config = {"env_prefix": "CASEGRAPH_MERGE_"}

    max_chain_hops: int = 100


class ProjectionConfig(BaseSettings):
    """Pattern projection and event queue configuration."""

    model_config = {"env_prefix": "CASEGRAPH_PROJECTION_"}

    run_worker: bool = True
    queue_maxsize: int = 10_000
    max_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    dead_letter_maxsize: int = 1_000


class ReportConfig(BaseSettings):
    """Report (RIU) handling configuration."""

    model_config = {"env_prefix": "CASEGRAPH_REPORT_"}

    default_language: str = "en"
    transitions_path: str | None = None


class AuditConfig(BaseSettings):
    """Audit trail configuration."""

    model_config = {"env_prefix": "CASEGRAPH_AUDIT_"}

    enabled: bool = True
    hash_algorithm: str = "sha256"


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "CASEGRAPH_"}

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    create_schema: bool = True
    elevated_roles: list[str] = Field(
        default_factory=lambda: ["admin", "compliance_officer", "investigations_lead"]
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    projection: ProjectionConfig = Field(default_factory=ProjectionConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
