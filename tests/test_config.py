"""Tests for settings loading."""

from __future__ import annotations

from casegraph.core.config import MergeConfig, ProjectionConfig, ReportConfig, Settings


def test_defaults():
    settings = Settings()
    assert settings.merge.max_chain_hops == 100
    assert settings.projection.run_worker is True
    assert settings.report.default_language == "en"
    assert "compliance_officer" in settings.elevated_roles


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CASEGRAPH_MERGE_MAX_CHAIN_HOPS", "7")
    monkeypatch.setenv("CASEGRAPH_PROJECTION_RUN_WORKER", "false")
    monkeypatch.setenv("CASEGRAPH_REPORT_DEFAULT_LANGUAGE", "de")
    assert MergeConfig().max_chain_hops == 7
    assert ProjectionConfig().run_worker is False
    assert ReportConfig().default_language == "de"


def test_nested_sections_read_environment(monkeypatch):
    monkeypatch.setenv("CASEGRAPH_DB_URL", "postgresql+asyncpg://u:p@db/casegraph")
    monkeypatch.setenv("CASEGRAPH_LOG_LEVEL", "DEBUG")
    settings = Settings()
    assert settings.database.url == "postgresql+asyncpg://u:p@db/casegraph"
    assert settings.log_level == "DEBUG"
