"""
Tests for configuration system.

Config models, YAML loading and the secret-only environment override.
"""

from pathlib import Path

from common.config import Config, DuplicatePolicy, MCPSettings, load_config


def test_config_creation():
    """Test basic Config creation."""
    config = Config()

    assert config.gateway is not None
    assert config.mcp is not None
    assert config.log_level == "INFO"


def test_mcp_settings_defaults():
    settings = MCPSettings()

    assert settings.cors == ""
    assert settings.basic_auth_username is None
    assert settings.max_request_body_size == 10 * 1024 * 1024
    assert settings.rate_limit_per_minute == 0
    assert settings.rate_limit_before_auth is False
    assert settings.stats_enabled is True
    assert settings.duplicate_policy == DuplicatePolicy.OVERWRITE


def test_config_yaml_file_exists():
    """Test that config.yaml file exists."""
    config_path = Path(__file__).parent.parent / "config.yaml"
    assert config_path.exists(), "config.yaml file should exist in the project root"


def test_load_project_config():
    config = load_config(Path(__file__).parent.parent / "config.yaml")

    assert config.gateway.port > 0
    assert config.mcp.page_size > 0
    assert config.mcp.duplicate_policy in (DuplicatePolicy.OVERWRITE, DuplicatePolicy.REJECT)


def test_load_config_flattens_logging(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "gateway:\n"
        "  port: 9100\n"
        "mcp:\n"
        "  cors: 'https://a.example.com'\n"
        "  rate_limit_per_minute: 60\n"
        "  duplicate_policy: reject\n"
        "logging:\n"
        "  level: DEBUG\n"
        "  save_to_file: false\n"
    )

    config = load_config(config_file)

    assert config.gateway.port == 9100
    assert config.mcp.cors == "https://a.example.com"
    assert config.mcp.rate_limit_per_minute == 60
    assert config.mcp.duplicate_policy == DuplicatePolicy.REJECT
    assert config.log_level == "DEBUG"


def test_missing_config_file_uses_defaults(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config == Config()


def test_basic_auth_password_from_environment(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("mcp:\n  basic_auth_username: admin\n")
    monkeypatch.setenv("MCP_BASIC_AUTH_PASSWORD", "s3cret")

    config = load_config(config_file)

    assert config.mcp.basic_auth_username == "admin"
    assert config.mcp.basic_auth_password == "s3cret"


def test_password_env_with_empty_mcp_section(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("mcp:\n")
    monkeypatch.setenv("MCP_BASIC_AUTH_PASSWORD", "pw")

    assert load_config(config_file).mcp.basic_auth_password == "pw"
