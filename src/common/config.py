"""
Configuration loader for the MCP capability server.

Loads settings from config.yaml. Environment variables are used ONLY for secrets.
Never log secrets (basic auth password, API keys).
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

# Secret overrides (environment only)
BASIC_AUTH_PASSWORD_ENV = "MCP_BASIC_AUTH_PASSWORD"


class DuplicatePolicy(str, Enum):
    """What a registry does when a name is registered twice."""

    OVERWRITE = "overwrite"
    REJECT = "reject"


class GatewayConfig(BaseModel):
    """Configuration for the HTTP transport host."""

    host: str = Field(default="127.0.0.1", description="Host to bind to")
    port: int = Field(default=8000, description="Port to bind to")


class MCPSettings(BaseModel):
    """Per-server settings applied to every named MCP server instance."""

    description: str = Field(default="", description="Human readable server description")
    version: str = Field(default="1.0.0", description="Server version string")
    cors: str = Field(
        default="", description="Allowed origin(s), comma separated. Empty disables CORS"
    )
    basic_auth_username: Optional[str] = Field(default=None, description="Basic auth user")
    basic_auth_password: Optional[str] = Field(default=None, description="Basic auth password")
    max_request_body_size: int = Field(
        default=10 * 1024 * 1024, description="Maximum request body in bytes (0 = unlimited)"
    )
    rate_limit_per_minute: int = Field(
        default=0, description="Requests per client per minute (0 = unlimited)"
    )
    rate_limit_before_auth: bool = Field(
        default=False, description="Run the rate limiter before authentication"
    )
    stats_enabled: bool = Field(default=True, description="Collect usage statistics")
    request_timeout: Optional[float] = Field(
        default=30.0, description="Handler execution timeout in seconds (None/0 = no timeout)"
    )
    duplicate_policy: DuplicatePolicy = Field(
        default=DuplicatePolicy.OVERWRITE, description="Duplicate registration policy"
    )
    page_size: int = Field(default=50, description="Page size for list methods")
    max_workers: int = Field(default=16, description="Worker threads per capability for sync handlers")


class Config(BaseModel):
    """Main configuration object."""

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    mcp: MCPSettings = Field(default_factory=MCPSettings)
    log_level: str = Field(default="INFO", description="Logging level")
    enable_pretty_print: bool = Field(
        default=False, description="Enable custom pretty print for debugging"
    )
    save_to_file: bool = Field(default=False, description="Save logs to file")
    log_file_path: str = Field(default="server.log", description="Log file path (relative to root)")
    max_log_file_size: int = Field(
        default=10485760, description="Max log file size in bytes (10MB)"
    )
    backup_count: int = Field(default=5, description="Number of backup log files to keep")


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from YAML file.

    Environment variables are used ONLY for secrets (the basic auth password),
    not configuration.

    Args:
        config_path: Path to config.yaml file. Defaults to ./config.yaml

    Returns:
        Loaded configuration object
    """
    if config_path is None:
        config_path = Path("config.yaml")

    config_data: Dict[str, Any] = {}

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

    # Flatten nested logging configuration
    if "logging" in config_data:
        logging_config = config_data.pop("logging") or {}
        if "level" in logging_config:
            config_data["log_level"] = logging_config["level"]
        for key in (
            "enable_pretty_print",
            "save_to_file",
            "log_file_path",
            "max_log_file_size",
            "backup_count",
        ):
            if key in logging_config:
                config_data[key] = logging_config[key]

    password = os.environ.get(BASIC_AUTH_PASSWORD_ENV)
    if password:
        mcp_data = dict(config_data.get("mcp") or {})
        mcp_data["basic_auth_password"] = password
        config_data["mcp"] = mcp_data

    return Config(**config_data)
