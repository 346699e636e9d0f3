"""
Settings models for Biostratum MCP.
"""

import os
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import (
    BaseModel,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    model_validator,
)

from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILENAME = "biostratum_mcp.config.yaml"

# Paths to check for .env files, in order of precedence
ENV_PATHS = [
    Path.cwd() / ".env",
    Path.cwd() / ".secrets.env",
    Path.home() / ".biostratum_mcp" / ".env",
]


class ToolFilter(BaseModel):
    """
    Include/exclude filter applied to a server's tool list.

    An empty include list keeps every tool. Exclusion is applied after
    inclusion and always removes.
    """

    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return bool(self.include or self.exclude)

    def apply(self, tools: List[Any]) -> List[Any]:
        filtered = list(tools)
        if self.include:
            included = set(self.include)
            filtered = [tool for tool in filtered if tool.name in included]
        if self.exclude:
            excluded = set(self.exclude)
            filtered = [tool for tool in filtered if tool.name not in excluded]
        return filtered


class BaseServerConfig(BaseModel):
    """Fields shared by every server transport."""

    timeout: Optional[float] = None
    tool_filtering: ToolFilter = Field(default_factory=ToolFilter)
    disabled: bool = False

    @model_validator(mode="before")
    @classmethod
    def _fold_filter_shorthand(cls, data: Any) -> Any:
        # Accept top-level include/exclude as shorthand for tool_filtering
        if isinstance(data, dict) and ("include" in data or "exclude" in data):
            data = dict(data)
            tool_filtering = dict(data.get("tool_filtering") or {})
            for key in ("include", "exclude"):
                value = data.pop(key, None)
                if value is not None:
                    tool_filtering[key] = value
            data["tool_filtering"] = tool_filtering
        return data


class StdioServerConfig(BaseServerConfig):
    """A server spawned as a child process and spoken to over stdin/stdout."""

    type: Literal["stdio"] = "stdio"
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    cwd: Optional[str] = None


class SseServerConfig(BaseServerConfig):
    """A server reached through a persistent server-sent event stream."""

    type: Literal["sse"] = "sse"
    url: Optional[str] = None


def _server_type(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        if value.get("type"):
            return value["type"]
        if value.get("url") and not value.get("command"):
            return "sse"
        return "stdio"
    return getattr(value, "type", None)


ServerConfig = Annotated[
    Union[
        Annotated[StdioServerConfig, Tag("stdio")],
        Annotated[SseServerConfig, Tag("sse")],
    ],
    Discriminator(_server_type),
]

_server_config_adapter = TypeAdapter(ServerConfig)


def parse_server_config(data: Union[Dict[str, Any], BaseServerConfig]) -> BaseServerConfig:
    """Validate a raw mapping into a stdio or SSE server config."""
    if isinstance(data, BaseServerConfig):
        return data
    return _server_config_adapter.validate_python(data)


class CuratedServerDefinition(BaseModel):
    """A known server launched through a well-known command."""

    command: str
    enabled: bool = True
    extra_args: List[str] = Field(default_factory=list)


CURATED_LAUNCHER = "uvx"
CURATED_PREFIX = "biostratum-"

CURATED_SERVERS: Dict[str, CuratedServerDefinition] = {
    "biothings": CuratedServerDefinition(command="biothings-mcp"),
    "opengenes": CuratedServerDefinition(command="opengenes-mcp"),
    "longevity": CuratedServerDefinition(command="longevity-mcp", enabled=False),
    "gget": CuratedServerDefinition(command="gget-mcp"),
    "synergy-age": CuratedServerDefinition(command="synergy-age-mcp"),
    "pharmacology": CuratedServerDefinition(command="pharmacology-mcp", extra_args=["stdio"]),
    "druginteractions": CuratedServerDefinition(command="druginteractions-mcp", enabled=False),
}


class CuratedServerSettings(BaseModel):
    """Per-entry overrides for a curated server."""

    enabled: Optional[bool] = None
    include: Optional[List[str]] = None
    exclude: Optional[List[str]] = None
    env: Optional[Dict[str, str]] = None
    timeout: Optional[float] = None
    cwd: Optional[str] = None
    command: Optional[str] = None
    args: Optional[List[str]] = None


class MCPSettings(BaseModel):
    """Generic namespace: arbitrary named servers."""

    servers: Dict[str, ServerConfig] = Field(default_factory=dict)


class LoggingSettings(BaseModel):
    """Settings for logging configuration."""

    level: str = "info"
    file_path: Optional[str] = None


class Settings(BaseModel):
    """Root settings object for Biostratum MCP."""

    mcp: MCPSettings = Field(default_factory=MCPSettings)
    biostratum: Dict[str, CuratedServerSettings] = Field(default_factory=dict)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    default_timeout_seconds: float = 60.0
    teardown_grace_seconds: float = 5.0
    cleanup_workers: int = 4


def convert_curated_servers(
    curated: Dict[str, CuratedServerSettings],
) -> Dict[str, StdioServerConfig]:
    """
    Expand curated server identifiers into stdio configs.

    Unknown identifiers and disabled servers are skipped. Explicit overrides
    take precedence over the generated defaults.
    """
    servers: Dict[str, StdioServerConfig] = {}

    for server_id, overrides in curated.items():
        definition = CURATED_SERVERS.get(server_id)
        if definition is None:
            logger.warning(f"Unknown curated server: {server_id}")
            continue

        enabled = overrides.enabled if overrides.enabled is not None else definition.enabled
        if not enabled:
            logger.info(f"Curated server {server_id} is disabled")
            continue

        if overrides.include is not None or overrides.exclude is not None:
            include_info = f"include: [{len(overrides.include)} tools]" if overrides.include else "include: all"
            exclude_info = f"exclude: [{len(overrides.exclude)} tools]" if overrides.exclude else "exclude: none"
            logger.info(f"Curated server {server_id} tool filtering - {include_info}, {exclude_info}")

        config: Dict[str, Any] = {
            "type": "stdio",
            "command": CURATED_LAUNCHER,
            "args": [definition.command, *definition.extra_args],
            "tool_filtering": {
                "include": overrides.include or [],
                "exclude": overrides.exclude or [],
            },
        }
        config.update(
            overrides.model_dump(
                exclude_none=True, exclude={"enabled", "include", "exclude"}
            )
        )

        servers[f"{CURATED_PREFIX}{server_id}"] = StdioServerConfig.model_validate(config)

    return servers


def merge_server_configurations(settings: Settings) -> Dict[str, BaseServerConfig]:
    """
    Merge the generic and curated namespaces into one desired config map.

    Curated entries are added last and win on a name clash.
    """
    servers: Dict[str, BaseServerConfig] = dict(settings.mcp.servers)
    servers.update(convert_curated_servers(settings.biostratum))
    return servers


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load and validate the configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.
            If None, look for 'biostratum_mcp.config.yaml' in the current directory.

    Returns:
        Settings: Validated configuration object.
    """
    for env_path in ENV_PATHS:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            break

    if config_path is None:
        config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILENAME)

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    # Load secrets if they exist
    secrets_path = Path(config_path).with_suffix(".secrets.yaml")
    if secrets_path.exists():
        with open(secrets_path, "r") as f:
            secrets_data = yaml.safe_load(f) or {}

        _merge_dicts(config_data, secrets_data)

    # Environment variables override file settings
    env_config = _load_from_env()
    if env_config:
        _merge_dicts(config_data, env_config)

    return Settings.model_validate(config_data)


def _load_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    Returns:
        Dict with configuration loaded from environment variables.
    """
    config: Dict[str, Any] = {}

    _set_nested_dict(config, ["logging", "level"], os.environ.get("LOG_LEVEL"))
    _set_nested_dict(config, ["logging", "file_path"], os.environ.get("LOG_FILE"))
    _set_nested_dict(
        config, ["default_timeout_seconds"], os.environ.get("BIOSTRATUM_DEFAULT_TIMEOUT")
    )

    return config


def _set_nested_dict(d: Dict[str, Any], path: List[str], value: Any) -> None:
    """
    Set a value in a nested dictionary based on a path.

    Args:
        d: Dictionary to set value in.
        path: List of keys defining the path.
        value: Value to set.
    """
    if value is None:
        return

    if len(path) == 1:
        d[path[0]] = value
        return

    if path[0] not in d:
        d[path[0]] = {}

    _set_nested_dict(d[path[0]], path[1:], value)


def _merge_dicts(target: Dict, source: Dict) -> None:
    """
    Recursively merge source dictionary into target dictionary.
    Values in source will override values in target.
    """
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _merge_dicts(target[key], value)
        else:
            target[key] = value
