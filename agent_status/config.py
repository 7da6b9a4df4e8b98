"""
Configuration management for the Agent Status monitor.

Provides YAML-based configuration with environment variable substitution,
validation, environment overrides for Zendesk credentials, and reloading
when the configuration file changes on disk.
"""

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_status.exceptions import ConfigurationError
from agent_status.models import AgentRecord

DEFAULT_VIEW_ID = 360077881353

DEFAULT_CONFIG_PATHS = [
    Path("config/monitor.yaml"),
    Path("monitor.yaml"),
    Path("config.yaml"),
]

PLACEHOLDER_SUBDOMAIN = "your_subdomain"
PLACEHOLDER_EMAIL = "your_email@example.com"
PLACEHOLDER_API_TOKEN = "your_api_token"


class AgentEntry(BaseModel):
    """An agent known to the configuration, with its monitoring selection."""

    name: str = ""
    email: str = ""
    active: bool = True
    role: str = ""
    is_selected: bool = False
    last_updated: Optional[datetime] = None


class ZendeskSettings(BaseModel):
    """Zendesk connection settings and monitored agent selection."""

    subdomain: Optional[str] = None
    email: Optional[str] = None
    api_token: Optional[str] = None
    base_url: Optional[str] = None
    view_id: int = DEFAULT_VIEW_ID
    request_timeout: float = 30.0
    agents: Dict[int, AgentEntry] = Field(default_factory=dict)
    # Legacy selection map, used only when no agent is selected in `agents`
    selected_agents: Dict[int, bool] = Field(default_factory=dict)


class QuietStep(BaseModel):
    """Poll interval used while fewer than `below` quiet cycles have passed."""

    below: int
    interval: float


class MonitorSettings(BaseModel):
    """Scheduling, backoff and caching parameters of the monitoring loop."""

    max_concurrency: int = 5
    config_check_interval: float = 300.0
    invalid_config_retry: float = 60.0
    error_retry: float = 10.0
    backoff_base: float = 10.0
    backoff_max: float = 300.0
    changed_interval: float = 10.0
    quiet_steps: List[QuietStep] = Field(
        default_factory=lambda: [
            QuietStep(below=5, interval=15.0),
            QuietStep(below=10, interval=30.0),
            QuietStep(below=20, interval=60.0),
        ]
    )
    quiet_max_interval: float = 120.0
    name_refresh_interval: float = 4 * 3600.0
    name_positive_ttl: float = 3600.0
    name_negative_ttl: float = 1800.0
    prune_stale_after_cycles: int = 0

    @field_validator("max_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Validate the fan-out permit pool size."""
        if v < 1:
            raise ValueError("max_concurrency must be at least 1")
        return v

    @field_validator("quiet_steps")
    @classmethod
    def validate_quiet_steps(cls, v: List[QuietStep]) -> List[QuietStep]:
        """Quiet steps must be ordered so intervals never shrink."""
        thresholds = [step.below for step in v]
        intervals = [step.interval for step in v]
        if thresholds != sorted(thresholds) or intervals != sorted(intervals):
            raise ValueError("quiet_steps must be sorted by threshold and interval")
        return v


class ObservabilitySettings(BaseModel):
    """Logging, metrics and tracing configuration."""

    log_level: str = "INFO"
    log_format: str = "console"
    metrics_enabled: bool = True
    metrics_port: int = 5000
    tracing_enabled: bool = False

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log output format."""
        allowed_formats = {"console", "json"}
        if v not in allowed_formats:
            raise ValueError(f"Log format must be one of {allowed_formats}")
        return v


class ServerSettings(BaseModel):
    """Control plane HTTP server settings."""

    host: str = "0.0.0.0"
    port: int = 8080


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    environment: str = "local"

    zendesk: ZendeskSettings = Field(default_factory=ZendeskSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


class EnvironmentSettings(BaseSettings):
    """Environment-specific settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    agent_status_config: Optional[str] = None
    zendesk_subdomain: Optional[str] = None
    zendesk_email: Optional[str] = None
    zendesk_api_token: Optional[str] = None


class ZendeskCredentials(BaseModel):
    """Credentials used to authenticate against the Zendesk API."""

    model_config = ConfigDict(frozen=True)

    subdomain: Optional[str] = None
    email: Optional[str] = None
    api_token: Optional[str] = None
    base_url: Optional[str] = None

    def field_validity(self) -> Dict[str, bool]:
        """Report, per field, whether it is present and not a placeholder."""
        return {
            "subdomain": _is_real_value(self.subdomain, PLACEHOLDER_SUBDOMAIN),
            "email": _is_real_value(self.email, PLACEHOLDER_EMAIL),
            "api_token": _is_real_value(self.api_token, PLACEHOLDER_API_TOKEN),
        }

    @property
    def is_complete(self) -> bool:
        return all(self.field_validity().values())


def _is_real_value(value: Optional[str], placeholder: str) -> bool:
    if value is None or value.strip() == "" or value == placeholder:
        return False
    # An unresolved {VAR} template means the environment variable is unset
    return _TEMPLATE_PATTERN.fullmatch(value.strip()) is None


_TEMPLATE_PATTERN = re.compile(r"\{([A-Z_][A-Z0-9_]*)\}")


def substitute_variables(
    data: Union[str, Dict[str, Any], list], variables: Dict[str, Any]
) -> Union[str, Dict[str, Any], list]:
    """
    Substitute {VAR} template variables in configuration data.

    Unknown variables are left untouched.
    """
    if isinstance(data, str):

        def replace_var(match: re.Match[str]) -> str:
            return str(variables.get(match.group(1), match.group(0)))

        return _TEMPLATE_PATTERN.sub(replace_var, data)

    elif isinstance(data, dict):
        return {k: substitute_variables(v, variables) for k, v in data.items()}

    elif isinstance(data, list):
        return [substitute_variables(item, variables) for item in data]

    else:
        return data


def resolve_config_path(config_path: Optional[Union[str, Path]] = None) -> Path:
    """
    Determine which configuration file to use.

    An explicit path wins, then AGENT_STATUS_CONFIG, then the first existing
    default location. Falls back to the first default location even when it
    does not exist yet.
    """
    if config_path is not None:
        return Path(config_path)

    env_path = EnvironmentSettings().agent_status_config
    if env_path:
        return Path(env_path)

    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path
    return DEFAULT_CONFIG_PATHS[0]


def read_raw_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Read the YAML document without substitution or validation."""
    config_path = Path(config_path)
    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read configuration: {e}") from e

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")
    return raw_config


def load_config(config_path: Optional[Union[str, Path]] = None) -> Config:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to configuration file. If None, looks for default locations.

    Returns:
        Validated configuration object.

    Raises:
        ConfigurationError: If configuration is invalid or cannot be loaded.
    """
    load_dotenv()

    path = resolve_config_path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    raw_config = read_raw_config(path)
    processed_config = substitute_variables(raw_config, dict(os.environ))

    try:
        return Config(**processed_config)
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def write_raw_config(raw_config: Dict[str, Any], config_path: Union[str, Path]) -> None:
    """
    Save a raw configuration document to a YAML file.

    Raises:
        ConfigurationError: If configuration cannot be saved.
    """
    config_path = Path(config_path)

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with config_path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(
                raw_config,
                f,
                default_flow_style=False,
                sort_keys=False,
                indent=2,
                allow_unicode=True,
            )

    except Exception as e:
        raise ConfigurationError(f"Failed to save configuration: {e}") from e


def merge_agent_roster(raw_config: Dict[str, Any], records: Iterable[AgentRecord]) -> Dict[str, Any]:
    """
    Merge a fetched roster into the raw `zendesk.agents` section.

    Existing selections are preserved; new agents start unselected. Agents
    no longer in the roster are kept so their selection is not lost.
    """
    merged = dict(raw_config)
    zendesk = dict(merged.get("zendesk") or {})
    agents = {str(key): dict(value or {}) for key, value in (zendesk.get("agents") or {}).items()}
    now = datetime.now(timezone.utc).replace(microsecond=0).isoformat()

    for record in records:
        key = str(record.id)
        entry = agents.get(key, {})
        entry.update(
            {
                "name": record.name,
                "email": record.email or "",
                "active": record.active,
                "role": record.role or "",
                "is_selected": bool(entry.get("is_selected", False)),
                "last_updated": now,
            }
        )
        agents[key] = entry

    zendesk["agents"] = dict(sorted(agents.items(), key=lambda item: item[1].get("name", "")))
    merged["zendesk"] = zendesk
    return merged


class ConfigurationStore:
    """
    Configuration store backed by a YAML file.

    Reloads the file when its modification time changes and keeps the last
    good configuration when a reload fails. A missing file behaves like an
    empty configuration, which the monitor treats as invalid.
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        env_settings: Optional[EnvironmentSettings] = None,
        config: Optional[Config] = None,
    ):
        """
        Initialize the configuration store.

        Args:
            config_path: YAML file to read; resolved from defaults if None
            env_settings: Environment overrides; read from the process if None
            config: In-memory configuration; when given no file is read
        """
        load_dotenv()
        self.config_path: Optional[Path] = None if config is not None else resolve_config_path(config_path)
        self.env_settings = env_settings or EnvironmentSettings()
        self._config = config or Config()
        self._last_modified: Optional[float] = None
        self._pending_raw: Optional[Dict[str, Any]] = None
        self.last_error: Optional[str] = None
        self.reload_if_changed()

    @property
    def config(self) -> Config:
        return self._config

    def reload_if_changed(self) -> bool:
        """
        Reload the configuration file if it changed since the last load.

        Returns:
            True if a new configuration was loaded, False otherwise.
        """
        if self.config_path is None or not self.config_path.exists():
            return False

        current_modified = self.config_path.stat().st_mtime
        if self._last_modified is not None and current_modified <= self._last_modified:
            return False

        self._last_modified = current_modified
        try:
            self._config = load_config(self.config_path)
            self.last_error = None
            return True
        except ConfigurationError as e:
            self.last_error = str(e)
            return False

    def get_credentials(self) -> Optional[ZendeskCredentials]:
        """Return Zendesk credentials, with environment overrides applied."""
        zendesk = self._config.zendesk
        credentials = ZendeskCredentials(
            subdomain=self.env_settings.zendesk_subdomain or zendesk.subdomain,
            email=self.env_settings.zendesk_email or zendesk.email,
            api_token=self.env_settings.zendesk_api_token or zendesk.api_token,
            base_url=zendesk.base_url,
        )
        if credentials.subdomain is None and credentials.email is None and credentials.api_token is None:
            return None
        return credentials

    def get_selected_agents(self) -> Set[int]:
        """Return the ids of agents selected for monitoring."""
        zendesk = self._config.zendesk
        selected = {agent_id for agent_id, entry in zendesk.agents.items() if entry.is_selected}
        if selected:
            return selected
        return {agent_id for agent_id, is_selected in zendesk.selected_agents.items() if is_selected}

    def get_agent_display_name(self, agent_id: int) -> Optional[str]:
        """Return the configured display name for an agent, if any."""
        entry = self._config.zendesk.agents.get(agent_id)
        if entry is None or not entry.name:
            return None
        return entry.name

    def update_agents(self, records: Iterable[AgentRecord]) -> int:
        """
        Merge a fetched roster into the pending configuration document.

        The raw YAML document is updated so template placeholders such as
        {ZENDESK_API_TOKEN} are not replaced by their values on disk. Nothing
        is written until save() is called.

        Returns:
            Number of agents in the pending configuration.
        """
        if self.config_path is None:
            raise ConfigurationError("Cannot update agents: store has no configuration file")

        if self._pending_raw is None:
            self._pending_raw = read_raw_config(self.config_path) if self.config_path.exists() else {}
        self._pending_raw = merge_agent_roster(self._pending_raw, records)
        return len(self._pending_raw["zendesk"]["agents"])

    def save(self) -> None:
        """Write pending changes to the configuration file and reload it."""
        if self._pending_raw is None or self.config_path is None:
            return

        write_raw_config(self._pending_raw, self.config_path)
        self._pending_raw = None
        self._last_modified = None
        self.reload_if_changed()

    def save_agent_roster(self, records: Iterable[AgentRecord]) -> int:
        """Merge a fetched roster into the configuration file and save it."""
        count = self.update_agents(records)
        self.save()
        return count
