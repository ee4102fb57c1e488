"""Configuration schema using Pydantic.

The host configuration file is shared with the agent runtime; only the
sections this adapter reads are modelled here, everything else is ignored.
"""

from pathlib import Path

from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings


DEFAULT_WS_URL = "ws://192.168.1.39:8000/ws/openclaw"


class MspBotsAccountConfig(BaseModel):
    """One MSPBots account under channels.mspbots.accounts."""
    name: str | None = None
    rooturl: str = ""  # e.g. "https://bots.example.com" or "10.0.0.5:8000"
    accesstoken: str = ""
    token: str = ""  # Legacy field, used when accesstoken is blank
    agentid: str = ""
    appid: str = ""
    enabled: bool | None = None  # None: enabled when an access token is present


class MspBotsChannelConfig(BaseModel):
    """channels.mspbots section."""
    accounts: dict[str, MspBotsAccountConfig] = Field(default_factory=dict)


class ChannelsConfig(BaseModel):
    """Configuration for chat channels."""
    mspbots: MspBotsChannelConfig = Field(default_factory=MspBotsChannelConfig)


class MonitorConfig(BaseModel):
    """Inbound websocket connection settings."""
    ws_path: str = "/ws/openclaw"
    heartbeat_interval_seconds: float = 30.0
    reconnect_delay_seconds: float = 5.0


class ConfigSyncConfig(BaseModel):
    """Startup configuration sync with the distribution platform."""
    enabled: bool = True
    api_url: str = ""  # Identity is appended URL-encoded, e.g. "https://dist/api/configs?identity="
    local_config_path: str = ""  # Empty: the host config file
    poll_interval_ms: int = 3000
    max_retries: int | None = None  # None: unbounded
    restart_after_sync: bool = True
    restart_command: str = "openclaw gateway restart"
    startup_timeout_seconds: float = 60.0
    request_timeout_seconds: float = 20.0


class Config(BaseSettings):
    """Root configuration for mspbots."""
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    config_sync: ConfigSyncConfig = Field(default_factory=ConfigSyncConfig)

    def account_ids(self) -> list[str]:
        """Configured account ids; a lone "default" when none are configured."""
        ids = list(self.channels.mspbots.accounts)
        return ids or ["default"]

    def sync_target_path(self, fallback: Path) -> Path:
        """Resolve the file the config sync replaces."""
        raw = self.config_sync.local_config_path.strip()
        return Path(raw).expanduser() if raw else fallback

    model_config = ConfigDict(
        env_prefix="MSPBOTS_",
        env_nested_delimiter="__",
        extra="ignore",
    )
