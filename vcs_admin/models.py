from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_pascal

NotificationLevel = Literal["info", "success", "warning", "error"]


class WireModel(BaseModel):
    """Base for snapshots that use the remote server's PascalCase field names."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)


# --- Status Models ---


class ServiceStatus(WireModel):
    is_running: bool
    error: str = ""


class ServerStatus(BaseModel):
    """Per-service run state.

    Accepts both the ``/status`` shape (``http``/``voice``/``control``) and the
    AdminState shape pushed on admin/changed (``HTTPStatus``/``VoiceStatus``/...).
    """

    http: ServiceStatus = Field(..., validation_alias=AliasChoices("http", "HTTPStatus"))
    voice: ServiceStatus = Field(..., validation_alias=AliasChoices("voice", "VoiceStatus"))
    control: ServiceStatus = Field(..., validation_alias=AliasChoices("control", "ControlStatus"))

    @property
    def is_running(self) -> bool:
        return self.http.is_running or self.voice.is_running or self.control.is_running

    @property
    def errors(self) -> dict[str, str]:
        return {
            name: service.error
            for name, service in (("http", self.http), ("voice", self.voice), ("control", self.control))
            if service.error
        }


# --- Settings Models ---


class ServerSetting(WireModel):
    host: str = ""
    port: int = Field(..., ge=1, le=65535)


class ServerSettings(WireModel):
    http: ServerSetting = Field(..., alias="HTTP")
    voice: ServerSetting
    control: ServerSetting


class GeneralSettings(WireModel):
    max_radios_per_user: int = Field(default=1, ge=1)


class FrequencySettings(WireModel):
    global_frequencies: list[float] = Field(default_factory=list)
    test_frequencies: list[float] = Field(default_factory=list)


class SettingsState(WireModel):
    general: GeneralSettings = Field(default_factory=GeneralSettings)
    servers: ServerSettings
    frequencies: FrequencySettings = Field(default_factory=FrequencySettings)


# --- Client Models ---


class ClientState(WireModel):
    name: str
    unit_id: int | str | None = None
    coalition: str = ""
    muted: bool = False


class BannedClient(BaseModel):
    id: str
    name: str = ""
    ip_address: str = ""
    reason: str = ""


class Coalition(WireModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# --- Notification Models ---


class Notification(BaseModel):
    id: str = Field(..., min_length=1)
    title: str = ""
    message: str = ""
    level: NotificationLevel = "info"

    @model_validator(mode="before")
    @classmethod
    def normalize_field_names(cls, data):
        # Older server builds send Title/Message/Type.
        if not isinstance(data, dict):
            return data
        normalized = {str(key).lower(): value for key, value in data.items()}
        if "level" not in normalized and "type" in normalized:
            normalized["level"] = normalized.pop("type")
        if isinstance(normalized.get("level"), str):
            normalized["level"] = normalized["level"].lower()
        return normalized


# --- Command Models ---


class ReasonRequest(BaseModel):
    reason: str = Field(default="", max_length=500)


class FrequencyRequest(BaseModel):
    frequency_type: Literal["global", "test"] = "global"
    frequency: float


class PushEvent(BaseModel):
    topic: str = Field(..., min_length=1)
    data: Any = None


# --- Domain Snapshots ---

Roster = dict[str, ClientState]
Coalitions = list[Coalition]
Bans = list[BannedClient]

DOMAIN_ADAPTERS: dict[str, TypeAdapter] = {
    "status": TypeAdapter(ServerStatus),
    "settings": TypeAdapter(SettingsState),
    "roster": TypeAdapter(Roster),
    "coalitions": TypeAdapter(Coalitions),
    "bans": TypeAdapter(Bans),
}


def dump_snapshot(value) -> object:
    """JSON-ready form of a domain snapshot using wire field names."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {key: dump_snapshot(item) for key, item in value.items()}
    if isinstance(value, list):
        return [dump_snapshot(item) for item in value]
    return value
