from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a trailing 'Z'."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    message: str
    timestamp: str


class PublishRequest(BaseModel):
    message: str | None = None
    type: str | None = None


class PublishResponse(BaseModel):
    success: bool = True
    message: str = "Event sent successfully"
    client_count: int = Field(serialization_alias="clientCount")
    data: Event


class ClientCountResponse(BaseModel):
    client_count: int = Field(serialization_alias="clientCount")
