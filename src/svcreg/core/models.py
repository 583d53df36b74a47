from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Instance(BaseModel):
    """
    One registered process endpoint.

    ``last_seen`` is a wall-clock timestamp in epoch milliseconds and is
    serialized as ``lastSeen`` on the wire.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    host: str
    port: int
    pid: Optional[int] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    last_seen: int = Field(alias="lastSeen")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class DaemonRecord(BaseModel):
    """Rendezvous record naming the active daemon's address and process id."""
    model_config = ConfigDict(populate_by_name=True)

    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    pid: int = Field(gt=0)
    started_at: str = Field(alias="startedAt")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
