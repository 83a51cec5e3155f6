"""Wire messages exchanged over the tunnel channel."""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

WireHeaders = dict[str, str | list[str]]


class WireMessage(BaseModel):
    """Base for every message carried on the channel."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InitMessage(WireMessage):
    """Handshake sent by the client once the channel opens."""

    type: Literal["init"] = "init"
    local_port: Annotated[int, Field(alias="localPort", description="Port being exposed")] = 3000


class ReadyMessage(WireMessage):
    """Handshake reply carrying the allocated identifier."""

    type: Literal["ready"] = "ready"
    url: Annotated[str, Field(description="Public URL of the tunnel")]
    identifier: Annotated[str, Field(description="Public routing identifier")]

    @model_validator(mode="before")
    @classmethod
    def _accept_subdomain(cls, data: Any) -> Any:
        if isinstance(data, dict) and "identifier" not in data and "subdomain" in data:
            data = {**data, "identifier": data["subdomain"]}
        return data

    @computed_field
    @property
    def subdomain(self) -> str:
        return self.identifier


class RequestMessage(WireMessage):
    """A public HTTP request forwarded to the tunnel client."""

    type: Literal["request"] = "request"
    id: Annotated[str, Field(description="Correlation id")]
    method: Annotated[str, Field(description="HTTP method")]
    path: Annotated[str, Field(description="Request path including query string")]
    headers: Annotated[WireHeaders, Field(description="HTTP headers")] = {}
    body: Annotated[str | None, Field(description="Request body")] = None


class ResponseMessage(WireMessage):
    """The local service's answer to a forwarded request."""

    type: Literal["response"] = "response"
    id: Annotated[str, Field(description="Matching correlation id")]
    status: Annotated[int, Field(ge=100, le=599, description="HTTP status code")]
    headers: Annotated[WireHeaders, Field(description="Response headers")] = {}
    body: Annotated[str | None, Field(description="Response body")] = None


class PingMessage(WireMessage):
    type: Literal["ping"] = "ping"


class PongMessage(WireMessage):
    type: Literal["pong"] = "pong"


ProtocolMessage = Annotated[
    Union[InitMessage, ReadyMessage, RequestMessage, ResponseMessage, PingMessage, PongMessage],
    Field(discriminator="type"),
]


class ProxiedRequest(BaseModel):
    """A decoded public request before a correlation id is attached."""

    method: str
    path: str
    headers: WireHeaders = {}
    body: str | None = None


class TunnelInfo(BaseModel):
    """Public description of a registered tunnel."""

    identifier: str
    url: str
    local_port: int
    created_at: datetime
    request_count: int


class HealthResponse(BaseModel):
    """Body of the relay's health endpoint."""

    status: str = "ok"
    active_tunnels: int
    pending_requests: int
    tunnels: list[TunnelInfo] = []


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
