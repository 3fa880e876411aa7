"""Pydantic models for graph connections, config documents and API payloads."""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator, model_validator

# Bumped when the on-disk layout changes in a way older builds cannot read
CONFIG_VERSION = 1

# Local API version this client speaks (major.minor must match the server)
EXPECTED_API_VERSION = "1.0.0"

TOKEN_PREFIX = "roam-graph-local-token-"
GRAPH_NAME_PATTERN = r"^[A-Za-z0-9_-]+$"

GraphType = Literal["hosted", "offline"]
AccessLevel = Literal["read-only", "read-append", "full"]
TokenStatus = Literal["active", "revoked"]


class GraphConnection(BaseModel):
    """A configured graph connection as stored in ``~/.roam-tools.json``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(pattern=GRAPH_NAME_PATTERN)
    type: GraphType = "hosted"
    token: str = Field(repr=False)
    nickname: str = Field(min_length=1)
    access_level: Optional[AccessLevel] = Field(default=None, alias="accessLevel")
    last_known_token_status: Optional[TokenStatus] = Field(
        default=None, alias="lastKnownTokenStatus"
    )

    @field_validator("token")
    @classmethod
    def _check_token_prefix(cls, value: str) -> str:
        if not value.startswith(TOKEN_PREFIX):
            raise ValueError(f"token must start with '{TOKEN_PREFIX}'")
        return value

    @property
    def identity(self) -> tuple:
        return (self.name, self.type)

    def to_config_dict(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, dropping unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def summary(self) -> Dict[str, Any]:
        """Token-free description used in listings and disambiguation errors."""
        return {
            "nickname": self.nickname,
            "name": self.name,
            "type": self.type,
            "accessLevel": self.access_level,
            "lastKnownTokenStatus": self.last_known_token_status,
        }


class RoamToolsConfig(BaseModel):
    """The whole config document."""

    model_config = ConfigDict(extra="ignore")

    version: StrictInt = CONFIG_VERSION
    graphs: List[GraphConnection] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_nicknames(self) -> "RoamToolsConfig":
        seen: Dict[str, GraphConnection] = {}
        for graph in self.graphs:
            key = graph.nickname.lower()
            if key in seen:
                raise ValueError(
                    f"Duplicate nickname '{graph.nickname}' "
                    f"(graphs '{seen[key].name}' and '{graph.name}'). "
                    "Nicknames must be unique (case-insensitive)."
                )
            seen[key] = graph
        return self


class ResolvedGraph(BaseModel):
    """A graph reference resolved for exactly one call. Never persisted."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: GraphType
    token: str = Field(repr=False)
    nickname: str
    access_level: Optional[AccessLevel] = None
    last_known_token_status: Optional[TokenStatus] = None

    @classmethod
    def from_connection(cls, connection: GraphConnection) -> "ResolvedGraph":
        return cls(
            name=connection.name,
            type=connection.type,
            token=connection.token,
            nickname=connection.nickname,
            access_level=connection.access_level,
            last_known_token_status=connection.last_known_token_status,
        )


class ApiErrorPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str = "Unknown error"
    code: Optional[str] = None


class RoamResponse(BaseModel):
    """Envelope returned by every Local API action."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    success: bool = False
    result: Any = None
    error: Union[ApiErrorPayload, str, None] = None
    api_version: Optional[str] = Field(default=None, alias="apiVersion")

    @property
    def error_code(self) -> Optional[str]:
        if isinstance(self.error, ApiErrorPayload):
            return self.error.code
        return None

    @property
    def error_message(self) -> str:
        if self.error is None:
            return "Unknown error"
        if isinstance(self.error, str):
            return self.error
        return self.error.message


class TokenInfoResult(BaseModel):
    """Outcome of the best-effort token probe."""

    status: Literal["active", "revoked", "unknown"]
    access_level: Optional[AccessLevel] = None
    info: Optional[Dict[str, Any]] = None


class AvailableGraph(BaseModel):
    """A graph Roam Desktop reports as available to the signed-in user."""

    model_config = ConfigDict(extra="ignore")

    name: str
    type: GraphType = "hosted"
