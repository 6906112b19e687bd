"""reqpost models - requests, responses, environments and collections."""

import random
import string
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_ID_ALPHABET = string.digits + string.ascii_lowercase


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """Return an id like ``resp_1718000000000_k3j9x0a1b``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{now_ms()}_{suffix}"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class BodyType(str, Enum):
    NONE = "none"
    JSON = "json"
    FORM_DATA = "form-data"
    URLENCODED = "x-www-form-urlencoded"
    RAW = "raw"


class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    OAUTH2 = "oauth2"
    AWS_SIG4 = "aws-sig4"


class ApiModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class KeyValuePair(ApiModel):
    id: str = Field(default_factory=lambda: generate_id("kv"))
    key: str = ""
    value: str = ""
    enabled: bool = True
    description: str | None = None


# ── Auth ─────────────────────────────────────────────────────────────────


class AuthData(ApiModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    add_headers: bool = True


class BasicAuthData(AuthData):
    username: str | None = None
    password: str | None = None


class BearerAuthData(AuthData):
    token: str | None = None


class OAuth2Data(AuthData):
    grant_type: str = "authorization_code"
    auth_url: str | None = None
    access_token_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str | None = None
    scope: str | None = None
    state: str | None = None
    use_pkce: bool = False
    code_verifier: str | None = None
    authorization_code: str | None = None
    username: str | None = None
    password: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: int | None = None


class AwsSig4Data(AuthData):
    access_key: str | None = None
    secret_key: str | None = None
    region: str | None = None
    service: str | None = None
    session_token: str | None = None


_AUTH_VARIANTS: dict[str, type[AuthData]] = {
    AuthType.BASIC.value: BasicAuthData,
    AuthType.BEARER.value: BearerAuthData,
    AuthType.OAUTH2.value: OAuth2Data,
    AuthType.AWS_SIG4.value: AwsSig4Data,
}


class AuthConfig(ApiModel):
    """Auth settings: a ``type`` tag plus a loosely typed ``data`` mapping."""

    type: AuthType = AuthType.NONE
    data: dict[str, Any] = Field(default_factory=dict)

    def typed_data(self) -> AuthData | None:
        """Return ``data`` parsed into the variant selected by ``type``."""
        variant = _AUTH_VARIANTS.get(AuthType(self.type).value)
        if variant is None:
            return None
        return variant.model_validate(self.data)


# ── Requests / responses ─────────────────────────────────────────────────


class ApiRequest(ApiModel):
    id: str = Field(default_factory=lambda: generate_id("req"))
    name: str = "Untitled Request"
    method: HttpMethod = HttpMethod.GET
    url: str = ""
    headers: list[KeyValuePair] = Field(default_factory=list)
    params: list[KeyValuePair] = Field(default_factory=list)
    body: str = ""
    body_type: BodyType = BodyType.NONE
    auth: AuthConfig | None = None
    pre_request_script: str | None = None
    test_script: str | None = None
    collection_id: str | None = None
    folder_id: str | None = None
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class TestResult(ApiModel):
    __test__ = False  # not a pytest class

    name: str
    status: str  # "passed" | "failed"
    message: str = ""
    expected: str | None = None
    actual: str | None = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"


class ApiResponse(ApiModel):
    id: str = Field(default_factory=lambda: generate_id("resp"))
    request_id: str = ""
    status: int = 0
    status_text: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None
    size: int = 0
    time: int = 0
    content_type: str = "application/json"
    created_at: int = Field(default_factory=now_ms)
    test_results: list[TestResult] | None = None


class ScriptResult(ApiModel):
    success: bool
    data: Any = None
    error: str | None = None
    logs: list[str] = Field(default_factory=list)


# ── Environments / collections ───────────────────────────────────────────


class Environment(ApiModel):
    id: str = Field(default_factory=lambda: generate_id("env"))
    name: str
    values: list[KeyValuePair] = Field(default_factory=list)
    is_active: bool = False
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def variables(self) -> dict[str, str]:
        """Enabled values with a non-empty key, as a mapping."""
        return {v.key: v.value for v in self.values if v.enabled and v.key}


class Folder(ApiModel):
    id: str = Field(default_factory=lambda: generate_id("folder"))
    name: str
    description: str | None = None
    requests: list[ApiRequest] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class Collection(ApiModel):
    id: str = Field(default_factory=lambda: generate_id("collection"))
    name: str
    description: str | None = None
    owner: str | None = None
    is_public: bool | None = None
    folders: list[Folder] = Field(default_factory=list)
    requests: list[ApiRequest] = Field(default_factory=list)
    auth: AuthConfig | None = None
    variables: list[KeyValuePair] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class HistoryItem(ApiModel):
    id: str = Field(default_factory=lambda: generate_id("history"))
    request: ApiRequest
    response: ApiResponse | None = None
    created_at: int = Field(default_factory=now_ms)


class AppSettings(ApiModel):
    theme: str = "light"
    request_timeout: int = 30000  # ms
    follow_redirects: bool = True
    encode_url: bool = True
    show_network_log: bool = False


class StorageData(ApiModel):
    collections: list[Collection] = Field(default_factory=list)
    environments: list[Environment] = Field(default_factory=list)
    history: list[HistoryItem] = Field(default_factory=list)
    active_environment_id: str | None = None
    settings: AppSettings = Field(default_factory=AppSettings)
