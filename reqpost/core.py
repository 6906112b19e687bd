"""reqpost core - config loading, auth, request building."""

import base64
import hashlib
import json
import os
import re
import secrets
import string
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import yaml
from dotenv import dotenv_values

from reqpost.models import (
    ApiRequest,
    AuthConfig,
    AuthType,
    BasicAuthData,
    BearerAuthData,
    BodyType,
    HttpMethod,
    KeyValuePair,
    OAuth2Data,
)
from reqpost.variables import VariableResolver

GLOBAL_DIR = Path.home() / ".reqpost"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"
GLOBAL_STORE = GLOBAL_DIR / "data.json"

CWD_CONFIG_CANDIDATES = [
    ".reqpost.yaml",
    ".reqpost.yml",
    "reqpost.yaml",
    "reqpost.yml",
]

DEFAULT_TIMEOUT = 30
DEFAULT_REDIRECT_URI = "http://localhost:3000/callback"

FORM_URLENCODED = "application/x-www-form-urlencoded"


# ── Config ───────────────────────────────────────────────────────────────


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (hard, no fallthrough if missing)
      2. .reqpost.yaml (variants) in CWD
      3. ~/.reqpost/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty defaults if not found.

    Stores '_config_dir' in the returned dict so relative paths (the store
    file, the env file) resolve against the config file's directory.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str | Path | None = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ (.env values win)."""
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir or ".") / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value: Any, env: dict[str, str]) -> Any:
    """Resolve $VAR and ${VAR} references in a config string value."""
    if value is None or not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, os.environ.get(var_name, m.group(0)))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


def resolve_store_path(config: dict, cli_override: str | None, env: dict[str, str]) -> Path:
    """Pick the data file: --store flag, config `store`, then ~/.reqpost/data.json."""
    if cli_override:
        return Path(cli_override)
    configured = resolve_value(config.get("defaults", {}).get("store"), env)
    if configured:
        p = Path(configured).expanduser()
        config_dir = config.get("_config_dir")
        if not p.is_absolute() and config_dir:
            p = Path(config_dir) / p
        return p
    return GLOBAL_STORE


# ── Auth ─────────────────────────────────────────────────────────────────


def apply_auth(auth: AuthConfig | None, headers: dict[str, str]) -> dict[str, str]:
    """Return a copy of headers with the Authorization header for auth.

    Only basic and bearer are applied, and only while ``addHeaders`` is not
    false. OAuth2 and AWS Sig v4 tokens must be wired in by the user
    (as bearer auth or an explicit header).
    """
    new_headers = dict(headers)
    if auth is None:
        return new_headers

    data = auth.typed_data()
    if data is None or not data.add_headers:
        return new_headers

    if isinstance(data, BasicAuthData):
        if data.username:
            credentials = base64.b64encode(f"{data.username}:{data.password or ''}".encode()).decode()
            new_headers["Authorization"] = f"Basic {credentials}"

    elif isinstance(data, BearerAuthData):
        if data.token:
            new_headers["Authorization"] = f"Bearer {data.token}"

    return new_headers


def generate_pkce_pair(length: int = 128) -> tuple[str, str]:
    """Return (code_verifier, S256 code_challenge) for an OAuth2 PKCE flow."""
    alphabet = string.ascii_letters + string.digits
    verifier = "".join(secrets.choice(alphabet) for _ in range(length))
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def build_authorization_url(data: dict) -> str:
    """Build the OAuth2 authorization-code URL from oauth2 auth data.

    When ``usePkce`` is set, a fresh verifier is generated and stored back
    into ``data['codeVerifier']`` for the later token exchange.
    """
    oauth = OAuth2Data.model_validate(data)
    if not oauth.auth_url:
        return ""

    params = {
        "client_id": oauth.client_id or "",
        "redirect_uri": oauth.redirect_uri or DEFAULT_REDIRECT_URI,
        "response_type": "code",
        "scope": oauth.scope or "",
    }
    if oauth.state:
        params["state"] = oauth.state
    if oauth.use_pkce:
        verifier, challenge = generate_pkce_pair()
        data["codeVerifier"] = verifier
        params["code_challenge"] = challenge
        params["code_challenge_method"] = "S256"

    separator = "&" if "?" in oauth.auth_url else "?"
    return f"{oauth.auth_url}{separator}{urlencode(params)}"


# ── Request building ─────────────────────────────────────────────────────


def _enabled(pairs: list[KeyValuePair]) -> list[KeyValuePair]:
    return [p for p in pairs if p.enabled and p.key]


def build_url(base_url: str, params: list[KeyValuePair]) -> str:
    """Append enabled params to base_url as query pairs, in order.

    With no enabled params the URL is returned unchanged. URLs without an
    http(s) scheme get ``https://`` first.
    """
    enabled = _enabled(params)
    if not enabled:
        return base_url

    url = base_url if base_url.startswith("http") else f"https://{base_url}"
    try:
        parts = urlsplit(url)
    except ValueError:
        return base_url

    extra = urlencode([(p.key, p.value) for p in enabled])
    query = f"{parts.query}&{extra}" if parts.query else extra
    path = parts.path or "/"
    return urlunsplit((parts.scheme, parts.netloc, path, query, parts.fragment))


def build_headers(headers: list[KeyValuePair]) -> dict[str, str]:
    """Enabled headers as a dict; a later duplicate key wins."""
    result: dict[str, str] = {}
    for h in _enabled(headers):
        result[h.key] = h.value
    return result


def _drop_header(headers: dict[str, str], name: str) -> None:
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]


def build_form_fields(body: str) -> dict[str, str]:
    """Parse a form-data body: a JSON object first, else key=value&... pairs."""
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        parsed = None

    if isinstance(parsed, dict):
        fields: dict[str, str] = {}
        for key, value in parsed.items():
            if isinstance(value, str):
                fields[key] = value
            elif isinstance(value, dict | list | bool) or value is None:
                fields[key] = json.dumps(value)
            else:
                fields[key] = str(value)
        return fields

    return dict(parse_qsl(body, keep_blank_values=True))


def encode_body(body: str, body_type: str, headers: dict[str, str]) -> dict[str, Any]:
    """Encode the resolved body for the transport.

    Returns the transport keys to merge (``data`` or ``files``) and may
    adjust headers in place. Malformed JSON never raises: the raw string is
    sent instead.
    """
    if not body or body_type == BodyType.NONE:
        return {}

    if body_type == BodyType.JSON:
        try:
            return {"data": json.loads(body)}
        except (json.JSONDecodeError, ValueError):
            return {"data": body}

    if body_type == BodyType.FORM_DATA:
        # requests writes the multipart Content-Type with its boundary
        _drop_header(headers, "Content-Type")
        return {"files": build_form_fields(body)}

    if body_type == BodyType.URLENCODED:
        _drop_header(headers, "Content-Type")
        headers["Content-Type"] = FORM_URLENCODED
        return {"data": urlencode(parse_qsl(body, keep_blank_values=True))}

    return {"data": body}


def build_request(
    request: ApiRequest,
    resolver: VariableResolver | None = None,
    local_overrides: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> dict:
    """Build a transport-ready request dict from an ApiRequest.

    Returns: {
        "method": ..., "url": ..., "headers": {...}, "timeout": ...,
        "body_type": ..., "data"?: ..., "files"?: {...},
    }
    """
    resolver = resolver or VariableResolver()
    resolved = resolver.resolve_request(request, local_overrides)

    url = build_url(resolved.url, resolved.params)
    headers = build_headers(resolved.headers)

    if resolved.auth is not None and resolved.auth.type != AuthType.NONE:
        headers = apply_auth(resolved.auth, headers)

    body_type = BodyType(resolved.body_type).value
    transport = {
        "method": HttpMethod(resolved.method).value,
        "url": url,
        "headers": headers,
        "timeout": timeout,
        "body_type": body_type,
    }
    transport.update(encode_body(resolved.body, body_type, headers))
    return transport
