"""reqpost variables - {{name}} placeholder resolution and built-in values."""

import datetime
import random
import re
import uuid
from typing import Protocol

from reqpost.models import ApiRequest, KeyValuePair

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")

_AUTH_STRING_FIELDS = ("username", "password", "token", "accessToken")


# ── Built-in (global) variables ─────────────────────────────────────────


def builtin_variables(now: datetime.datetime | None = None) -> dict[str, str]:
    """Return the ``$``-prefixed built-ins, recomputed on every call.

    Calendar fields use local time; ``$isoTimestamp`` is UTC.
    """
    now = now or datetime.datetime.now().astimezone()
    utc = now.astimezone(datetime.timezone.utc)
    millis = now.microsecond // 1000
    return {
        "$timestamp": str(int(now.timestamp())),
        "$isoTimestamp": utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z",
        "$year": str(now.year),
        "$month": f"{now.month:02d}",
        "$day": f"{now.day:02d}",
        "$hour": f"{now.hour:02d}",
        "$minute": f"{now.minute:02d}",
        "$second": f"{now.second:02d}",
        "$millisecond": str(millis),
        "$guid": str(uuid.uuid4()),
        "$randomUUID": str(uuid.uuid4()),
        "$randomInt": str(random.randint(0, 9999)),
    }


class VariableSource(Protocol):
    """Read side of the environment/global store."""

    def get_active_environment_variables(self) -> dict[str, str]: ...

    def get_global_builtins(self) -> dict[str, str]: ...


class StaticVariables:
    """In-memory VariableSource over a fixed environment mapping."""

    def __init__(self, environment: dict[str, str] | None = None):
        self.environment = dict(environment or {})

    def get_active_environment_variables(self) -> dict[str, str]:
        return dict(self.environment)

    def get_global_builtins(self) -> dict[str, str]:
        return builtin_variables()


# ── Placeholder helpers ─────────────────────────────────────────────────


def contains_variables(text: str | None) -> bool:
    """True if text holds at least one {{...}} placeholder."""
    if not text:
        return False
    return PLACEHOLDER_RE.search(text) is not None


def extract_variable_names(text: str | None) -> list[str]:
    """Placeholder names in first-occurrence order, without duplicates."""
    if not text:
        return []
    names: list[str] = []
    for m in PLACEHOLDER_RE.finditer(text):
        name = m.group(1).strip()
        if name not in names:
            names.append(name)
    return names


def substitute(text: str | None, variables: dict[str, str]) -> str | None:
    """Single-pass replacement of {{name}} from a flat mapping.

    Unknown names are left as-is. Replacement values are never rescanned.
    """
    if not text:
        return text

    def _replace(m: re.Match) -> str:
        key = m.group(1).strip()
        if key in variables and variables[key] is not None:
            return str(variables[key])
        return m.group(0)

    return PLACEHOLDER_RE.sub(_replace, text)


# ── Resolver ─────────────────────────────────────────────────────────────


class VariableResolver:
    """Resolve placeholders against local > environment > built-in scopes.

    The source is read on every call, so environment edits and time-based
    built-ins are always current.
    """

    def __init__(self, source: VariableSource | None = None):
        self.source = source or StaticVariables()

    def variables(self, local_overrides: dict[str, str] | None = None) -> dict[str, str]:
        merged = dict(self.source.get_global_builtins())
        merged.update(self.source.get_active_environment_variables())
        if local_overrides:
            merged.update(local_overrides)
        return merged

    def resolve(self, text: str | None, local_overrides: dict[str, str] | None = None) -> str | None:
        if not text or not contains_variables(text):
            return text
        return substitute(text, self.variables(local_overrides))

    def contains_variables(self, text: str | None) -> bool:
        return contains_variables(text)

    def extract_variable_names(self, text: str | None) -> list[str]:
        return extract_variable_names(text)

    def resolve_request(
        self,
        request: ApiRequest,
        local_overrides: dict[str, str] | None = None,
    ) -> ApiRequest:
        """Return a resolved copy of request. The input is left untouched."""

        def _pairs(pairs: list[KeyValuePair]) -> list[KeyValuePair]:
            return [
                p.model_copy(
                    update={
                        "key": self.resolve(p.key, local_overrides),
                        "value": self.resolve(p.value, local_overrides),
                    },
                )
                for p in pairs
            ]

        update = {
            "url": self.resolve(request.url, local_overrides),
            "headers": _pairs(request.headers),
            "params": _pairs(request.params),
            "body": self.resolve(request.body or "", local_overrides),
        }
        if request.auth is not None:
            data = dict(request.auth.data)
            for field in _AUTH_STRING_FIELDS:
                if isinstance(data.get(field), str):
                    data[field] = self.resolve(data[field], local_overrides)
            update["auth"] = request.auth.model_copy(update={"data": data})

        return request.model_copy(deep=True, update=update)
