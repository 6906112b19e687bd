"""reqpost storage - JSON data file for collections, environments and history.

The core never writes here on its own; the CLI decides what to persist.
"""

import json
import logging
from pathlib import Path

from reqpost.models import (
    ApiRequest,
    ApiResponse,
    AppSettings,
    Collection,
    Environment,
    Folder,
    HistoryItem,
    KeyValuePair,
    StorageData,
    generate_id,
    now_ms,
)
from reqpost.variables import builtin_variables

logger = logging.getLogger(__name__)

MAX_HISTORY = 100


def _fresh_pairs(pairs: list[KeyValuePair]) -> list[KeyValuePair]:
    return [p.model_copy(update={"id": generate_id("kv")}) for p in pairs]


def _fresh_request(
    request: ApiRequest,
    collection_id: str,
    folder_id: str | None,
    stamp: int,
) -> ApiRequest:
    return request.model_copy(
        update={
            "id": generate_id("req"),
            "headers": _fresh_pairs(request.headers),
            "params": _fresh_pairs(request.params),
            "collection_id": collection_id,
            "folder_id": folder_id,
            "created_at": stamp,
            "updated_at": stamp,
        },
    )


class Store:
    """Collections, environments, history and settings in one JSON file.

    Every call reads the file again, so several processes and the resolver
    always see the latest state.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    # ── raw data ─────────────────────────────────────────────────────────

    def load(self) -> StorageData:
        if not self.path.exists():
            return StorageData()
        try:
            return StorageData.model_validate(json.loads(self.path.read_text()))
        except (OSError, ValueError) as e:
            logger.error("Failed to read store %s: %s", self.path, e)
            return StorageData()

    def save(self, data: StorageData) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data.to_dict(), indent=2, ensure_ascii=False))

    def get_settings(self) -> AppSettings:
        return self.load().settings

    # ── collections ──────────────────────────────────────────────────────

    def get_collections(self) -> list[Collection]:
        return self.load().collections

    def add_collection(self, collection: Collection) -> Collection:
        data = self.load()
        data.collections.append(collection)
        self.save(data)
        return collection

    def update_collection(self, collection_id: str, **updates) -> Collection | None:
        data = self.load()
        for i, c in enumerate(data.collections):
            if c.id == collection_id:
                data.collections[i] = c.model_copy(update={**updates, "updated_at": now_ms()})
                self.save(data)
                return data.collections[i]
        return None

    def delete_collection(self, collection_id: str) -> None:
        data = self.load()
        data.collections = [c for c in data.collections if c.id != collection_id]
        self.save(data)

    def find_collection(self, name_or_id: str) -> Collection | None:
        for c in self.get_collections():
            if c.id == name_or_id or c.name == name_or_id:
                return c
        return None

    def add_folder(self, collection_id: str, folder: Folder) -> bool:
        data = self.load()
        for c in data.collections:
            if c.id == collection_id:
                c.folders.append(folder)
                c.updated_at = now_ms()
                self.save(data)
                return True
        return False

    def update_folder(self, collection_id: str, folder_id: str, **updates) -> bool:
        data = self.load()
        for c in data.collections:
            if c.id != collection_id:
                continue
            for i, f in enumerate(c.folders):
                if f.id == folder_id:
                    c.folders[i] = f.model_copy(update={**updates, "updated_at": now_ms()})
                    c.updated_at = now_ms()
                    self.save(data)
                    return True
        return False

    def delete_folder(self, collection_id: str, folder_id: str) -> None:
        data = self.load()
        for c in data.collections:
            if c.id == collection_id:
                c.folders = [f for f in c.folders if f.id != folder_id]
                c.updated_at = now_ms()
        self.save(data)

    def save_request_to_collection(self, request: ApiRequest, container_id: str) -> bool:
        """Insert or replace request in the collection or folder with container_id."""
        data = self.load()
        for c in data.collections:
            containers: list[Collection | Folder] = [c, *c.folders]
            for container in containers:
                if container.id != container_id:
                    continue
                saved = request.model_copy(
                    update={
                        "collection_id": c.id,
                        "folder_id": None if container is c else container.id,
                        "updated_at": now_ms(),
                    },
                )
                for i, r in enumerate(container.requests):
                    if r.id == request.id:
                        container.requests[i] = saved
                        break
                else:
                    container.requests.append(saved)
                self.save(data)
                return True
        return False

    def delete_request_from_collection(self, request_id: str, container_id: str) -> None:
        data = self.load()
        for c in data.collections:
            for container in (c, *c.folders):
                if container.id == container_id:
                    container.requests = [r for r in container.requests if r.id != request_id]
        self.save(data)

    def get_all_requests(self) -> list[ApiRequest]:
        requests: list[ApiRequest] = []
        for c in self.get_collections():
            requests.extend(c.requests)
            for f in c.folders:
                requests.extend(f.requests)
        return requests

    def find_request(self, collection: str, name_or_id: str) -> ApiRequest | None:
        """Find a request by name or id inside a collection (folders included)."""
        c = self.find_collection(collection)
        if c is None:
            return None
        for r in [*c.requests, *(r for f in c.folders for r in f.requests)]:
            if r.id == name_or_id or r.name == name_or_id:
                return r.model_copy(deep=True)
        return None

    # ── environments ─────────────────────────────────────────────────────

    def get_environments(self) -> list[Environment]:
        return self.load().environments

    def add_environment(self, environment: Environment) -> Environment:
        data = self.load()
        data.environments.append(environment)
        if environment.is_active:
            self._activate(data, environment.id)
        self.save(data)
        return environment

    def update_environment(self, environment_id: str, **updates) -> Environment | None:
        data = self.load()
        for i, e in enumerate(data.environments):
            if e.id == environment_id:
                data.environments[i] = e.model_copy(update={**updates, "updated_at": now_ms()})
                self.save(data)
                return data.environments[i]
        return None

    def delete_environment(self, environment_id: str) -> None:
        data = self.load()
        data.environments = [e for e in data.environments if e.id != environment_id]
        if data.active_environment_id == environment_id:
            data.active_environment_id = None
        self.save(data)

    def find_environment(self, name_or_id: str) -> Environment | None:
        for e in self.get_environments():
            if e.id == name_or_id or e.name == name_or_id:
                return e
        return None

    def get_active_environment(self) -> Environment | None:
        data = self.load()
        if not data.active_environment_id:
            return None
        for e in data.environments:
            if e.id == data.active_environment_id:
                return e
        return None

    @staticmethod
    def _activate(data: StorageData, environment_id: str | None) -> None:
        data.active_environment_id = environment_id
        for e in data.environments:
            e.is_active = e.id == environment_id

    def set_active_environment(self, environment_id: str | None) -> None:
        """Make one environment active (or none); all others become inactive."""
        data = self.load()
        self._activate(data, environment_id)
        self.save(data)

    def get_environment_variables(self) -> dict[str, str]:
        environment = self.get_active_environment()
        return environment.variables() if environment else {}

    def set_environment_variables(self, environment_id: str, variables: dict[str, str]) -> None:
        """Write a variables mapping back: update, append, drop removed keys."""
        environment = next((e for e in self.get_environments() if e.id == environment_id), None)
        if environment is None:
            return
        values: list[KeyValuePair] = []
        seen: set[str] = set()
        for pair in environment.values:
            if pair.enabled and pair.key and pair.key not in variables:
                continue
            if pair.key in variables:
                pair = pair.model_copy(update={"value": str(variables[pair.key])})
                seen.add(pair.key)
            values.append(pair)
        for key, value in variables.items():
            if key not in seen:
                values.append(KeyValuePair(key=key, value=str(value)))
        self.update_environment(environment_id, values=values)

    # VariableSource

    def get_active_environment_variables(self) -> dict[str, str]:
        return self.get_environment_variables()

    def get_global_builtins(self) -> dict[str, str]:
        return builtin_variables()

    # ── history ──────────────────────────────────────────────────────────

    def get_history(self) -> list[HistoryItem]:
        return self.load().history

    def add_history_item(self, item: HistoryItem, limit: int = MAX_HISTORY) -> None:
        data = self.load()
        data.history.insert(0, item)
        del data.history[limit:]
        self.save(data)

    def record(self, request: ApiRequest, response: ApiResponse | None, limit: int = MAX_HISTORY) -> HistoryItem:
        item = HistoryItem(request=request, response=response)
        self.add_history_item(item, limit=limit)
        return item

    def clear_history(self) -> None:
        data = self.load()
        data.history = []
        self.save(data)

    def delete_history_item(self, item_id: str) -> None:
        data = self.load()
        data.history = [h for h in data.history if h.id != item_id]
        self.save(data)

    # ── import / export ──────────────────────────────────────────────────

    def export_data(self) -> str:
        return json.dumps(self.load().to_dict(), indent=2, ensure_ascii=False)

    def import_data(self, json_data: str) -> bool:
        """Replace the whole store. Missing arrays/settings get defaults."""
        try:
            raw = json.loads(json_data)
            if not isinstance(raw, dict):
                raise ValueError("data snapshot must be a JSON object")
            for key in ("collections", "environments", "history"):
                if not isinstance(raw.get(key), list):
                    raw[key] = []
            if not raw.get("settings"):
                raw["settings"] = AppSettings().to_dict()
            data = StorageData.model_validate(raw)
        except ValueError as e:
            logger.error("Failed to import data: %s", e)
            return False
        self.save(data)
        return True

    def export_collection(self, name_or_id: str) -> str | None:
        collection = self.find_collection(name_or_id)
        if collection is None:
            return None
        return export_collection(collection)

    def import_collection(self, json_data: str) -> Collection:
        collection = import_collection(json_data)
        self.add_collection(collection)
        logger.info("Imported collection %r as %s", collection.name, collection.id)
        return collection

    def export_environment(self, name_or_id: str) -> str | None:
        environment = self.find_environment(name_or_id)
        if environment is None:
            return None
        return json.dumps(environment.to_dict(), indent=2, ensure_ascii=False)

    def import_environment(self, json_data: str) -> Environment:
        environment = import_environment(json_data)
        self.add_environment(environment)
        logger.info("Imported environment %r as %s", environment.name, environment.id)
        return environment


# ── collection / environment codecs ──────────────────────────────────────


def export_collection(collection: Collection) -> str:
    return json.dumps(collection.to_dict(), indent=2, ensure_ascii=False)


def import_collection(json_data: str) -> Collection:
    """Parse an exported collection and give every item a fresh id.

    Raises ValueError on malformed input.
    """
    raw = json.loads(json_data)
    if not isinstance(raw, dict):
        raise ValueError("collection must be a JSON object")
    for key in ("folders", "requests", "variables"):
        if not isinstance(raw.get(key), list):
            raw[key] = []
    for folder in raw["folders"]:
        if isinstance(folder, dict) and not isinstance(folder.get("requests"), list):
            folder["requests"] = []
    raw.setdefault("name", "Imported Collection")
    parsed = Collection.model_validate(raw)

    stamp = now_ms()
    collection_id = generate_id("collection")
    folders = []
    for f in parsed.folders:
        folder_id = generate_id("folder")
        folders.append(
            f.model_copy(
                update={
                    "id": folder_id,
                    "requests": [_fresh_request(r, collection_id, folder_id, stamp) for r in f.requests],
                    "created_at": stamp,
                    "updated_at": stamp,
                },
            ),
        )
    return parsed.model_copy(
        update={
            "id": collection_id,
            "folders": folders,
            "requests": [_fresh_request(r, collection_id, None, stamp) for r in parsed.requests],
            "variables": _fresh_pairs(parsed.variables),
            "created_at": stamp,
            "updated_at": stamp,
        },
    )


def import_environment(json_data: str) -> Environment:
    """Parse an exported environment as a new, inactive copy."""
    raw = json.loads(json_data)
    if not isinstance(raw, dict):
        raise ValueError("environment must be a JSON object")
    if not isinstance(raw.get("values"), list):
        raw["values"] = []
    raw.setdefault("name", "Environment")
    parsed = Environment.model_validate(raw)
    stamp = now_ms()
    return parsed.model_copy(
        update={
            "id": generate_id("env"),
            "name": f"{parsed.name} (imported)",
            "values": _fresh_pairs(parsed.values),
            "is_active": False,
            "created_at": stamp,
            "updated_at": stamp,
        },
    )
