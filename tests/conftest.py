"""Shared fixtures for reqpost tests."""

import json

import pytest
import requests
from click.testing import CliRunner

from reqpost import core
from reqpost.models import Environment, KeyValuePair
from reqpost.storage import Store


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def global_reqpost_dir(tmp_path, monkeypatch):
    """Override the global ~/.reqpost directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".reqpost"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    monkeypatch.setattr(core, "GLOBAL_STORE", fake_global / "data.json")
    return fake_global


@pytest.fixture(autouse=True)
def isolate_cwd(tmp_path, monkeypatch):
    """Run every test from an empty directory so no local config leaks in."""
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


@pytest.fixture
def store(global_reqpost_dir):
    return Store(global_reqpost_dir / "data.json")


def make_environment(name="dev", active=False, **values):
    return Environment(
        name=name,
        is_active=active,
        values=[KeyValuePair(key=k, value=v) for k, v in values.items()],
    )


def make_http_response(
    status_code=200,
    body=None,
    headers=None,
    reason="OK",
    raw_text=None,
):
    """Factory for real requests.Response objects with canned content."""
    resp = requests.Response()
    resp.status_code = status_code
    resp.reason = reason
    if raw_text is None:
        raw_text = json.dumps(body) if isinstance(body, dict | list) else str(body or "")
    resp._content = raw_text.encode("utf-8")
    resp.encoding = "utf-8"
    default_headers = {"Content-Type": "application/json"} if isinstance(body, dict | list) else {}
    resp.headers.update(headers if headers is not None else default_headers)
    resp.url = "http://testserver/"
    return resp
