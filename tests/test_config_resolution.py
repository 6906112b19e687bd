"""Tests for config file, env file and store path resolution."""

import pytest
import yaml

from reqpost import core
from reqpost.cli import _resolve_timeout


@pytest.fixture
def tmp_project(isolate_cwd):
    """The per-test working directory."""
    return isolate_cwd


def _write_config(path, **defaults):
    """Helper to write a config YAML file."""
    defaults.setdefault("base_url", "http://localhost:3000")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump({"defaults": defaults}))


# ── resolve_config_path ─────────────────────────────────────────────────


class TestResolveConfigPath:
    def test_explicit_flag_takes_priority(self, tmp_project, global_reqpost_dir):
        """Explicit -c flag should win over everything else."""
        explicit = tmp_project / "custom" / "my.yaml"
        _write_config(explicit)
        # Also create a CWD config and global config to prove they're ignored
        _write_config(tmp_project / ".reqpost.yaml", base_url="cwd")
        _write_config(global_reqpost_dir / "config.yaml", base_url="global")

        result = core.resolve_config_path(str(explicit))
        assert result == explicit.resolve()

    def test_explicit_flag_nonexistent_returns_none(self, tmp_project, global_reqpost_dir):
        """Explicit -c pointing to missing file returns None, no fallthrough."""
        _write_config(tmp_project / ".reqpost.yaml")
        result = core.resolve_config_path("/nonexistent/config.yaml")
        assert result is None

    def test_cwd_config_found(self, tmp_project, global_reqpost_dir):
        _write_config(tmp_project / ".reqpost.yaml")
        _write_config(global_reqpost_dir / "config.yaml", base_url="global")

        result = core.resolve_config_path(None)
        assert result == (tmp_project / ".reqpost.yaml").resolve()

    @pytest.mark.parametrize("name", [".reqpost.yml", "reqpost.yaml", "reqpost.yml"])
    def test_cwd_variants(self, tmp_project, global_reqpost_dir, name):
        _write_config(tmp_project / name)
        assert core.resolve_config_path(None) == (tmp_project / name).resolve()

    def test_cwd_config_priority_order(self, tmp_project, global_reqpost_dir):
        """First CWD candidate wins: .reqpost.yaml before reqpost.yaml."""
        _write_config(tmp_project / ".reqpost.yaml", base_url="dotted")
        _write_config(tmp_project / "reqpost.yaml", base_url="undotted")

        result = core.resolve_config_path(None)
        assert result.name == ".reqpost.yaml"

    def test_global_config_fallback(self, tmp_project, global_reqpost_dir):
        _write_config(global_reqpost_dir / "config.yaml", base_url="global")

        result = core.resolve_config_path(None)
        assert result == (global_reqpost_dir / "config.yaml").resolve()

    def test_no_config_anywhere(self, tmp_project, global_reqpost_dir):
        assert core.resolve_config_path(None) is None


# ── load_config ──────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_none_path_returns_defaults(self):
        config = core.load_config(None)
        assert config["defaults"] == {}
        assert config["_config_dir"] is None

    def test_nonexistent_path_returns_defaults(self):
        config = core.load_config("/nonexistent/path.yaml")
        assert config["defaults"] == {}
        assert config["_config_dir"] is None

    def test_valid_config_loads_defaults(self, tmp_path):
        cfg_path = tmp_path / "config.yaml"
        _write_config(cfg_path, base_url="http://test:8080", timeout=5)
        config = core.load_config(cfg_path)
        assert config["defaults"]["base_url"] == "http://test:8080"
        assert config["defaults"]["timeout"] == 5

    def test_config_dir_is_set(self, tmp_path):
        cfg_path = tmp_path / "subdir" / "config.yaml"
        _write_config(cfg_path)
        config = core.load_config(cfg_path)
        assert config["_config_dir"] == (tmp_path / "subdir").resolve()

    def test_empty_yaml_returns_empty_defaults(self, tmp_path):
        cfg_path = tmp_path / "empty.yaml"
        cfg_path.write_text("")
        config = core.load_config(cfg_path)
        assert config["defaults"] == {}
        assert config["_config_dir"] == tmp_path.resolve()


# ── env file and ${VAR} values ──────────────────────────────────────────


class TestEnvResolution:
    def test_dotenv_values_win(self, tmp_path, monkeypatch):
        monkeypatch.setenv("API_HOST", "from-os")
        (tmp_path / ".env").write_text("API_HOST=from-dotenv\nAPI_KEY=k1\n")
        env = core.load_env(".env", tmp_path)
        assert env["API_HOST"] == "from-dotenv"
        assert env["API_KEY"] == "k1"

    def test_missing_env_file_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("API_HOST", "from-os")
        env = core.load_env(".env.missing", tmp_path)
        assert env["API_HOST"] == "from-os"

    def test_resolve_value_forms(self):
        env = {"HOST": "h", "PORT": "1"}
        assert core.resolve_value("http://${HOST}:$PORT/x", env) == "http://h:1/x"

    def test_unknown_reference_kept(self, monkeypatch):
        monkeypatch.delenv("NOPE_NOT_SET", raising=False)
        assert core.resolve_value("${NOPE_NOT_SET}", {}) == "${NOPE_NOT_SET}"

    def test_non_strings_untouched(self):
        assert core.resolve_value(30, {}) == 30
        assert core.resolve_value(None, {}) is None


# ── store path ───────────────────────────────────────────────────────────


class TestResolveStorePath:
    def test_cli_override(self, tmp_path):
        config = {"defaults": {"store": "ignored.json"}, "_config_dir": tmp_path}
        assert core.resolve_store_path(config, "flag.json", {}) == core.Path("flag.json")

    def test_relative_to_config_dir(self, tmp_path):
        config = {"defaults": {"store": "${DATA}/data.json"}, "_config_dir": tmp_path}
        assert core.resolve_store_path(config, None, {"DATA": "var"}) == tmp_path / "var" / "data.json"

    def test_global_default(self, global_reqpost_dir):
        config = {"defaults": {}, "_config_dir": None}
        assert core.resolve_store_path(config, None, {}) == global_reqpost_dir / "data.json"


class TestResolveTimeout:
    def test_first_truthy_wins(self):
        assert _resolve_timeout(None, 10, 30.0) == 10

    def test_flag_wins(self):
        assert _resolve_timeout(2.5, 10, 30.0) == 2.5

    def test_default(self):
        assert _resolve_timeout(None, None, 0) == 30
