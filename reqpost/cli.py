"""reqpost CLI - send API requests, run test scripts, manage collections."""

import json
import logging
import sys
from pathlib import Path

import click
import yaml

TOOL_HELP = """\
reqpost — API request-testing client.

Sends HTTP requests with {{variable}} substitution, authentication and
Postman-style pre-request/test scripts written in Python.

\b
MODES
─────
  Direct:      reqpost METHOD URL [options]
  Request file: reqpost -r requests/login.yaml [options]
  Stored:      reqpost -C COLLECTION -n REQUEST [options]
  Replay:      reqpost --replay 0

\b
DIRECT MODE
───────────
  reqpost GET https://api.example.com/users -p limit=10
  reqpost POST https://api.example.com/users -b '{"name":"test"}'
  reqpost GET /users --bearer '{{token}}'      # base_url from config

\b
REQUEST FILES (YAML or JSON)
────────────────────────────
  \b
  name: login
  method: POST
  url: "{{base}}/auth/login"
  headers:
    Accept: application/json
  params:
    verbose: "1"
  bodyType: json
  body: {"email": "{{email}}", "password": "{{password}}"}
  auth: {type: basic, data: {username: admin, password: secret}}
  testScript: |
    pm.test("status is 200", lambda: pm.expect(pm.response.code).to.equal(200))
    pm.environment.set("token", pm.response.body["token"])

\b
VARIABLES
─────────
  {{name}} placeholders resolve in the URL, params, headers, body and
  auth values. Precedence (highest first):
  \b
  1. -v key=value            (command line)
  2. pre-request script env   (with --run-pre-request)
  3. active environment       (-e NAME, config `environment`, or --activate)
  4. built-ins                ($timestamp, $isoTimestamp, $guid, $randomUUID,
                               $randomInt, $year ... $millisecond)
  Unknown placeholders are sent as-is.

\b
SCRIPTS
───────
  Scripts are Python with two names in scope, pm and console:
  \b
  pm.request.getUrl() / getHeader(k) / setHeader(k, v) / getBody() / setBody(b)
  pm.response.code / status / headers / body / time / size / json()
  pm.environment / pm.globals: get, set, unset, toObject
  pm.variables.get / set / unset
  pm.test(name, fn)      one result per call; fn must return a truthy value
  pm.expect(x).to.be.above(3), .to.have.property("id"), .to.equal(200) ...
  console.log(...)       shown under LOGS

  Scripts run in-process and are fully trusted. Test scripts run on every
  response; pre-request scripts are syntax-checked and only executed with
  --run-pre-request. Environment writes are kept only with --persist-env.

\b
OUTPUT
──────
  STATUS: 200 OK
  TIME: 45ms
  SIZE: 120 B
  BODY:
  {...}
  TESTS:
    PASS status is 200
  1/1 passed

  --verbose adds response headers, --raw prints only the body.
  Exit code 1 when the request gets no response, a test fails or a script
  errors.

\b
CONFIG FILE (.reqpost.yaml)
───────────────────────────
  Resolution: -c flag, then .reqpost.yaml / .reqpost.yml / reqpost.yaml /
  reqpost.yml in CWD, then ~/.reqpost/config.yaml.
  \b
  defaults:
    base_url: ${API_BASE_URL}   # prefix for relative direct-mode URLs
    env_file: .env              # loaded for ${VAR} references
    store: .reqpost/data.json   # collections, environments, history
    environment: dev            # default environment by name
    timeout: 30                 # seconds
    follow_redirects: true
    history_limit: 100
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("method", required=False)
@click.argument("url", required=False)
@click.option("-r", "--request", "request_file", default=None, help="Request file (YAML or JSON).")
@click.option("-C", "--collection", default=None, help="Collection name or id of a stored request.")
@click.option("-n", "--name", "request_name", default=None, help="Stored request name or id (with -C).")
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .reqpost.yaml in CWD, then ~/.reqpost/config.yaml.",
)
@click.option("--store", "store_path", default=None, help="Data file. Default: from config or ~/.reqpost/data.json.")
@click.option("-e", "--env", "env_name", default=None, help="Environment (name or id) for this run.")
@click.option("-v", "--var", multiple=True, help="Variable as key=value. Highest precedence. Repeatable.")
@click.option("-H", "--header", multiple=True, help="HTTP header as 'Name: Value'. Repeatable.")
@click.option("-p", "--param", multiple=True, help="Query parameter as key=value. Repeatable.")
@click.option("-b", "--body", default=None, help="Request body.")
@click.option(
    "--body-type",
    type=click.Choice(["none", "json", "form-data", "x-www-form-urlencoded", "raw"]),
    default=None,
    help="Body encoding. Default: json when a body is given.",
)
@click.option("--basic", "basic_auth", default=None, metavar="USER:PASS", help="Basic auth.")
@click.option("--bearer", "bearer_token", default=None, metavar="TOKEN", help="Bearer token auth.")
@click.option("--pre-script", "pre_script_file", default=None, help="Pre-request script file.")
@click.option("--test-script", "test_script_file", default=None, help="Test script file.")
@click.option("--run-pre-request", is_flag=True, default=False, help="Execute the pre-request script before sending.")
@click.option(
    "--persist-env",
    is_flag=True,
    default=False,
    help="Save pre-request script environment changes to the store.",
)
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds. Default: 30.")
@click.option("--verbose", is_flag=True, default=False, help="Include response headers in output.")
@click.option("--raw", is_flag=True, default=False, help="Output the response body only.")
@click.option("--debug", is_flag=True, default=False, help="Debug logging on stderr.")
@click.option("--save-to", "save_to", default=None, metavar="COLLECTION", help="Save the request to a collection.")
@click.option("--list", "show_list", is_flag=True, default=False, help="List collections and their requests.")
@click.option("--list-envs", is_flag=True, default=False, help="List environments.")
@click.option("--activate", "activate_env", default=None, metavar="ENV", help="Set the active environment.")
@click.option("--history", is_flag=True, default=False, help="Show request history.")
@click.option("--replay", type=int, default=None, metavar="INDEX", help="Replay a request from history by index.")
@click.option("--clear-history", is_flag=True, default=False, help="Delete all history.")
@click.option("--check-script", "check_script_file", default=None, metavar="FILE", help="Check a script's syntax.")
@click.option("--export-collection", default=None, metavar="NAME", help="Print a collection as JSON.")
@click.option("--import-collection", "import_collection_file", default=None, metavar="FILE", help="Import a collection.")
@click.option("--export-env", default=None, metavar="NAME", help="Print an environment as JSON.")
@click.option("--import-env", "import_env_file", default=None, metavar="FILE", help="Import an environment.")
@click.option("--export-data", is_flag=True, default=False, help="Print the whole store as JSON.")
@click.option("--import-data", "import_data_file", default=None, metavar="FILE", help="Replace the store from JSON.")
@click.option("--init", "do_init", is_flag=True, default=False, help="Scaffold .reqpost.yaml, requests/ and a local environment in CWD.")
def main(
    method,
    url,
    request_file,
    collection,
    request_name,
    config_file,
    store_path,
    env_name,
    var,
    header,
    param,
    body,
    body_type,
    basic_auth,
    bearer_token,
    pre_script_file,
    test_script_file,
    run_pre_request,
    persist_env,
    timeout,
    verbose,
    raw,
    debug,
    save_to,
    show_list,
    list_envs,
    activate_env,
    history,
    replay,
    clear_history,
    check_script_file,
    export_collection,
    import_collection_file,
    export_env,
    import_env_file,
    export_data,
    import_data_file,
    do_init,
):
    """Send API requests and run their test scripts."""
    from reqpost.core import load_config, load_env, resolve_config_path, resolve_store_path
    from reqpost.storage import Store

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    # --- Load config ---
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})
    env = load_env(defaults.get("env_file"), config.get("_config_dir") or ".")
    store = Store(resolve_store_path(config, store_path, env))

    variables = _parse_pairs(var)

    # --- Dispatch ---

    if do_init:
        _cmd_init()
        return

    if check_script_file:
        _cmd_check_script(check_script_file)
        return

    if import_data_file:
        if not store.import_data(_read_file(import_data_file)):
            _fail(f"Could not import data from {import_data_file}.")
        click.echo(f"Imported data into {store.path}")
        return

    if export_data:
        click.echo(store.export_data())
        return

    if import_collection_file:
        try:
            imported = store.import_collection(_read_file(import_collection_file))
        except ValueError as e:
            _fail(f"Invalid collection file: {e}")
        click.echo(f"Imported collection '{imported.name}' ({imported.id})")
        return

    if export_collection:
        exported = store.export_collection(export_collection)
        if exported is None:
            _fail(f"Collection '{export_collection}' not found.")
        click.echo(exported)
        return

    if import_env_file:
        try:
            imported_env = store.import_environment(_read_file(import_env_file))
        except ValueError as e:
            _fail(f"Invalid environment file: {e}")
        click.echo(f"Imported environment '{imported_env.name}' ({imported_env.id})")
        return

    if export_env:
        exported = store.export_environment(export_env)
        if exported is None:
            _fail(f"Environment '{export_env}' not found.")
        click.echo(exported)
        return

    if activate_env:
        _cmd_activate(store, activate_env)
        return

    if show_list:
        _cmd_list(store)
        return

    if list_envs:
        _cmd_list_envs(store)
        return

    if clear_history:
        store.clear_history()
        click.echo("History cleared.")
        return

    if history:
        _cmd_history(store)
        return

    # --- Request modes ---

    if replay is not None:
        request = _history_request(store, replay)
    elif request_file:
        request = _load_request_file(request_file)
    elif collection:
        if not request_name:
            _fail("-C/--collection needs -n/--name.")
        request = store.find_request(collection, request_name)
        if request is None:
            _fail(f"Request '{request_name}' not found in collection '{collection}'.")
    elif method and url:
        request = _direct_request(method, url, defaults, env)
    else:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(1)
        return

    request = _apply_cli_overrides(
        request,
        header=header,
        param=param,
        body=body,
        body_type=body_type,
        basic_auth=basic_auth,
        bearer_token=bearer_token,
        pre_script_file=pre_script_file,
        test_script_file=test_script_file,
    )

    if save_to:
        _cmd_save_to(store, request, save_to)

    _cmd_send(
        store,
        request,
        defaults=defaults,
        env_name=env_name,
        variables=variables,
        timeout=timeout,
        run_pre_request=run_pre_request,
        persist_env=persist_env,
        verbose=verbose,
        raw=raw,
    )


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_send(
    store,
    request,
    defaults,
    env_name,
    variables,
    timeout,
    run_pre_request,
    persist_env,
    verbose,
    raw,
):
    from reqpost.executor import Dispatcher
    from reqpost.formatting import format_response
    from reqpost.storage import MAX_HISTORY
    from reqpost.variables import StaticVariables

    settings = store.get_settings()

    env_name = env_name or defaults.get("environment")
    if env_name:
        environment = store.find_environment(env_name)
        if environment is None:
            _fail(f"Environment '{env_name}' not found. Use --list-envs.")
        source = StaticVariables(environment.variables())
    else:
        environment = store.get_active_environment()
        source = store

    dispatcher = Dispatcher(
        source,
        timeout=_resolve_timeout(timeout, defaults.get("timeout"), settings.request_timeout / 1000),
        follow_redirects=defaults.get("follow_redirects", settings.follow_redirects),
        run_pre_request=run_pre_request,
    )
    result = dispatcher.dispatch(request, local_overrides=variables)
    response = result.response

    logs: list[str] = []
    for script in (result.pre_request, result.test):
        if script is not None:
            logs.extend(script.logs)

    click.echo(format_response(response, verbose=verbose, raw=raw, logs=None if raw else logs))
    store.record(result.request, response, limit=defaults.get("history_limit") or MAX_HISTORY)

    pre = result.pre_request
    if persist_env and pre is not None and pre.success:
        if environment is None:
            click.echo("No environment selected; pre-request variables not saved.", err=True)
        else:
            store.set_environment_variables(environment.id, pre.data or {})

    failed = False
    if response.status == 0:
        click.echo(f"ERROR: {response.status_text}", err=True)
        failed = True
    for script in (pre, result.test):
        if script is not None and not script.success:
            click.echo(f"ERROR: script failed: {script.error}", err=True)
            failed = True
    if any(not t.passed for t in response.test_results or []):
        failed = True
    if failed:
        sys.exit(1)


def _cmd_check_script(path):
    from reqpost.script import validate_script_syntax

    check = validate_script_syntax(_read_file(path))
    if not check["valid"]:
        _fail(check["error"])
    click.echo("Script OK")


def _cmd_activate(store, name_or_id):
    if name_or_id.lower() == "none":
        store.set_active_environment(None)
        click.echo("No active environment.")
        return
    environment = store.find_environment(name_or_id)
    if environment is None:
        _fail(f"Environment '{name_or_id}' not found. Use --list-envs.")
    store.set_active_environment(environment.id)
    click.echo(f"Active environment: {environment.name}")


def _cmd_list(store):
    collections = store.get_collections()
    if not collections:
        click.echo("No collections.")
        return
    for c in collections:
        click.echo(f"{c.name}  ({c.id})")
        for r in c.requests:
            click.echo(f"  {_method(r):<7} {r.name}  {r.url}")
        for f in c.folders:
            click.echo(f"  {f.name}/")
            for r in f.requests:
                click.echo(f"    {_method(r):<7} {r.name}  {r.url}")


def _cmd_list_envs(store):
    environments = store.get_environments()
    if not environments:
        click.echo("No environments.")
        return
    active = store.get_active_environment()
    for e in environments:
        marker = "*" if active and e.id == active.id else " "
        click.echo(f"{marker} {e.name}  ({len(e.variables())} vars)")


def _cmd_history(store):
    items = store.get_history()
    if not items:
        click.echo("No request history.")
        return
    click.echo("Request history:\n")
    for i, item in enumerate(items):
        r = item.request
        status = item.response.status if item.response else "-"
        click.echo(f"  [{i}] {_method(r):<7} {r.url}  -> {status}")


def _cmd_save_to(store, request, collection_name):
    from reqpost.models import Collection

    target = store.find_collection(collection_name)
    if target is None:
        target = store.add_collection(Collection(name=collection_name))
    store.save_request_to_collection(request, target.id)
    click.echo(f"Saved '{request.name}' to collection '{target.name}'", err=True)


def _cmd_init():
    """Scaffold .reqpost.yaml, requests/ and a 'local' environment in CWD."""
    from reqpost.models import Environment, KeyValuePair
    from reqpost.storage import Store

    config_file = Path(".reqpost.yaml")
    requests_dir = Path("requests")
    base_url = _detect_base_url()

    if config_file.exists():
        click.echo(f"  {config_file} (skipped, already exists)")
    else:
        config_file.write_text(_generate_config(base_url, env_file=Path(".env").exists()))
        click.echo(f"  {config_file} (created)")

    if requests_dir.exists():
        click.echo(f"  {requests_dir}/ (skipped, already exists)")
    else:
        requests_dir.mkdir(parents=True)
        (requests_dir / "health.yaml").write_text(_SAMPLE_REQUEST)
        click.echo(f"  {requests_dir}/ (created)")

    store = Store(Path(INIT_STORE))
    if store.find_environment(INIT_ENVIRONMENT) is not None:
        click.echo(f"  environment '{INIT_ENVIRONMENT}' (skipped, already exists)")
    else:
        store.add_environment(
            Environment(
                name=INIT_ENVIRONMENT,
                values=[KeyValuePair(key="base_url", value=base_url)],
                is_active=True,
            )
        )
        click.echo(f"  environment '{INIT_ENVIRONMENT}' in {INIT_STORE} (created)")

    click.echo("\nProject initialized. Run 'reqpost -r requests/health.yaml' to try it.")


# ── Helpers ──────────────────────────────────────────────────────────────


def _fail(message):
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)


def _read_file(path):
    try:
        return Path(path).read_text()
    except OSError as e:
        _fail(f"Cannot read {path}: {e.strerror or e}")


def _method(request):
    from reqpost.models import HttpMethod

    return HttpMethod(request.method).value


def _parse_pairs(specs):
    """Parse key=value specs into a dict."""
    pairs = {}
    for spec in specs:
        if "=" in spec:
            k, v = spec.split("=", 1)
            pairs[k.strip()] = v.strip()
    return pairs


def _parse_headers(header_tuples):
    """Parse -H 'Name: Value' tuples into (name, value) pairs."""
    headers = []
    for h in header_tuples:
        if ":" in h:
            k, v = h.split(":", 1)
            headers.append((k.strip(), v.strip()))
    return headers


def _resolve_timeout(*sources, default=30):
    """Return the first truthy timeout from sources, or default."""
    for t in sources:
        if t:
            return t
    return default


def _as_pairs(value):
    """Accept a {key: value} mapping or a list of pair dicts."""
    from reqpost.models import KeyValuePair

    if not value:
        return []
    if isinstance(value, dict):
        return [KeyValuePair(key=str(k), value="" if v is None else str(v)) for k, v in value.items()]
    return [KeyValuePair.model_validate(p) for p in value]


def _load_request_file(path):
    """Read a YAML/JSON request file into an ApiRequest."""
    from pydantic import ValidationError

    from reqpost.models import ApiRequest

    try:
        data = yaml.safe_load(_read_file(path))
    except yaml.YAMLError as e:
        _fail(f"Invalid request file {path}: {e}")
    if not isinstance(data, dict):
        _fail(f"Invalid request file {path}: expected a mapping.")

    data = dict(data)
    data.setdefault("name", Path(path).stem)
    data["headers"] = _as_pairs(data.get("headers"))
    data["params"] = _as_pairs(data.get("params"))
    if "method" in data:
        data["method"] = str(data["method"]).upper()
    body = data.get("body")
    has_type = "bodyType" in data or "body_type" in data
    if isinstance(body, dict | list):
        data["body"] = json.dumps(body)
        if not has_type:
            data["bodyType"] = "json"
    elif body is not None:
        data["body"] = str(body)
        if not has_type:
            data["bodyType"] = "raw"

    try:
        return ApiRequest.model_validate(data)
    except ValidationError as e:
        _fail(f"Invalid request file {path}: {e}")


def _history_request(store, index):
    items = store.get_history()
    if index < 0 or index >= len(items):
        _fail(f"Invalid index {index}. Use --history to list.")
    return items[index].request.model_copy(deep=True)


def _direct_request(method, url, defaults, env):
    from reqpost.core import resolve_value
    from reqpost.models import ApiRequest, HttpMethod

    method = method.upper()
    if method not in HttpMethod.__members__:
        _fail(f"Unsupported method {method}.")

    base_url = resolve_value(defaults.get("base_url"), env) or ""
    if base_url and not url.startswith(("http://", "https://")):
        url = base_url.rstrip("/") + "/" + url.lstrip("/")

    return ApiRequest(name=f"{method} {url}", method=method, url=url)


def _apply_cli_overrides(
    request,
    header,
    param,
    body,
    body_type,
    basic_auth,
    bearer_token,
    pre_script_file,
    test_script_file,
):
    """Layer command-line flags on top of a loaded request."""
    from reqpost.models import AuthConfig, KeyValuePair

    update = {}
    if header:
        extra = [KeyValuePair(key=k, value=v) for k, v in _parse_headers(header)]
        update["headers"] = [*request.headers, *extra]
    if param:
        extra = [KeyValuePair(key=k, value=v) for k, v in _parse_pairs(param).items()]
        update["params"] = [*request.params, *extra]
    if body is not None:
        update["body"] = body
        update["body_type"] = body_type or "json"
    elif body_type:
        update["body_type"] = body_type
    if basic_auth:
        username, _, password = basic_auth.partition(":")
        update["auth"] = AuthConfig(type="basic", data={"username": username, "password": password})
    elif bearer_token:
        update["auth"] = AuthConfig(type="bearer", data={"token": bearer_token})
    if pre_script_file:
        update["pre_request_script"] = _read_file(pre_script_file)
    if test_script_file:
        update["test_script"] = _read_file(test_script_file)

    return request.model_copy(update=update) if update else request


INIT_STORE = ".reqpost/data.json"
INIT_ENVIRONMENT = "local"
DEFAULT_INIT_BASE_URL = "http://localhost:8080"


def _detect_base_url() -> str:
    """API_BASE_URL from ./.env or the process environment, else localhost."""
    from reqpost.core import load_env

    return load_env(".env").get("API_BASE_URL") or DEFAULT_INIT_BASE_URL


def _generate_config(base_url: str, env_file: bool = False) -> str:
    """Return .reqpost.yaml content string."""
    env_line = "env_file: .env" if env_file else "# env_file: .env"
    return f"""\
# reqpost configuration
# See: reqpost --help

defaults:
  base_url: {base_url}
  {env_line}
  store: {INIT_STORE}
  timeout: 30
  follow_redirects: true
  environment: {INIT_ENVIRONMENT}
"""


_SAMPLE_REQUEST = """\
name: health
method: GET
url: "{{base_url}}/health"
testScript: |
  pm.test("status is 200", lambda: pm.expect(pm.response.code).to.equal(200))
"""
