"""Tests for request dispatch and response normalisation."""

import socket
from unittest.mock import patch

import pytest
import requests

from reqpost.executor import (
    DNS_MESSAGE,
    REFUSED_MESSAGE,
    TIMEOUT_MESSAGE,
    Dispatcher,
    classify_transport_error,
    execute_request,
)
from reqpost.models import ApiRequest, KeyValuePair
from reqpost.variables import StaticVariables
from tests.conftest import make_http_response

# ── execute_request ─────────────────────────────────────────────────────


class TestExecuteRequest:
    @patch("reqpost.executor.requests.request")
    def test_json_body_sent_as_json(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        execute_request(
            {"method": "POST", "url": "http://x", "headers": {}, "timeout": 3, "body_type": "json", "data": {"a": 1}},
        )
        _, kwargs = mock_request.call_args
        assert kwargs["json"] == {"a": 1}
        assert kwargs["timeout"] == 3
        assert kwargs["allow_redirects"] is True

    @patch("reqpost.executor.requests.request")
    def test_string_body_sent_as_bytes(self, mock_request):
        mock_request.return_value = make_http_response(body="")
        execute_request({"method": "POST", "url": "http://x", "body_type": "raw", "data": "héllo"})
        _, kwargs = mock_request.call_args
        assert kwargs["data"] == "héllo".encode("utf-8")
        assert "json" not in kwargs

    @patch("reqpost.executor.requests.request")
    def test_form_fields_sent_as_multipart(self, mock_request):
        mock_request.return_value = make_http_response(body="")
        execute_request({"method": "POST", "url": "http://x", "body_type": "form-data", "files": {"a": "1"}})
        _, kwargs = mock_request.call_args
        assert kwargs["files"] == {"a": (None, "1")}

    @patch("reqpost.executor.requests.request")
    def test_follow_redirects_flag(self, mock_request):
        mock_request.return_value = make_http_response(body="")
        execute_request({"method": "GET", "url": "http://x"}, follow_redirects=False)
        _, kwargs = mock_request.call_args
        assert kwargs["allow_redirects"] is False


# ── error classification ────────────────────────────────────────────────


class TestClassifyTransportError:
    def test_timeout(self):
        assert classify_transport_error(requests.exceptions.ReadTimeout("slow")) == TIMEOUT_MESSAGE

    def test_connect_timeout(self):
        assert classify_transport_error(requests.exceptions.ConnectTimeout("slow")) == TIMEOUT_MESSAGE

    def test_dns_by_cause(self):
        error = requests.exceptions.ConnectionError(socket.gaierror(-2, "Name or service not known"))
        assert classify_transport_error(error) == DNS_MESSAGE

    def test_refused_by_cause(self):
        inner = ConnectionRefusedError(111, "Connection refused")
        error = requests.exceptions.ConnectionError(OSError("wrapped"))
        error.__cause__ = inner
        assert classify_transport_error(error) == REFUSED_MESSAGE

    def test_dns_by_message(self):
        error = requests.exceptions.ConnectionError("Failed to resolve 'nohost.invalid'")
        assert classify_transport_error(error) == DNS_MESSAGE

    def test_other_error_keeps_text(self):
        error = requests.exceptions.InvalidURL("Invalid URL 'x'")
        assert classify_transport_error(error) == "Invalid URL 'x'"

    def test_empty_error_text(self):
        assert classify_transport_error(requests.exceptions.RequestException()) == "Unknown error"


# ── Dispatcher ──────────────────────────────────────────────────────────


class TestDispatcherSuccess:
    @patch("reqpost.executor.requests.request")
    def test_response_normalised(self, mock_request):
        mock_request.return_value = make_http_response(
            status_code=201,
            reason="Created",
            body={"id": 1},
            headers={"Content-Type": "application/json", "X-Trace": "abc"},
        )
        request = ApiRequest(method="POST", url="http://api.test/users")
        response = Dispatcher().send(request)
        assert response.status == 201
        assert response.status_text == "Created"
        assert response.data == {"id": 1}
        assert response.headers == {"content-type": "application/json", "x-trace": "abc"}
        assert response.size == len(b'{"id": 1}')
        assert response.request_id == request.id
        assert response.time >= 0
        assert response.test_results is None

    @patch("reqpost.executor.requests.request")
    def test_non_json_body_is_text(self, mock_request):
        mock_request.return_value = make_http_response(raw_text="<p>hi</p>", headers={"Content-Type": "text/html"})
        response = Dispatcher().send(ApiRequest(url="http://api.test"))
        assert response.data == "<p>hi</p>"
        assert response.content_type == "text/html"

    @patch("reqpost.executor.requests.request")
    def test_content_type_default(self, mock_request):
        mock_request.return_value = make_http_response(raw_text="x", headers={})
        response = Dispatcher().send(ApiRequest(url="http://api.test"))
        assert response.content_type == "application/json"

    @patch("reqpost.executor.requests.request")
    def test_error_status_is_still_a_response(self, mock_request):
        mock_request.return_value = make_http_response(status_code=404, reason="Not Found", body={"error": "nope"})
        response = Dispatcher().send(ApiRequest(url="http://api.test"))
        assert response.status == 404
        assert response.data == {"error": "nope"}

    @patch("reqpost.executor.requests.request")
    def test_variables_resolved_and_timeout_passed(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        dispatcher = Dispatcher(StaticVariables({"host": "http://env.test"}), timeout=7)
        dispatcher.send(
            ApiRequest(url="{{host}}/{{path}}", params=[KeyValuePair(key="a", value="{{host}}")]),
            local_overrides={"path": "users"},
        )
        _, kwargs = mock_request.call_args
        assert kwargs["url"] == "http://env.test/users?a=http%3A%2F%2Fenv.test"
        assert kwargs["timeout"] == 7

    @patch("reqpost.executor.requests.request")
    def test_environment_path_and_params(self, mock_request):
        mock_request.return_value = make_http_response(body=[])
        request = ApiRequest(
            method="GET",
            url="https://api.example.com/{{path}}",
            params=[KeyValuePair(key="limit", value="10", enabled=True)],
        )
        Dispatcher(StaticVariables({"path": "users"})).send(request)
        _, kwargs = mock_request.call_args
        assert kwargs["method"] == "GET"
        assert kwargs["url"] == "https://api.example.com/users?limit=10"

    @patch("reqpost.executor.requests.request")
    def test_caller_request_untouched(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        request = ApiRequest(url="{{host}}", test_script="pm.test('t', lambda: True)")
        Dispatcher(StaticVariables({"host": "http://h"})).dispatch(request)
        assert request.url == "{{host}}"


class TestDispatcherErrors:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (requests.exceptions.ReadTimeout("slow"), TIMEOUT_MESSAGE),
            (requests.exceptions.ConnectionError(socket.gaierror(-2, "x")), DNS_MESSAGE),
            (requests.exceptions.ConnectionError(ConnectionRefusedError(111, "x")), REFUSED_MESSAGE),
        ],
    )
    @patch("reqpost.executor.requests.request")
    def test_transport_error_becomes_status_zero(self, mock_request, error, expected):
        mock_request.side_effect = error
        response = Dispatcher().send(ApiRequest(url="http://api.test"))
        assert response.status == 0
        assert response.status_text == expected
        assert response.headers == {}
        assert response.data is None
        assert response.size == 0

    @patch("reqpost.executor.requests.request")
    def test_error_with_response_keeps_status(self, mock_request):
        resp = make_http_response(status_code=502, reason="Bad Gateway", body={"e": 1})
        mock_request.side_effect = requests.exceptions.HTTPError("bad", response=resp)
        response = Dispatcher().send(ApiRequest(url="http://api.test"))
        assert response.status == 502
        assert response.status_text == "Bad Gateway"
        assert response.data == {"e": 1}

    @patch("reqpost.executor.requests.request")
    def test_tests_run_on_error_responses(self, mock_request):
        mock_request.side_effect = requests.exceptions.ReadTimeout("slow")
        request = ApiRequest(
            url="http://api.test",
            test_script="pm.test('no response', lambda: pm.response.code == 0)",
        )
        response = Dispatcher().send(request)
        assert [t.name for t in response.test_results] == ["no response"]
        assert response.test_results[0].passed


class TestDispatcherScripts:
    @patch("reqpost.executor.requests.request")
    def test_test_results_attached(self, mock_request):
        mock_request.return_value = make_http_response(body={"id": 5})
        script = (
            "pm.test('status', lambda: pm.expect(pm.response.code).to.equal(200))\n"
            "pm.test('id', lambda: pm.expect(pm.response.json()['id']).to.equal(6))\n"
        )
        response = Dispatcher().send(ApiRequest(url="http://api.test", test_script=script))
        assert [t.status for t in response.test_results] == ["passed", "failed"]
        assert response.test_results[1].expected == "6"
        assert response.test_results[1].actual == "5"

    @patch("reqpost.executor.requests.request")
    def test_test_script_syntax_error_reported(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        result = Dispatcher().dispatch(ApiRequest(url="http://api.test", test_script="pm.test(("))
        assert result.test is not None
        assert not result.test.success
        assert result.test.error.startswith("Script Error at line 1:")
        assert result.response.status == 200
        assert result.response.test_results is None

    @patch("reqpost.executor.requests.request")
    def test_exit_in_test_script_still_returns_response(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        request = ApiRequest(url="http://api.test", test_script="pm.test('ok', lambda: True)\nexit(3)")
        result = Dispatcher().dispatch(request)
        assert result.response.status == 200
        assert not result.test.success
        assert [t.name for t in result.response.test_results] == ["ok"]

    @patch("reqpost.executor.requests.request")
    def test_pre_request_not_run_by_default(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        request = ApiRequest(url="http://api.test/{{p}}", pre_request_script="pm.environment.set('p', 'x')")
        result = Dispatcher().dispatch(request)
        assert result.pre_request is None
        _, kwargs = mock_request.call_args
        assert kwargs["url"] == "http://api.test/{{p}}"

    @patch("reqpost.executor.requests.request")
    def test_pre_request_environment_feeds_resolution(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        request = ApiRequest(url="http://api.test/{{p}}", pre_request_script="pm.environment.set('p', 'x')")
        dispatcher = Dispatcher(StaticVariables({"p": "old"}), run_pre_request=True)
        result = dispatcher.dispatch(request)
        assert result.pre_request.success
        assert result.pre_request.data == {"p": "x"}
        _, kwargs = mock_request.call_args
        assert kwargs["url"] == "http://api.test/x"

    @patch("reqpost.executor.requests.request")
    def test_local_overrides_beat_pre_request(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        request = ApiRequest(url="http://api.test/{{p}}", pre_request_script="pm.environment.set('p', 'x')")
        Dispatcher(run_pre_request=True).dispatch(request, local_overrides={"p": "cli"})
        _, kwargs = mock_request.call_args
        assert kwargs["url"] == "http://api.test/cli"

    @patch("reqpost.executor.requests.request")
    def test_failing_pre_request_still_sends(self, mock_request):
        mock_request.return_value = make_http_response(body={})
        request = ApiRequest(url="http://api.test", pre_request_script="raise RuntimeError('boom')")
        result = Dispatcher(run_pre_request=True).dispatch(request)
        assert not result.pre_request.success
        assert result.pre_request.error == "boom"
        assert result.response.status == 200
