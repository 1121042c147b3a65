# QLSync test scripts
from __future__ import annotations

import json
from typing import Any

import pytest
import responses
from responses import matchers

from providers.panel import QingLongClient, RemoteVariable
from ql_platform.errors import ApiError, AuthError, ConfigMissingError

BASE = "http://ql.local:5700"
TOKEN_URL = f"{BASE}/open/auth/token"
ENVS_URL = f"{BASE}/open/envs"

CONN = {"qlUrl": BASE + "/", "clientId": "cid", "clientSecret": "csecret"}


def _client(sleeper, clock, conn: dict[str, Any] | None = None, **kw: Any) -> QingLongClient:
    c = dict(CONN if conn is None else conn)
    return QingLongClient(lambda: c, sleep=sleeper, clock=clock, **kw)


def _token_ok(token: str = "tok-abcdefghijkl") -> None:
    responses.add(responses.GET, TOKEN_URL, json={"code": 200, "data": {"token": token, "expiration": 0}})


def _body(call) -> Any:
    return json.loads(call.request.body)


@responses.activate
def test_token_is_reused_and_sent_as_bearer(sleeper, clock) -> None:
    responses.add(
        responses.GET,
        TOKEN_URL,
        json={"code": 200, "data": {"token": "T1"}},
        match=[matchers.query_param_matcher({"client_id": "cid", "client_secret": "csecret"})],
    )
    responses.add(responses.GET, ENVS_URL, json={"code": 200, "data": []})
    c = _client(sleeper, clock)
    c.list_variables(use_cache=False)
    c.list_variables(use_cache=False)
    token_calls = [x for x in responses.calls if x.request.url.startswith(TOKEN_URL)]
    assert len(token_calls) == 1
    assert responses.calls[-1].request.headers["Authorization"] == "Bearer T1"


@responses.activate
def test_expired_token_triggers_one_reauth(sleeper, clock) -> None:
    _token_ok()
    c = _client(sleeper, clock)
    assert c.authenticate() == "tok-abcdefghijkl"
    c.expire_token()
    c.authenticate()
    c.authenticate()
    assert len(responses.calls) == 2


@responses.activate
def test_cleared_token_is_fetched_again(sleeper, clock) -> None:
    _token_ok()
    c = _client(sleeper, clock)
    c.authenticate()
    c.clear_token()
    c.authenticate()
    assert len(responses.calls) == 2


@responses.activate
def test_token_lifetime(sleeper, clock) -> None:
    _token_ok()
    c = _client(sleeper, clock, token_ttl=3600)
    c.authenticate()
    clock.advance(3599)
    c.authenticate()
    clock.advance(1)
    c.authenticate()
    assert len(responses.calls) == 2


@responses.activate
def test_incomplete_connection_is_config_missing(sleeper, clock) -> None:
    c = _client(sleeper, clock, conn={"qlUrl": BASE, "clientId": "", "clientSecret": "x"})
    with pytest.raises(ConfigMissingError):
        c.authenticate()
    assert len(responses.calls) == 0


@responses.activate
def test_rejected_credentials_are_auth_error(sleeper, clock) -> None:
    responses.add(responses.GET, TOKEN_URL, json={"code": 400, "message": "client_secret错误"})
    c = _client(sleeper, clock)
    with pytest.raises(AuthError) as ei:
        c.authenticate()
    assert ei.value.message == "client_secret错误"


@responses.activate
def test_token_without_message_uses_default(sleeper, clock) -> None:
    responses.add(responses.GET, TOKEN_URL, json={"code": 200, "data": {}})
    with pytest.raises(AuthError) as ei:
        _client(sleeper, clock).authenticate()
    assert "Client ID" in ei.value.message


@responses.activate
def test_encrypted_secret_is_decrypted_before_use(sleeper, clock) -> None:
    blob = "Q" * 48
    responses.add(
        responses.GET,
        TOKEN_URL,
        json={"code": 200, "data": {"token": "T"}},
        match=[matchers.query_param_matcher({"client_id": "cid", "client_secret": "plain"})],
    )
    c = _client(sleeper, clock, conn=dict(CONN, clientSecret=blob), decrypt=lambda s: "plain" if s == blob else s)
    assert c.authenticate() == "T"


@responses.activate
def test_non_200_code_is_api_error(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, json={"code": 500, "message": "db locked"})
    with pytest.raises(ApiError) as ei:
        _client(sleeper, clock).list_variables()
    assert ei.value.message == "db locked"


@responses.activate
def test_missing_data_is_api_error(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, json={"code": 200})
    with pytest.raises(ApiError):
        _client(sleeper, clock).list_variables()


@responses.activate
def test_http_failure_is_retried_then_api_error(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, status=503, body="")
    c = _client(sleeper, clock, max_retries=3, retry_delay=1.0)
    with pytest.raises(ApiError):
        c.list_variables()
    env_calls = [x for x in responses.calls if x.request.url.startswith(ENVS_URL)]
    assert len(env_calls) == 3
    assert sleeper.calls == [1.0, 1.0]


@responses.activate
def test_list_is_cached_and_writes_invalidate(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, json={"code": 200, "data": [{"id": 1, "name": "A", "value": "v", "status": 0}]})
    responses.add(responses.POST, ENVS_URL, json={"code": 200, "data": [{"id": 2, "name": "B", "value": "w"}]})
    c = _client(sleeper, clock)
    first = c.list_variables()
    c.list_variables()
    assert [v.name for v in first] == ["A"]
    assert first[0].enabled is True
    created = c.create_variable("B", "w")
    assert created.id == 2
    c.list_variables()
    get_calls = [x for x in responses.calls if x.request.method == "GET" and x.request.url.startswith(ENVS_URL)]
    assert len(get_calls) == 2


@responses.activate
def test_cache_window_expires(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, json={"code": 200, "data": []})
    c = _client(sleeper, clock, env_cache_ttl=300)
    c.list_variables()
    clock.advance(299)
    c.list_variables()
    clock.advance(2)
    c.list_variables()
    get_calls = [x for x in responses.calls if x.request.url.startswith(ENVS_URL)]
    assert len(get_calls) == 2


@responses.activate
def test_upsert_creates_when_missing(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, json={"code": 200, "data": []})
    responses.add(responses.POST, ENVS_URL, json={"code": 200, "data": [{"id": 7, "name": "SITE", "value": "a=1;"}]})
    res = _client(sleeper, clock).upsert_variable("SITE", "a=1;", "note")
    assert res.action == "created"
    assert _body(responses.calls[-1]) == [{"name": "SITE", "value": "a=1;", "remarks": "note"}]


@responses.activate
def test_upsert_updates_existing_and_keeps_remarks(sleeper, clock) -> None:
    _token_ok()
    responses.add(
        responses.GET,
        ENVS_URL,
        json={"code": 200, "data": [{"id": 3, "name": "SITE", "value": "old", "remarks": "keep me", "status": 1, "position": 9}]},
    )
    responses.add(responses.PUT, ENVS_URL, json={"code": 200, "data": {"id": 3, "name": "SITE", "value": "new"}})
    res = _client(sleeper, clock).upsert_variable("SITE", "new")
    assert res.action == "updated"
    body = _body(responses.calls[-1])
    assert body == {"id": 3, "name": "SITE", "value": "new", "remarks": "keep me", "status": 1, "position": 9}


@responses.activate
def test_legacy_id_key_is_preserved(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.PUT, ENVS_URL, json={"code": 200, "data": None})
    c = _client(sleeper, clock)
    var = RemoteVariable.from_api({"_id": "abc", "name": "X", "value": "1"})
    c.update_variable(var)
    assert _body(responses.calls[-1])["_id"] == "abc"
    assert "id" not in _body(responses.calls[-1])


@responses.activate
def test_bulk_operations_send_id_lists(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.DELETE, ENVS_URL, json={"code": 200})
    responses.add(responses.PUT, f"{ENVS_URL}/enable", json={"code": 200})
    responses.add(responses.PUT, f"{ENVS_URL}/disable", json={"code": 200})
    c = _client(sleeper, clock)
    c.delete_variables([1, 2])
    c.enable_variables([3])
    c.disable_variables([4])
    bodies = [_body(x) for x in responses.calls[1:]]
    assert bodies == [[1, 2], [3], [4]]


@responses.activate
def test_connection_check(sleeper, clock) -> None:
    _token_ok("abcdefghijklmnop")
    res = _client(sleeper, clock).test_connection()
    assert res == {"success": True, "message": "连接成功", "token": "abcdefghij..."}


@responses.activate
def test_connection_check_with_candidate_settings(sleeper, clock) -> None:
    responses.add(responses.GET, "http://other:5700/open/auth/token", json={"code": 401, "message": "bad"})
    res = _client(sleeper, clock).test_connection({"qlUrl": "http://other:5700", "clientId": "x", "clientSecret": "y"})
    assert res == {"success": False, "message": "bad"}


def test_connection_check_without_settings(sleeper, clock) -> None:
    res = _client(sleeper, clock, conn={}).test_connection()
    assert res["success"] is False
    assert res["message"] == "请先配置青龙面板连接信息"


@responses.activate
def test_export_records_failures_per_part(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, json={"code": 500, "message": "nope"})
    responses.add(responses.GET, f"{BASE}/open/subscriptions", json={"code": 200, "data": [{"id": 1}]})
    out = _client(sleeper, clock, max_retries=1).export_panel()
    assert out["version"] == "1.0.0"
    assert out["data"]["exportError_environments"] == "nope"
    assert out["data"]["subscriptions"] == [{"id": 1}]


@responses.activate
def test_import_skips_existing_without_overwrite(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, json={"code": 200, "data": [{"id": 1, "name": "A", "value": "1"}]})
    responses.add(responses.POST, ENVS_URL, json={"code": 200, "data": [{"id": 2, "name": "B", "value": "2"}]})
    res = _client(sleeper, clock).import_variables([{"name": "A", "value": "x"}, {"name": "B", "value": "2"}, {"name": "C"}])
    assert [x["name"] for x in res["success"]] == ["B"]
    assert [x["name"] for x in res["skipped"]] == ["A"]
    assert [x["name"] for x in res["failed"]] == ["C"]


@responses.activate
def test_import_overwrites_when_asked(sleeper, clock) -> None:
    _token_ok()
    responses.add(responses.GET, ENVS_URL, json={"code": 200, "data": [{"id": 1, "name": "A", "value": "1", "remarks": "r"}]})
    responses.add(responses.PUT, ENVS_URL, json={"code": 200, "data": None})
    res = _client(sleeper, clock).import_variables([{"name": "A", "value": "x"}], overwrite=True)
    assert [x["name"] for x in res["success"]] == ["A"]
    assert _body(responses.calls[-1]) == {"id": 1, "name": "A", "value": "x", "remarks": "r"}
