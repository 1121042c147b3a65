# QLSync test scripts
from __future__ import annotations

import pytest
import requests
import responses

from providers._http_common import build_session, request_with_retries, safe_json
from ql_platform.errors import TransportError

URL = "http://ql.local:5700/open/envs"


@responses.activate
def test_retries_with_fixed_delay_then_succeeds(sleeper) -> None:
    responses.add(responses.GET, URL, status=502)
    responses.add(responses.GET, URL, body=requests.ConnectionError("reset"))
    responses.add(responses.GET, URL, json={"code": 200, "data": []})
    resp = request_with_retries(build_session(), "GET", URL, max_retries=3, delay=1.0, sleep=sleeper)
    assert resp.status_code == 200
    assert len(responses.calls) == 3
    assert sleeper.calls == [1.0, 1.0]


@responses.activate
def test_last_non_2xx_response_is_returned(sleeper) -> None:
    responses.add(responses.GET, URL, status=500, json={"code": 500, "message": "boom"})
    resp = request_with_retries(build_session(), "GET", URL, max_retries=2, delay=0.5, sleep=sleeper)
    assert resp.status_code == 500
    assert len(responses.calls) == 2
    assert sleeper.calls == [0.5]


@responses.activate
def test_transport_error_after_last_attempt(sleeper) -> None:
    responses.add(responses.GET, URL, body=requests.ConnectionError("down"))
    with pytest.raises(TransportError):
        request_with_retries(build_session(), "GET", URL, max_retries=3, delay=1.0, sleep=sleeper)
    assert len(responses.calls) == 3
    assert sleeper.calls == [1.0, 1.0]


@responses.activate
def test_3xx_is_retried_like_other_non_2xx(sleeper) -> None:
    responses.add(responses.GET, URL, status=304)
    responses.add(responses.GET, URL, json={"code": 200, "data": []})
    resp = request_with_retries(build_session(), "GET", URL, max_retries=3, delay=1.0, sleep=sleeper)
    assert resp.status_code == 200
    assert len(responses.calls) == 2
    assert sleeper.calls == [1.0]


@responses.activate
def test_safe_json_tolerates_garbage() -> None:
    responses.add(responses.GET, URL, body="<html>", content_type="text/html")
    responses.add(responses.GET, URL + "/x", body='{"a": 1}', content_type="text/plain")
    s = build_session()
    assert safe_json(s.get(URL)) == {}
    assert safe_json(s.get(URL + "/x")) == {"a": 1}
