# QLSync test scripts
from __future__ import annotations

from typing import Any, Iterable

import pytest

from providers.identity._id_base import IdentityValidation
from providers.identity._id_JD import JDMatcher
from providers.identity.registry import MatcherRegistry
from providers.panel import RemoteVariable, UpsertResult
from ql_platform.cookies import Cookie, CookieAccessor, MemoryCookieJar
from ql_platform.errors import AuthError
from ql_platform.orchestrator import NO_ENABLED_SITES, SYNC_SUCCESS, SyncOrchestrator
from ql_platform.storage import StorageManager
from ql_platform.sync_log import SyncLog

JD_URL = "https://home.m.jd.com/myJd/newhome.action"
SHOP_URL = "https://shop.example.com/"


class FakeClient:
    def __init__(self, variables: Iterable[RemoteVariable] = ()) -> None:
        self.variables = list(variables)
        self.upserts: list[tuple[str, str, str]] = []
        self.updates: list[RemoteVariable] = []
        self.fail_with: Exception | None = None

    def list_variables(self, use_cache: bool = True) -> list[RemoteVariable]:
        return list(self.variables)

    def upsert_variable(self, name: str, value: str, remarks: str = "") -> UpsertResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.upserts.append((name, value, remarks))
        return UpsertResult("created", RemoteVariable(id=99, name=name, value=value, remarks=remarks))

    def update_variable(self, variable: RemoteVariable) -> RemoteVariable:
        self.updates.append(variable)
        return variable


class StubJD(JDMatcher):
    def __init__(self, result: IdentityValidation) -> None:
        super().__init__()
        self.result = result
        self.checked: list[str] = []

    def validate_identity(self, cookie_string: str) -> IdentityValidation:
        self.checked.append(cookie_string)
        return self.result


VALID = IdentityValidation(valid=True, reason="验证成功", identity={"nickname": "Nick", "headImageUrl": "", "ptPin": "jd_user"})


@pytest.fixture()
def jar() -> MemoryCookieJar:
    return MemoryCookieJar(
        [
            Cookie("pt_key", "AAJ", ".jd.com"),
            Cookie("pt_pin", "jd_user", ".jd.com"),
            Cookie("sid", "abc", "shop.example.com"),
            Cookie("theme", "dark", "shop.example.com"),
        ]
    )


class Notes:
    def __init__(self) -> None:
        self.items: list[tuple[str, str]] = []

    def __call__(self, title: str, message: str) -> None:
        self.items.append((title, message))


def _orch(storage, jar, clock, sleeper, client, matcher=None, notes=None) -> SyncOrchestrator:
    return SyncOrchestrator(
        storage=storage,
        accessor=CookieAccessor(jar, clock=clock),
        client=client,
        registry=MatcherRegistry([matcher or StubJD(VALID)]),
        sync_log=SyncLog(storage, clock=clock),
        notifier=notes or Notes(),
        sleep=sleeper,
        clock=clock,
    )


def _site(storage: StorageManager, name: str, url: str, env: str, **kw: Any) -> dict[str, Any]:
    return storage.add_site({"name": name, "url": url, "envName": env, **kw})


def test_unrecognized_site_upserts_by_env_name(storage, connected, jar, clock, sleeper) -> None:
    client = FakeClient()
    site = _site(storage, "Shop", SHOP_URL, "SHOP_CK")
    out = _orch(storage, jar, clock, sleeper, client).sync_site(site)
    assert (out.success, out.message) == (True, SYNC_SUCCESS)
    name, value, remarks = client.upserts[0]
    assert (name, value) == ("SHOP_CK", "sid=abc;theme=dark;")
    assert remarks.startswith("由Cookie同步助手更新于 ")
    assert "智能匹配" not in remarks
    saved = storage.get_site(site["id"])
    assert saved["lastStatus"] == "success"
    assert saved["lastSync"] == int(clock() * 1000)
    assert SyncLog(storage).get_logs()[0]["message"] == SYNC_SUCCESS


def test_valid_identity_updates_matched_variable(storage, connected, jar, clock, sleeper) -> None:
    existing = RemoteVariable(id=3, name="JD_COOKIE", value="pt_key=old;pt_pin=jd_user;", remarks="x", status=0, extra={"position": 1})
    client = FakeClient([RemoteVariable(id=2, name="JD_COOKIE", value="pt_key=z;pt_pin=someone;"), existing])
    site = _site(storage, "JD", JD_URL, "JD_COOKIE_2")
    out = _orch(storage, jar, clock, sleeper, client).sync_site(site)
    assert out.success is True
    assert client.upserts == []
    updated = client.updates[0]
    assert updated.id == 3
    assert updated.value == "pt_key=AAJ;pt_pin=jd_user;"
    assert updated.status == 0
    assert updated.extra == {"position": 1}
    assert updated.remarks.endswith("(智能匹配)")


def test_valid_identity_without_match_falls_back_to_env_name(storage, connected, jar, clock, sleeper) -> None:
    client = FakeClient([RemoteVariable(id=2, name="JD_COOKIE", value="pt_key=z;pt_pin=someone;")])
    site = _site(storage, "JD", JD_URL, "JD_COOKIE")
    assert _orch(storage, jar, clock, sleeper, client).sync_site(site).success is True
    assert client.updates == []
    assert client.upserts[0][0] == "JD_COOKIE"


def test_invalid_identity_writes_nothing(storage, connected, jar, clock, sleeper) -> None:
    client = FakeClient()
    notes = Notes()
    matcher = StubJD(IdentityValidation(valid=False, reason="验证失败: 1001"))
    site = _site(storage, "JD", JD_URL, "JD_COOKIE")
    out = _orch(storage, jar, clock, sleeper, client, matcher=matcher, notes=notes).sync_site(site)
    assert out.success is False
    assert out.message == "京东Cookie无效: 验证失败: 1001"
    assert client.upserts == [] and client.updates == []
    assert storage.get_site(site["id"])["lastStatus"] == "failed"
    assert SyncLog(storage).get_logs()[0]["status"] == "failed"
    assert notes.items == [("JD 同步失败", "京东Cookie无效: 验证失败: 1001")]


def test_missing_cookies_fail_the_site(storage, connected, clock, sleeper) -> None:
    site = _site(storage, "Empty", "https://nothing.example.org/", "X")
    out = _orch(storage, MemoryCookieJar(), clock, sleeper, FakeClient()).sync_site(site)
    assert out.success is False
    assert out.message == "未找到Cookie，请先登录目标网站"


def test_batch_continues_past_failures_with_delay(storage, connected, jar, clock, sleeper) -> None:
    _site(storage, "Shop", SHOP_URL, "SHOP_CK")
    _site(storage, "Empty", "https://nothing.example.org/", "X")
    _site(storage, "Off", SHOP_URL, "OFF", enabled=False)
    _site(storage, "Manual", SHOP_URL, "MANUAL", autoSync=False)
    _site(storage, "Shop2", SHOP_URL, "SHOP_CK_2")
    client = FakeClient()
    out = _orch(storage, jar, clock, sleeper, client).sync_all()
    assert out.success is False
    assert out.message == "成功: 2, 失败: 1"
    assert [r["siteName"] for r in out.results] == ["Shop", "Empty", "Shop2"]
    assert [r["success"] for r in out.results] == [True, False, True]
    assert [u[0] for u in client.upserts] == ["SHOP_CK", "SHOP_CK_2"]
    assert sleeper.calls == [1.0, 1.0]


def test_batch_without_sites(storage, connected, jar, clock, sleeper) -> None:
    _site(storage, "Off", SHOP_URL, "OFF", enabled=False)
    out = _orch(storage, jar, clock, sleeper, FakeClient()).sync_all()
    assert (out.success, out.message, out.results) == (True, NO_ENABLED_SITES, [])
    assert sleeper.calls == []


def test_panel_errors_are_reported(storage, connected, jar, clock, sleeper) -> None:
    client = FakeClient()
    client.fail_with = AuthError()
    site = _site(storage, "Shop", SHOP_URL, "SHOP_CK")
    out = _orch(storage, jar, clock, sleeper, client).sync_site(site)
    assert out.success is False
    assert out.message == "获取Token失败，请检查Client ID和Secret"


def test_selected_cookies_sync(storage, connected, jar, clock, sleeper) -> None:
    client = FakeClient()
    site = _site(storage, "Shop", SHOP_URL, "SHOP_CK")
    out = _orch(storage, jar, clock, sleeper, client).sync_selected_cookies(site["id"], ["theme"])
    assert out.success is True
    assert out.message == "同步成功，已同步 1 个Cookie"
    assert out.to_dict()["syncedCount"] == 1
    assert client.upserts[0][1] == "theme=dark;"
    assert "(选中1个Cookie)" in client.upserts[0][2]
    assert SyncLog(storage).get_logs()[0]["message"] == "同步选中Cookie成功 (1个)"


def test_selected_cookies_none_present(storage, connected, jar, clock, sleeper) -> None:
    site = _site(storage, "Shop", SHOP_URL, "SHOP_CK")
    out = _orch(storage, jar, clock, sleeper, FakeClient()).sync_selected_cookies(site["id"], ["nope"])
    assert (out.success, out.message) == (False, "未找到指定的Cookie")


def test_selected_cookies_preconditions(storage, jar, clock, sleeper) -> None:
    orch = _orch(storage, jar, clock, sleeper, FakeClient())
    assert orch.sync_selected_cookies("missing", ["a"]).message == "网站配置不存在"
    off = _site(storage, "Off", SHOP_URL, "OFF", enabled=False)
    assert orch.sync_selected_cookies(off["id"], ["sid"]).message == "网站配置已禁用"
    on = _site(storage, "On", SHOP_URL, "ON")
    assert orch.sync_selected_cookies(on["id"], ["sid"]).message == "请先配置青龙面板连接信息"


def test_sync_by_unknown_id(storage, connected, jar, clock, sleeper) -> None:
    assert _orch(storage, jar, clock, sleeper, FakeClient()).sync_site_by_id("missing") is None


def test_check_cookies_for_identity_site(storage, jar, clock, sleeper) -> None:
    orch = _orch(storage, jar, clock, sleeper, FakeClient())
    res = orch.check_site_cookies({"url": JD_URL})
    assert res["success"] is True
    assert res["isJD"] is True
    assert res["jdValidation"]["valid"] is True
    assert res["message"] == "京东Cookie有效 (用户: Nick)"

    bad = _orch(storage, jar, clock, sleeper, FakeClient(), matcher=StubJD(IdentityValidation(False, "过期")))
    res = bad.check_site_cookies({"url": JD_URL})
    assert res["success"] is False
    assert res["validCount"] == 0
    assert res["message"] == "京东Cookie验证失败: 过期"


def test_check_cookies_plain_site(storage, clock, sleeper) -> None:
    jar = MemoryCookieJar([Cookie("a", "1", ".example.com"), Cookie("b", "2", ".example.com", expiration_date=clock() - 1)])
    orch = _orch(storage, jar, clock, sleeper, FakeClient())
    res = orch.check_site_cookies({"url": "https://www.example.com/"})
    assert res["success"] is True
    assert (res["cookieCount"], res["validCount"], res["expiredCount"]) == (2, 1, 1)
    assert res["message"] == "找到2个Cookie，其中1个已过期"
    assert "isJD" not in res
    empty = orch.check_site_cookies({"url": "https://nowhere.test/"})
    assert (empty["success"], empty["hasCookies"], empty["cookieCount"]) == (False, False, 0)


def test_delete_site_cookies(storage, jar, clock, sleeper) -> None:
    orch = _orch(storage, jar, clock, sleeper, FakeClient())
    site = _site(storage, "Shop", SHOP_URL, "SHOP_CK")
    res = orch.delete_site_cookies(site["id"])
    assert res == {"success": True, "message": "删除成功，已删除 2 个Cookie", "deletedCount": 2}
    assert jar.get_all(SHOP_URL) == []
    assert orch.delete_site_cookies("missing")["message"] == "网站配置不存在"


def test_storage_failure_while_recording_does_not_stop_batch(storage, connected, jar, clock, sleeper, monkeypatch) -> None:
    _site(storage, "Shop", SHOP_URL, "SHOP_CK")
    _site(storage, "Shop2", SHOP_URL, "SHOP_CK_2")
    real = storage.update_logs
    calls = {"n": 0}

    def flaky(fn):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OSError("disk full")
        return real(fn)

    monkeypatch.setattr(storage, "update_logs", flaky)
    client = FakeClient()
    out = _orch(storage, jar, clock, sleeper, client).sync_all()
    assert [u[0] for u in client.upserts] == ["SHOP_CK", "SHOP_CK_2"]
    assert [r["success"] for r in out.results] == [True, True]
    assert [x["siteName"] for x in SyncLog(storage).get_logs()] == ["Shop2"]


def test_unexpected_site_error_is_contained_in_batch(storage, connected, jar, clock, sleeper, monkeypatch) -> None:
    first = _site(storage, "Shop", SHOP_URL, "SHOP_CK")
    _site(storage, "Shop2", SHOP_URL, "SHOP_CK_2")
    client = FakeClient()
    orch = _orch(storage, jar, clock, sleeper, client)
    real = orch.sync_site

    def boom(site, cookie_names=None):
        if site["id"] == first["id"]:
            raise RuntimeError("boom")
        return real(site, cookie_names)

    monkeypatch.setattr(orch, "sync_site", boom)
    out = orch.sync_all()
    assert [(r["siteName"], r["success"]) for r in out.results] == [("Shop", False), ("Shop2", True)]
    assert out.results[0]["message"] == "boom"
    assert out.message == "成功: 1, 失败: 1"
