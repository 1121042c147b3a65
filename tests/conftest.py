# QLSync test scripts
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ql_platform.storage import LocalStore, StorageManager  # noqa: E402
from ql_platform.vault import SecretVault  # noqa: E402

QL_URL = "http://ql.local:5700"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def config_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
    return tmp_path


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def store(config_base: Path) -> LocalStore:
    return LocalStore(config_base / "state.json")


@pytest.fixture()
def storage(store: LocalStore) -> StorageManager:
    vault = SecretVault(store.get("installId") or "test-install", iterations=1_000)
    return StorageManager(store, vault=vault)


@pytest.fixture()
def connected(storage: StorageManager) -> dict[str, Any]:
    return storage.save_config(
        {"qlUrl": QL_URL + "/", "clientId": "cid", "clientSecret": "csecret", "autoSync": False, "syncInterval": 30}
    )


class NullTimer:
    def __init__(self, delay: float, fn, args: tuple = ()) -> None:
        self.delay = delay
        self.daemon = False

    def start(self) -> None:
        pass

    def cancel(self) -> None:
        pass


@pytest.fixture()
def runtime(storage: StorageManager, clock: FakeClock, sleeper: SleepRecorder):
    import requests

    from ql_platform.config_base import DEFAULT_CFG
    from ql_platform.cookies import MemoryCookieJar
    from providers.identity._id_JD import JDMatcher
    from qlsync import build_runtime

    rt = build_runtime(
        dict(DEFAULT_CFG),
        store=storage.store,
        vault=storage.vault,
        jar=MemoryCookieJar(),
        matchers=[JDMatcher(session=requests.Session())],
        sleep=sleeper,
        clock=clock,
        timer_factory=NullTimer,
    )
    yield rt
    rt.stop()
