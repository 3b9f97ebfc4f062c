from __future__ import annotations

import threading

from tlproxy.credentials import CredentialRotator, parse_api_keys


def test_parse_api_keys_trims_and_skips_empty_entries():
    assert parse_api_keys(" k1 , ,k2,  k3 ,") == ["k1", "k2", "k3"]
    assert parse_api_keys("") == []
    assert parse_api_keys(None) == []


def test_rotation_visits_each_key_once_then_wraps():
    rotator = CredentialRotator("k1,k2,k3")
    assert [rotator.next_key() for _ in range(3)] == ["k1", "k2", "k3"]
    assert rotator.next_key() == "k1"


def test_empty_pool_returns_empty_key():
    rotator = CredentialRotator(" , ")
    assert len(rotator) == 0
    assert rotator.next_key() == ""


def test_reload_resets_cursor():
    rotator = CredentialRotator("a,b")
    assert rotator.next_key() == "a"
    rotator.reload("x,y,z")
    assert len(rotator) == 3
    assert rotator.next_key() == "x"


def test_concurrent_rotation_hands_out_keys_evenly():
    rotator = CredentialRotator("a,b,c,d")
    seen: list[str] = []
    lock = threading.Lock()

    def _worker() -> None:
        for _ in range(100):
            key = rotator.next_key()
            with lock:
                seen.append(key)

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 800
    assert {key: seen.count(key) for key in "abcd"} == {"a": 200, "b": 200, "c": 200, "d": 200}
