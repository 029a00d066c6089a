import json

import pytest
import requests

from presence_core import http_client, network


class FakeHttp:

    def __init__(self, *results):
        self.results = list(results)
        self.posted = []

    def post(self, url, json=None, timeout=None):
        self.posted.append((url, json))
        r = self.results.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


class Status:
    def __init__(self, status_code):
        self.status_code = status_code


@pytest.fixture()
def buffer_file(tmp_path):
    return tmp_path / "pending.jsonl"


def _lines(path):
    return [json.loads(l) for l in path.read_text().splitlines() if l.strip()]


def test_buffer_skips_consecutive_duplicates(buffer_file):
    network.buffer_request("POST", "https://x/stop", {"a": 1}, path=buffer_file)
    network.buffer_request("POST", "https://x/stop", {"a": 1}, path=buffer_file)
    network.buffer_request("POST", "https://x/stop", {"a": 2}, path=buffer_file)
    assert [e["payload"] for e in _lines(buffer_file)] == [{"a": 1}, {"a": 2}]
    assert network.has_buffered_requests(buffer_file)


def test_flush_empty_buffer(buffer_file):
    assert network.flush_buffer(buffer_file) == (0, 0)


def test_flush_keeps_requests_that_still_fail(buffer_file, monkeypatch):
    for n in range(3):
        network.buffer_request("POST", f"https://x/{n}", {"n": n}, path=buffer_file)
    fake = FakeHttp(Status(200), Status(503), requests.ConnectionError("down"))
    monkeypatch.setattr(http_client, "http", fake)

    assert network.flush_buffer(buffer_file) == (1, 2)
    assert [e["payload"]["n"] for e in _lines(buffer_file)] == [1, 2]
    assert [url for url, _ in fake.posted] == ["https://x/0", "https://x/1", "https://x/2"]


def test_rejected_requests_are_not_retried(buffer_file, monkeypatch):
    network.buffer_request("POST", "https://x/stop", {}, path=buffer_file)
    monkeypatch.setattr(http_client, "http", FakeHttp(Status(404)))
    assert network.flush_buffer(buffer_file) == (1, 0)
    assert not buffer_file.exists()


def test_corrupt_lines_are_dropped(buffer_file, monkeypatch):
    buffer_file.write_text("not json\n")
    network.buffer_request("POST", "https://x/stop", {}, path=buffer_file)
    monkeypatch.setattr(http_client, "http", FakeHttp(Status(200)))
    assert network.flush_buffer(buffer_file) == (1, 0)


def test_calls_buffered_during_replay_are_kept(buffer_file, monkeypatch):
    network.buffer_request("POST", "https://x/stop", {"n": 1}, path=buffer_file)

    class BufferingHttp(FakeHttp):
        def post(self, url, json=None, timeout=None):
            # Another thread fails a stop while the replay is running
            network.buffer_request("POST", "https://x/stop", {"n": 2}, path=buffer_file)
            return super().post(url, json=json, timeout=timeout)

    monkeypatch.setattr(http_client, "http", BufferingHttp(Status(200)))
    assert network.flush_buffer(buffer_file) == (1, 1)
    assert [e["payload"] for e in _lines(buffer_file)] == [{"n": 2}]


def test_unsent_lines_stay_ahead_of_new_ones(buffer_file, monkeypatch):
    network.buffer_request("POST", "https://x/stop", {"n": 1}, path=buffer_file)

    class BufferingHttp(FakeHttp):
        def post(self, url, json=None, timeout=None):
            network.buffer_request("POST", "https://x/event", {"n": 2}, path=buffer_file)
            return super().post(url, json=json, timeout=timeout)

    monkeypatch.setattr(http_client, "http", BufferingHttp(Status(503)))
    assert network.flush_buffer(buffer_file) == (0, 2)
    assert [e["payload"]["n"] for e in _lines(buffer_file)] == [1, 2]


def test_interrupted_flush_is_picked_up(buffer_file, monkeypatch):
    inflight = buffer_file.with_name(buffer_file.name + ".flushing")
    inflight.write_text(json.dumps({"method": "POST", "url": "https://x/old", "payload": {}}) + "\n")
    network.buffer_request("POST", "https://x/new", {}, path=buffer_file)
    assert network.has_buffered_requests(buffer_file)

    fake = FakeHttp(Status(200), Status(200))
    monkeypatch.setattr(http_client, "http", fake)
    assert network.flush_buffer(buffer_file) == (2, 0)
    assert [url for url, _ in fake.posted] == ["https://x/old", "https://x/new"]
    assert not inflight.exists()
