from collections import deque
from datetime import datetime

import pytest

from qthrottle.remote import RemoteLimits
from qthrottle.schedule import ThrottleProfile, ThrottleRule, TimeWindow
from qthrottle.utils import parse_hhmm


class FakeApi:
    """In-memory stand-in for QBittorrentApi.

    Failures are scripted per operation: push exception instances onto
    ``fail[op]`` and each call pops one before doing the real work.
    """

    def __init__(self, upload=0, download=0):
        self.upload = upload
        self.download = download
        self.fail = {op: deque() for op in ("authenticate", "get_limits", "set_limits", "logout")}
        self.calls = []
        self.expires_in = None

    def _maybe_fail(self, op):
        self.calls.append(op)
        if self.fail[op]:
            raise self.fail[op].popleft()

    def authenticate(self):
        self._maybe_fail("authenticate")
        return self.expires_in

    def logout(self):
        self._maybe_fail("logout")

    def version(self):
        return "v4.6.0"

    def get_limits(self):
        self._maybe_fail("get_limits")
        return RemoteLimits(self.upload, self.download)

    def set_limits(self, upload_bytes, download_bytes):
        self._maybe_fail("set_limits")
        self.upload, self.download = upload_bytes, download_bytes

    def count(self, op):
        return self.calls.count(op)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingWait:
    """Replacement for retry.wait that records delays instead of sleeping."""

    def __init__(self):
        self.delays = []

    def __call__(self, delay, cancel=None):
        self.delays.append(delay)
        return cancel is not None and cancel.is_set()


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def night_profile():
    window = TimeWindow(parse_hhmm("22:00"), parse_hhmm("06:00"))
    return ThrottleProfile(
        rules=(ThrottleRule("night", upload_kib=100, download_kib=200, window=window),),
        default=ThrottleRule("default"),
    )


def at(hh, mm=0, day=16):
    """2026-10-16 is a Friday."""
    return datetime(2026, 10, day, hh, mm)
