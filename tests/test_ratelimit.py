from svitlogics import ratelimit
from svitlogics.redis_ratelimit import RedisRateLimiter


class FakePipeline:
    def __init__(self, server):
        self.server = server
        self.ops = []

    def incr(self, key, amount=1):
        self.ops.append(("incr", key, amount))
        return self

    def expireat(self, key, when):
        self.ops.append(("expireat", key, when))
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.ops = []
        return False

    def execute(self):
        out = []
        for op, key, arg in self.ops:
            if op == "incr":
                self.server.counts[key] = self.server.counts.get(key, 0) + arg
                out.append(self.server.counts[key])
            else:
                self.server.expiry[key] = arg
                out.append(True)
        return out


class FakeRedis:
    def __init__(self):
        self.counts = {}
        self.expiry = {}

    def pipeline(self):
        return FakePipeline(self)


def test_in_process_limiter_blocks_after_max(monkeypatch):
    monkeypatch.setattr(ratelimit, "MAX_REQUESTS", 3)

    results = [ratelimit.check_and_increment("analyze", "1.2.3.4") for _ in range(4)]

    assert [r[0] for r in results] == [True, True, True, False]
    assert [r[1] for r in results] == [2, 1, 0, 0]
    assert len({r[2] for r in results}) == 1


def test_in_process_limiter_keys_are_independent(monkeypatch):
    monkeypatch.setattr(ratelimit, "MAX_REQUESTS", 1)

    assert ratelimit.check_and_increment("analyze", "a")[0]
    assert not ratelimit.check_and_increment("analyze", "a")[0]
    assert ratelimit.check_and_increment("analyze", "b")[0]
    assert ratelimit.check_and_increment("stats", "a")[0]


def test_in_process_limiter_window_resets(monkeypatch):
    monkeypatch.setattr(ratelimit, "MAX_REQUESTS", 1)
    monkeypatch.setattr(ratelimit, "WINDOW_SECONDS", 60)
    clock = {"now": 1000}
    monkeypatch.setattr(ratelimit, "_now", lambda: clock["now"])

    assert ratelimit.check_and_increment("analyze", "a") == (True, 0, 1060)
    assert ratelimit.check_and_increment("analyze", "a") == (False, 0, 1060)
    clock["now"] = 1060
    assert ratelimit.check_and_increment("analyze", "a") == (True, 0, 1120)


def test_redis_limiter_counts_per_window():
    server = FakeRedis()
    limiter = RedisRateLimiter(window_seconds=60, max_requests=2, client=server)

    first = limiter.check_and_increment("analyze", "1.2.3.4", now=1000)
    second = limiter.check_and_increment("analyze", "1.2.3.4", now=1010)
    third = limiter.check_and_increment("analyze", "1.2.3.4", now=1019)
    next_window = limiter.check_and_increment("analyze", "1.2.3.4", now=1020)

    assert first == (True, 1, 1020)
    assert second == (True, 0, 1020)
    assert third == (False, 0, 1020)
    assert next_window == (True, 1, 1080)
    assert server.expiry["svitlogics:rl:analyze:1.2.3.4:960"] == 1020
    assert server.expiry["svitlogics:rl:analyze:1.2.3.4:1020"] == 1080


def test_redis_limiter_blank_identifiers_use_defaults():
    server = FakeRedis()
    limiter = RedisRateLimiter(window_seconds=60, max_requests=5, client=server)

    limiter.check_and_increment(" ", "", now=0)

    assert list(server.counts) == ["svitlogics:rl:default:anon:0"]
