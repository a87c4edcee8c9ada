"""Tests for the detection pipeline."""

import pytest
from crawlgate.core.engine import Decision, DetectionEngine
from crawlgate.core.fingerprint import RequestView
from crawlgate.core.rate_limit import RateLimiter
from crawlgate.core.rules import HeaderPattern, RuleManager, RuleSet


REAL_CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

REAL_HEADERS = [
    ("User-Agent", REAL_CHROME_UA),
    ("Accept", "text/html,application/xhtml+xml"),
    ("Accept-Language", "en-US,en;q=0.9"),
    ("Accept-Encoding", "gzip, deflate, br"),
]


def _engine(max_requests: int = 60) -> DetectionEngine:
    rules = RuleManager("http://rules.test", "bb-sk-test")
    return DetectionEngine(rules, RateLimiter(max_requests=max_requests, window_seconds=60))


def _view(headers=None, client: str = "198.51.100.10:55000", ua: str | None = None) -> RequestView:
    headers = list(REAL_HEADERS if headers is None else headers)
    if ua is not None:
        headers = [h for h in headers if h[0].lower() != "user-agent"] + [("User-Agent", ua)]
    return RequestView(method="GET", path="/", headers=headers, client=client)


class TestKnownBotUA:
    """AI crawlers and scrapers are blocked on the UA alone."""

    @pytest.mark.parametrize("ua", [
        "ChatGPT-User/1.0",
        "Mozilla/5.0 AppleWebKit/537.36 (KHTML, like Gecko; compatible; GPTBot/1.2)",
        "Mozilla/5.0 (compatible; Bytespider; spider-feedback@bytedance.com)",
        "meta-externalagent/1.1",
    ])
    def test_ai_crawlers_blocked(self, ua):
        d = _engine().analyze(_view(ua=ua))
        assert d == Decision("block", "known_bot_ua", 0.95)

    def test_ua_check_runs_before_ip(self):
        d = _engine().analyze(_view(ua="ClaudeBot/1.0", client="20.15.240.5"))
        assert d.reason == "known_bot_ua"


class TestKnownBotIP:
    def test_default_range_blocked(self):
        d = _engine().analyze(_view(client="20.15.240.5"))
        assert d == Decision("block", "known_bot_ip", 0.90)

    def test_forwarded_for_is_checked(self):
        headers = REAL_HEADERS + [("X-Forwarded-For", "40.83.2.9, 10.0.0.1")]
        d = _engine().analyze(_view(headers=headers, client="10.0.0.1:443"))
        assert d.reason == "known_bot_ip"


class TestRateLimiting:
    def test_61st_request_in_window_blocked(self):
        engine = _engine()
        decisions = [engine.analyze(_view()) for _ in range(61)]
        assert all(d.action == "allow" for d in decisions[:60])
        assert decisions[60] == Decision("block", "rate_limit", 0.70)

    def test_limit_keyed_by_client_ip(self):
        engine = _engine(max_requests=1)
        assert engine.analyze(_view(client="198.51.100.1")).blocked is False
        assert engine.analyze(_view(client="198.51.100.1")).blocked is True
        assert engine.analyze(_view(client="198.51.100.2")).blocked is False

    def test_blocked_ua_does_not_consume_quota(self):
        engine = _engine(max_requests=1)
        engine.analyze(_view(ua="GPTBot"))
        assert engine.analyze(_view()).blocked is False


class TestHeaderAnomaly:
    def test_empty_accept_language_alone_allowed(self):
        headers = [h for h in REAL_HEADERS if h[0] != "Accept-Language"] + [("Accept-Language", "")]
        d = _engine().analyze(_view(headers=headers))
        assert d == Decision("allow", "", 0)

    def test_bare_client_blocked_with_raw_score(self):
        # accept */* (0.3) + no accept-language (0.5) + no accept-encoding (0.4)
        headers = [("User-Agent", REAL_CHROME_UA), ("Accept", "*/*")]
        d = _engine().analyze(_view(headers=headers))
        assert d.action == "block"
        assert d.reason == "header_anomaly"
        assert d.confidence == pytest.approx(1.2)  # not clamped

    def test_score_equal_to_threshold_allowed(self):
        engine = _engine()
        engine.rules.apply(RuleSet(
            version=2,
            header_patterns=[HeaderPattern(name="accept-language", pattern="^$", weight=0.7)],
            anomaly_threshold=0.7,
        ))
        d = engine.analyze(_view(headers=[("User-Agent", REAL_CHROME_UA)]))
        assert d.blocked is False


class TestCleanTraffic:
    def test_perfect_request_allowed(self):
        d = _engine().analyze(_view())
        assert d == Decision("allow", "", 0)
        assert d.confidence == 0
        assert d.blocked is False

    def test_missing_user_agent_is_not_a_ua_hit(self):
        headers = [h for h in REAL_HEADERS if h[0] != "User-Agent"]
        d = _engine().analyze(_view(headers=headers))
        assert d.action == "allow"
