"""
Detection engine — ordered, short-circuiting checks.

  1. User-Agent blocklist    → block known_bot_ua   (0.95)
  2. IP / CIDR blocklist     → block known_bot_ip   (0.90)
  3. Per-IP rate limit       → block rate_limit     (0.70)
  4. Header anomaly score    → block header_anomaly (score, unclamped)
  5. Otherwise               → allow

Cheap, high-confidence checks run first; the rate limiter (which counts the
request) runs before the regex scoring.
"""

from dataclasses import dataclass

from crawlgate.core.fingerprint import RequestView, normalize_headers
from crawlgate.core.ip import extract_ip
from crawlgate.core.rate_limit import RateLimiter
from crawlgate.core.rules import RuleManager

BLOCK = "block"
ALLOW = "allow"


@dataclass(frozen=True)
class Decision:
    action: str = ALLOW
    reason: str = ""  # known_bot_ua | known_bot_ip | rate_limit | header_anomaly
    confidence: float = 0.0

    @property
    def blocked(self) -> bool:
        return self.action == BLOCK


class DetectionEngine:
    def __init__(self, rules: RuleManager, limiter: RateLimiter):
        self.rules = rules
        self.limiter = limiter

    def analyze(self, view: RequestView) -> Decision:
        headers = normalize_headers(view.headers)
        ip = extract_ip(headers, view.client)
        ua = headers.get("user-agent", "")

        # --- 1. UA ---
        if self.rules.is_blocked_ua(ua):
            return Decision(BLOCK, "known_bot_ua", 0.95)

        # --- 2. IP ---
        if self.rules.is_blocked_ip(ip):
            return Decision(BLOCK, "known_bot_ip", 0.90)

        # --- 3. Rate limit ---
        if self.limiter.is_exceeded(ip):
            return Decision(BLOCK, "rate_limit", 0.70)

        # --- 4. Header anomaly ---
        score = self.rules.header_anomaly_score(headers)
        if score > self.rules.anomaly_threshold():
            return Decision(BLOCK, "header_anomaly", score)

        return Decision()
