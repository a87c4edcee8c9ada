"""
Rule manager — versioned detection rules with background refresh.

Rules:
  1. blockedUAs      → case-insensitive substring blocklist
  2. blockedIPs      → IPv4 CIDR ranges or exact IPs
  3. headerPatterns  → weighted regexes over normalized headers
  4. anomalyThreshold → header score above this = block

Hardcoded defaults are active from construction, so detection works before
the first sync. A sync only wins if the fetched version is strictly newer;
any failure keeps the last good rules.
"""

import re
import threading
from dataclasses import dataclass

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from crawlgate.core.ip import cidr_contains

logger = structlog.get_logger()


class HeaderPattern(BaseModel):
    name: str
    pattern: str
    weight: float = 0.0


class RuleSet(BaseModel):
    """Wire shape served by GET /v1/rules."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: int = Field(default=0, strict=True)
    updated_at: str = Field(default="", alias="updatedAt")
    blocked_uas: list[str] = Field(default_factory=list, alias="blockedUAs")
    blocked_ips: list[str] = Field(default_factory=list, alias="blockedIPs")
    header_patterns: list[HeaderPattern] = Field(default_factory=list, alias="headerPatterns")
    anomaly_threshold: float = Field(default=0.0, alias="anomalyThreshold")

    @field_validator("blocked_uas", "blocked_ips", "header_patterns", mode="before")
    @classmethod
    def _null_as_empty(cls, v):
        # Empty slices arrive as null from the rule server
        return [] if v is None else v


# --- AI crawlers, scrapers and aggressive SEO bots ---
DEFAULT_BLOCKED_UAS: list[str] = [
    "GPTBot", "ChatGPT-User", "OAI-SearchBot",
    "CCBot",
    "anthropic-ai", "ClaudeBot", "Claude-Web",
    "Meta-ExternalAgent", "Meta-ExternalFetcher", "FacebookBot",
    "facebookexternalhit",
    "PerplexityBot",
    "Bytespider",
    "Google-Extended",
    "Applebot-Extended",
    "cohere-ai",
    "Diffbot",
    "ImagesiftBot",
    "Omgilibot",
    "Omgili",
    "YouBot",
    "Amazonbot",
    "AI2Bot", "Ai2Bot-Dolma",
    "Scrapy",
    "PetalBot",
    "Semrushbot",
    "AhrefsBot",
    "MJ12bot",
    "DotBot",
    "Seekport",
    "BLEXBot",
    "DataForSeoBot",
    "magpie-crawler",
    "Timpibot",
    "Velenpublicwebcrawler",
    "Webzio-Extended",
    "iaskspider",
    "Kangaroo Bot",
    "img2dataset",
]

# Crawler egress ranges
DEFAULT_BLOCKED_IPS: list[str] = [
    "20.15.240.0/20",
    "20.171.206.0/23",
    "40.83.2.0/23",
    "52.230.152.0/21",
    "20.171.207.0/24",
]

DEFAULT_RULES = RuleSet(
    version=1,
    updated_at="2026-02-06",
    blocked_uas=DEFAULT_BLOCKED_UAS,
    blocked_ips=DEFAULT_BLOCKED_IPS,
    header_patterns=[
        HeaderPattern(name="accept", pattern=r"^\*/\*$", weight=0.3),
        HeaderPattern(name="accept-language", pattern=r"^$", weight=0.5),
        HeaderPattern(name="accept-encoding", pattern=r"^$", weight=0.4),
    ],
    anomaly_threshold=0.7,
)


@dataclass(frozen=True)
class _Snapshot:
    """A RuleSet plus the caches derived from it. Replaced whole, never mutated."""
    rules: RuleSet
    ua_lower: tuple[str, ...]
    # Parallel to rules.header_patterns; None = failed to compile, never matches.
    header_res: tuple[re.Pattern | None, ...]


def _compile(rules: RuleSet) -> _Snapshot:
    compiled: list[re.Pattern | None] = []
    for hp in rules.header_patterns:
        try:
            compiled.append(re.compile(hp.pattern))
        except re.error:
            logger.warning("header_pattern_invalid", name=hp.name, pattern=hp.pattern)
            compiled.append(None)
    return _Snapshot(
        rules=rules,
        ua_lower=tuple(ua.lower() for ua in rules.blocked_uas),
        header_res=tuple(compiled),
    )


class RuleManager:
    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        defaults: RuleSet = DEFAULT_RULES,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._lock = threading.Lock()
        self._snapshot = _compile(defaults)

    # --- State ---

    def _current(self) -> _Snapshot:
        with self._lock:
            return self._snapshot

    @property
    def rules(self) -> RuleSet:
        return self._current().rules

    @property
    def version(self) -> int:
        return self._current().rules.version

    def apply(self, rules: RuleSet) -> bool:
        """Swap in `rules` if strictly newer. Returns True if applied."""
        # Compile outside the lock; only the swap is exclusive.
        snapshot = _compile(rules)
        with self._lock:
            current_version = self._snapshot.rules.version
            if rules.version <= current_version:
                return False
            self._snapshot = snapshot
        logger.info("rules_updated", old_version=current_version, new_version=rules.version)
        return True

    # --- Sync ---

    async def sync_once(self) -> bool:
        """Fetch rules once. Any failure leaves the active rules in place."""
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                resp = await client.get(
                    f"{self.api_url}/v1/rules",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            logger.warning("rules_sync_failed", error=str(e))
            return False

        if resp.status_code != 200:
            logger.warning("rules_sync_failed", status=resp.status_code)
            return False

        try:
            fetched = RuleSet.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            logger.warning("rules_sync_failed", error="malformed body", detail=str(e)[:200])
            return False

        return self.apply(fetched)

    # --- Matchers ---

    def is_blocked_ua(self, ua: str) -> bool:
        """Case-insensitive substring match against the blocklist."""
        lower = ua.lower()
        for pattern in self._current().ua_lower:
            if pattern in lower:
                return True
        return False

    def is_blocked_ip(self, ip: str) -> bool:
        for entry in self._current().rules.blocked_ips:
            if cidr_contains(entry, ip):
                return True
        return False

    def header_anomaly_score(self, headers: dict[str, str]) -> float:
        """Sum weights of header patterns matching the (possibly missing) header value."""
        snap = self._current()
        score = 0.0
        for hp, regex in zip(snap.rules.header_patterns, snap.header_res):
            if regex is None:
                continue
            if regex.search(headers.get(hp.name.lower(), "")):
                score += hp.weight
        return score

    def anomaly_threshold(self) -> float:
        return self._current().rules.anomaly_threshold
