"""
Request view + fingerprint building.

RequestView is the framework-neutral shape the pipeline consumes. The
middleware builds one from a Starlette request; tests build them by hand.
"""

import time
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from crawlgate.core.ip import extract_ip


@dataclass(frozen=True)
class RequestView:
    """Normalized view of one incoming request."""
    method: str = "GET"
    path: str = "/"
    headers: list[tuple[str, str]] = field(default_factory=list)  # as received
    client: str = ""  # transport peer, may carry :port


def normalize_headers(raw: list[tuple[str, str]]) -> dict[str, str]:
    """Lower-case names, join repeated headers with ", ", keep arrival order."""
    merged: dict[str, list[str]] = {}
    for name, value in raw:
        merged.setdefault(name.lower(), []).append(value)
    return {name: ", ".join(values) for name, values in merged.items()}


class Fingerprint(BaseModel):
    """Wire shape posted to /v1/fingerprints."""
    model_config = ConfigDict(populate_by_name=True)

    ip: str
    user_agent: str = Field(alias="userAgent")
    header_order: list[str] = Field(alias="headerOrder")
    headers: dict[str, str]
    path: str
    method: str
    ts: int  # epoch ms


def build_fingerprint(view: RequestView, now: float | None = None) -> Fingerprint:
    headers = normalize_headers(view.headers)
    ts = time.time() if now is None else now
    return Fingerprint(
        ip=extract_ip(headers, view.client),
        user_agent=headers.get("user-agent", ""),
        header_order=list(headers),
        headers=headers,
        path=view.path,
        method=view.method,
        ts=int(ts * 1000),
    )
