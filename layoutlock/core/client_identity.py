"""
Privacy-preserving caller identity and suspicious-traffic scoring.

Quota and burst counters are keyed by a salted SHA-256 of the caller's network
address and user agent. The raw address is never stored or logged.
"""
import hashlib
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

AUTOMATION_AGENT_MARKERS = (
    "curl",
    "wget",
    "python-requests",
    "python-urllib",
    "httpx",
    "aiohttp",
    "go-http-client",
    "okhttp",
    "scrapy",
    "headless",
    "phantomjs",
    "selenium",
    "puppeteer",
    "playwright",
    "bot",
    "spider",
    "crawler",
)


@dataclass
class TrafficAssessment:
    """Heuristic score for one request's headers."""

    score: int = 0
    reasons: List[str] = field(default_factory=list)

    @property
    def is_automation(self) -> bool:
        return "automation_user_agent" in self.reasons


def get_client_ip(headers: Mapping[str, str], peer_host: Optional[str] = None) -> str:
    """Resolve the caller address from proxy headers, falling back to the socket peer."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(header)
        if value:
            return value.strip()

    return peer_host or "unknown"


def get_client_hash(headers: Mapping[str, str], peer_host: Optional[str], salt: str) -> str:
    ip = get_client_ip(headers, peer_host)
    user_agent = (headers.get("user-agent") or "unknown")[:160]
    return hashlib.sha256(f"{salt}|{ip}|{user_agent}".encode("utf-8")).hexdigest()


def assess_suspicious_traffic(headers: Mapping[str, str]) -> TrafficAssessment:
    assessment = TrafficAssessment()
    user_agent = (headers.get("user-agent") or "").strip().lower()

    if not user_agent:
        assessment.score += 3
        assessment.reasons.append("missing_user_agent")
    elif any(marker in user_agent for marker in AUTOMATION_AGENT_MARKERS):
        assessment.score += 4
        assessment.reasons.append("automation_user_agent")

    if not headers.get("accept-language"):
        assessment.score += 1
        assessment.reasons.append("missing_accept_language")

    if not headers.get("origin") and not headers.get("referer"):
        assessment.score += 1
        assessment.reasons.append("missing_origin")

    if not headers.get("accept"):
        assessment.score += 1
        assessment.reasons.append("missing_accept")

    return assessment


def should_apply_suspicious_gate(assessment: TrafficAssessment) -> bool:
    if assessment.score >= 6:
        return True
    return assessment.score >= 4 and assessment.is_automation
