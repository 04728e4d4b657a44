"""Client identity derived from an incoming request."""
from dataclasses import dataclass
import hashlib

from starlette.requests import Request

from karma_cms.config import Settings


@dataclass(frozen=True)
class ClientInfo:
    """Who is calling: address, agent and a coarse device fingerprint."""

    ip_address: str
    user_agent: str
    device_fingerprint: str


def get_request_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    """Extract best-effort client IP.

    Forwarding headers are only honoured behind a trusted proxy; otherwise a
    caller could rotate them to dodge per-IP lockout.
    """
    if trust_proxy_headers:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            return xff.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


def device_fingerprint(user_agent: str, accept_language: str) -> str:
    digest = hashlib.sha256(f"{user_agent}\n{accept_language}".encode("utf-8")).hexdigest()
    return digest[:32]


def client_info_from_request(request: Request, settings: Settings) -> ClientInfo:
    user_agent = request.headers.get("user-agent", "unknown")
    return ClientInfo(
        ip_address=get_request_ip(request, settings.trust_proxy_headers),
        user_agent=user_agent[:255],
        device_fingerprint=device_fingerprint(user_agent, request.headers.get("accept-language", "")),
    )
