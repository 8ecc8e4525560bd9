"""Requester identity for HTTP requests.

Token issuance and validation live outside this service. By default an
authenticating proxy in front of it forwards the verified identity in
headers; any other ``IdentityResolver`` can be passed to ``create_app``.
"""

from collections.abc import Callable

from fastapi import Request

from ..errors import AuthenticationRequired
from ..models import MAX_LEVEL, MIN_LEVEL, ClientInfo, Identity

REQUESTER_HEADER = "X-Requester-Id"
CLEARANCE_HEADER = "X-Clearance-Level"

IdentityResolver = Callable[[Request], Identity]


def header_identity(request: Request) -> Identity:
    requester_id = request.headers.get(REQUESTER_HEADER)
    raw_level = request.headers.get(CLEARANCE_HEADER)
    if not requester_id or raw_level is None:
        raise AuthenticationRequired()
    try:
        level = int(raw_level)
    except ValueError:
        raise AuthenticationRequired(f"Invalid {CLEARANCE_HEADER}: {raw_level!r}")
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise AuthenticationRequired(f"{CLEARANCE_HEADER} must be {MIN_LEVEL}-{MAX_LEVEL}")
    return Identity(requester_id=requester_id, clearance_level=level)


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
