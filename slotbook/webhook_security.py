"""
Webhook Security Module

Signing for outgoing booking webhooks and the SSRF guard that runs before
every delivery attempt:
- HMAC-SHA256 over the exact request body, hex encoded
- Constant-time comparison for subscribers verifying a delivery
- Target validation: http(s) only, and every resolved address must be public
"""

import hashlib
import hmac
import ipaddress
import json
import logging
import secrets
import socket
import string
import time
from typing import Any, Optional, Union
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
EVENT_HEADER = "X-Webhook-Event"

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300

SECRET_PREFIX = "whsec_"
SECRET_ALPHABET = string.ascii_letters + string.digits

# Hostnames that never leave the local network
BLOCKED_HOST_SUFFIXES = (".local", ".localhost", ".internal", ".localdomain")
BLOCKED_HOSTS = {"localhost", "localhost.localdomain"}


class UnsafeWebhookTargetError(Exception):
    """Raised when a webhook URL points somewhere deliveries must not go"""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def generate_webhook_secret() -> str:
    """New signing secret: "whsec_" followed by 32 alphanumerics"""
    return SECRET_PREFIX + "".join(secrets.choice(SECRET_ALPHABET) for _ in range(32))


def serialize_envelope(envelope: dict[str, Any]) -> bytes:
    """Compact JSON, keys in insertion order. These are the exact bytes that get signed and sent."""
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def build_signed_headers(
    secret: str, body: bytes, event: str, user_agent: str, timestamp: Optional[int] = None
) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        SIGNATURE_HEADER: compute_hmac_sha256(secret, body),
        TIMESTAMP_HEADER: str(int(time.time()) if timestamp is None else timestamp),
        EVENT_HEADER: event,
    }


def verify_timestamp(timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS) -> bool:
    """
    Verify webhook timestamp is within acceptable range.
    Prevents replay attacks by rejecting old webhooks.
    """
    if not timestamp:
        return False

    try:
        age = abs(int(time.time()) - int(timestamp))
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False

    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
        return False
    return True


def verify_webhook_signature(
    secret: str,
    body: bytes,
    signature: Optional[str],
    timestamp: Optional[str] = None,
    max_age: Optional[int] = None,
) -> bool:
    """
    Check a received delivery, for subscribers.

    Args:
        secret: The webhook's signing secret
        body: Raw request body exactly as received
        signature: Value of the X-Webhook-Signature header
        timestamp: Value of the X-Webhook-Timestamp header, checked when max_age is given
        max_age: Reject deliveries older than this many seconds

    Returns:
        True if the signature matches (and the timestamp is fresh, when checked)
    """
    if max_age is not None and not verify_timestamp(timestamp, max_age):
        return False
    return constant_time_compare(compute_hmac_sha256(secret, body), signature or "")


def _is_public_address(address: IPAddress) -> bool:
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    )


def assert_safe_webhook_target(url: str) -> IPAddress:
    """
    Refuse delivery to anything but a public http(s) endpoint.

    Runs before every attempt, since DNS can change after registration.
    Every address the hostname resolves to must be public.

    Returns:
        The validated address to connect to, see pinned_request

    Raises:
        UnsafeWebhookTargetError: retryable only when DNS resolution itself failed
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise UnsafeWebhookTargetError(f"Scheme '{parsed.scheme}' is not allowed")

    host = (parsed.hostname or "").rstrip(".").lower()
    if not host:
        raise UnsafeWebhookTargetError("Webhook URL has no host")
    if host in BLOCKED_HOSTS or host.endswith(BLOCKED_HOST_SUFFIXES):
        raise UnsafeWebhookTargetError(f"Host '{host}' is not publicly routable")

    try:
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
    except ValueError as e:
        raise UnsafeWebhookTargetError(f"Invalid port in webhook URL: {e}") from e

    try:
        addresses = [ipaddress.ip_address(host)]
    except ValueError:
        try:
            infos = socket.getaddrinfo(host, port, proto=socket.IPPROTO_TCP)
        except (socket.gaierror, UnicodeError, ValueError) as e:
            raise UnsafeWebhookTargetError(f"Could not resolve '{host}': {e}", retryable=True) from e
        addresses = [ipaddress.ip_address(info[4][0].split("%")[0]) for info in infos]

    if not addresses:
        raise UnsafeWebhookTargetError(f"'{host}' did not resolve to any address", retryable=True)

    for address in addresses:
        if not _is_public_address(address):
            raise UnsafeWebhookTargetError(f"'{host}' resolves to non-public address {address}")

    return addresses[0]


def pinned_request(url: str, address: IPAddress) -> tuple[str, dict[str, str], dict[str, str]]:
    """
    Point a request at an already validated address.

    The connection goes to the IP itself, so a second DNS lookup cannot swap
    in a private address. The Host header and TLS SNI keep the original name,
    and certificates are still verified against it.

    Returns:
        (url, headers, httpx request extensions)
    """
    original = httpx.URL(url)
    pinned = original.copy_with(host=str(address))
    extensions = {"sni_hostname": original.host} if original.scheme == "https" else {}
    return str(pinned), {"Host": original.netloc.decode("ascii")}, extensions
