from typing import Any
from urllib.parse import urlparse

from async_substrate_interface.utils import hex_to_bytes

__all__ = ["hex_to_bytes", "is_hex_string", "validate_chain_endpoint"]


def is_hex_string(value: Any) -> bool:
    """Whether ``value`` is a ``0x`` prefixed string of whole bytes."""
    if not isinstance(value, str) or value[0:2] != "0x" or len(value) % 2:
        return False
    try:
        bytes.fromhex(value[2:])
    except ValueError:
        return False
    return True


def validate_chain_endpoint(endpoint_url: str) -> tuple[bool, str]:
    """Validates if the provided endpoint URL is a valid WebSocket URL."""
    parsed = urlparse(endpoint_url)
    if parsed.scheme not in ("ws", "wss"):
        return False, (
            f"Invalid chain endpoint ({endpoint_url}). "
            "Valid chain endpoints should use the scheme `ws` or `wss`."
        )
    if not parsed.netloc:
        return False, "Invalid URL passed as the endpoint"
    return True, ""
