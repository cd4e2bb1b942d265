from __future__ import annotations

from typing import Optional

MAX_FIELD_LENGTH = 256
ELLIPSIS = "..."


def _truncate(value: str, max_length: int = MAX_FIELD_LENGTH) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - len(ELLIPSIS)] + ELLIPSIS


def sanitize_ip_address(ip: Optional[str]) -> str:
    """Mask the host part of a client address.

    ``192.168.1.123`` becomes ``192.168.1.XXX``; for IPv6 the last two
    groups are replaced, ``2001:db8::1:2`` becomes ``2001:db8::XXX``.
    """
    if not ip:
        return "unknown_ip"
    if "." in ip:
        return ip[: ip.rfind(".") + 1] + "XXX"
    if ":" in ip:
        last = ip.rfind(":")
        second_last = ip.rfind(":", 0, last)
        if second_last != -1:
            return ip[:second_last].rstrip(":") + "::XXX"
        return ip + ":XXX"
    return ip


def sanitize_user_agent(user_agent: Optional[str]) -> str:
    if not user_agent:
        return "n/a"
    return _truncate(user_agent)


def sanitize_exception_message(message: Optional[str]) -> str:
    """Escape line breaks (log injection) and cap the length."""
    if not message:
        return "n/a"
    escaped = message.replace("\n", "\\n").replace("\r", "\\r")
    return _truncate(escaped)


def find_root_cause(exc: BaseException) -> BaseException:
    """Walk the cause chain to its last distinct link."""
    root = exc
    seen = {id(root)}
    while True:
        cause = root.__cause__
        if cause is None and not root.__suppress_context__:
            cause = root.__context__
        if cause is None or cause is root or id(cause) in seen:
            return root
        seen.add(id(cause))
        root = cause
