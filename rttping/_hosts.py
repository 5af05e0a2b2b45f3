"""Host specification parsing.

A host specification is a comma separated list of tokens::

    ADDR[:LABEL]
    ADDR:GROUP:LABEL
    [IPV6-ADDR][:LABEL]
    [IPV6-ADDR]:GROUP:LABEL

``ADDR`` is an address literal or a DNS name. An empty ``GROUP`` selects the
default group and an empty ``LABEL`` falls back to ``ADDR`` as written.
"""

from __future__ import annotations

import ipaddress
import socket
from typing import Optional

from ._exceptions import ResolutionError
from ._icmp import canonical_address, logger
from ._models import HostSpec


def normalize_address(raw: str, ipv6: bool = False) -> str:
    """Return ``raw`` as a canonical address of the requested family.

    Literals of the requested family are returned as is (canonicalized);
    anything else, including literals of the other family, goes through a
    lookup restricted to that family.
    """
    if not raw:
        raise ResolutionError(raw, "missing address")

    version = 6 if ipv6 else 4
    try:
        ip = ipaddress.ip_address(raw)
    except ValueError:
        ip = None
    if ip is not None and ip.version == version:
        return canonical_address(raw)

    family = socket.AF_INET6 if ipv6 else socket.AF_INET
    try:
        infos = socket.getaddrinfo(raw, None, family=family)
    except (OSError, UnicodeError) as exc:
        raise ResolutionError(raw, str(exc)) from exc

    for info in infos:
        if info[0] == family:
            return canonical_address(info[4][0])
    raise ResolutionError(raw, f"no IPv{version} address")


def _is_ipv6_literal(text: str) -> bool:
    try:
        return ipaddress.ip_address(text).version == 6
    except ValueError:
        return False


def _split_fields(rest: str) -> tuple[Optional[str], str]:
    """Split the part after ADDR into (group, label)."""
    fields = rest.split(":", 1)
    if len(fields) == 1:
        return None, fields[0]
    return fields[0] or None, fields[1]


def split_token(token: str, ipv6: bool = False) -> tuple[str, Optional[str], str]:
    """Split one host token into its raw address, group and label fields.

    An absent group is ``None``; an absent label is returned as ``""``.
    """
    if ipv6 and token.count("[") == 1:
        start = token.index("[")
        end = token.find("]", start)
        if start != 0 or end == -1:
            raise ResolutionError(token, "malformed bracketed address")
        addr = token[1:end]
        rest = token[end + 1 :]
        if not rest:
            return addr, None, ""
        if not rest.startswith(":"):
            raise ResolutionError(token, "unexpected text after bracketed address")
        group, label = _split_fields(rest[1:])
        return addr, group, label

    if ipv6:
        if _is_ipv6_literal(token):
            return token, None, ""
        head, sep, tail = token.rpartition(":")
        if sep and _is_ipv6_literal(head):
            return head, None, tail

    addr, sep, rest = token.partition(":")
    if not sep:
        return addr, None, ""
    group, label = _split_fields(rest)
    return addr, group, label


def parse_hosts(host_arg: str, ipv6: bool = False, strict: str = "") -> list[HostSpec]:
    """Parse a host specification into :class:`HostSpec` entries, in input order.

    With a non-empty ``strict`` marker the first unresolvable token aborts the
    whole parse with :class:`ResolutionError`; otherwise it is skipped.
    """
    hosts: list[HostSpec] = []
    for token in host_arg.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            addr, group, label = split_token(token, ipv6)
            address = normalize_address(addr, ipv6)
        except ResolutionError as exc:
            if strict:
                raise
            logger.warning("Skipping host %s: %s", token, exc.reason)
            continue

        host = HostSpec(address=address, label=label or addr, group=group)
        logger.debug("Parsed host %s", host)
        hosts.append(host)
    return hosts
