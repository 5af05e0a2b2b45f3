from __future__ import annotations

import errno
import ipaddress
import logging
import os
import select
import socket
import struct
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from ._exceptions import RawSocketPermissionError, TransportError

ICMP_ECHO_REQUEST = 8
ICMP_ECHO_REPLY = 0
ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129

RECV_BUFFER = 1024
POLL_INTERVAL = 0.05
SEND_RETRIES = 3


# ------------- Logger (stdout carries plugin output)
console = Console(stderr=True)
FORMAT = "%(message)s"
logger = logging.getLogger("rttping")


def setup_logging(level: Union[str, int] = "WARNING") -> None:
    logging.basicConfig(
        level=level,
        format=FORMAT,
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                markup=False,
                show_time=False,
            )
        ],
    )


@dataclass(frozen=True)
class IcmpFamily:
    address_family: int
    protocol: int
    echo_request: int
    echo_reply: int
    ip_header: bool


FAMILIES = {
    4: IcmpFamily(
        address_family=socket.AF_INET,
        protocol=socket.IPPROTO_ICMP,
        echo_request=ICMP_ECHO_REQUEST,
        echo_reply=ICMP_ECHO_REPLY,
        ip_header=True,
    ),
    6: IcmpFamily(
        address_family=socket.AF_INET6,
        protocol=socket.IPPROTO_ICMPV6,
        echo_request=ICMPV6_ECHO_REQUEST,
        echo_reply=ICMPV6_ECHO_REPLY,
        ip_header=False,
    ),
}


@dataclass
class IcmpPacket:
    type: int
    code: int
    checksum: int
    id: int
    sequence: int
    data: bytes


@dataclass
class EchoReply:
    addr: str
    rtt_ns: int
    sequence: int

    @property
    def rtt(self) -> float:
        return self.rtt_ns / 1_000_000


def icmp_checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack("!%dH" % (len(data) // 2), data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return (~total) & 0xFFFF


def build_echo_request(
    version: int, identifier: int, sequence: int, data: Optional[bytes] = None
) -> bytes:
    family = FAMILIES[version]
    if data is None:
        data = struct.pack("d", time.time())
    header = struct.pack("!BBHHH", family.echo_request, 0, 0, identifier, sequence)
    # The kernel fills in the ICMPv6 checksum, it covers a pseudo header we never see.
    checksum = icmp_checksum(header + data) if version == 4 else 0
    header = struct.pack(
        "!BBHHH", family.echo_request, 0, checksum, identifier, sequence
    )
    return header + data


def parse_echo_packet(pkt: bytes, ip_header: bool) -> IcmpPacket:
    offset = 0
    if ip_header:
        if len(pkt) < 20:
            raise ValueError("Packet shorter than minimum IP header length (20 bytes).")
        offset = (pkt[0] & 0xF) * 4

    if len(pkt) < offset + 8:
        raise ValueError("Packet shorter than IP header + ICMP header (IHL + 8 bytes).")

    icmph = struct.unpack("!BBHHH", pkt[offset : offset + 8])
    return IcmpPacket(
        type=icmph[0],
        code=icmph[1],
        checksum=icmph[2],
        id=icmph[3],
        sequence=icmph[4],
        data=pkt[offset + 8 :],
    )


def canonical_address(host: str) -> str:
    return str(ipaddress.ip_address(host.split("%", 1)[0]))


RecvCallback = Callable[[str, int], None]


class EchoTransport(ABC):
    """Sends echo requests to registered targets, one round at a time.

    ``on_recv`` is called with the replying address and the round trip time
    in nanoseconds, possibly from a thread other than the one running the
    round. A round only returns once every reply for it has been delivered.
    """

    on_recv: Optional[RecvCallback] = None

    @abstractmethod
    def register_target(self, address: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_max_wait(self, seconds: float) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_source(self, address: str) -> bool:
        """Bind outgoing probes to ``address``; return False if it was ignored."""
        raise NotImplementedError

    @abstractmethod
    def run_round(self) -> None:
        raise NotImplementedError


class _RoundState:
    def __init__(self, sequence: int, targets: dict[str, int]) -> None:
        self.sequence = sequence
        self.pending: dict[int, set[str]] = {}
        for address, version in targets.items():
            self.pending.setdefault(version, set()).add(address)
        self.sent_at: dict[str, int] = {}
        self.stopped = threading.Event()
        self.error: Optional[BaseException] = None
        self._lock = threading.Lock()

    def mark_sent(self, address: str) -> None:
        with self._lock:
            self.sent_at[address] = time.perf_counter_ns()

    def claim(self, version: int, address: str) -> Optional[int]:
        with self._lock:
            pending = self.pending.get(version, set())
            if address not in pending or address not in self.sent_at:
                return None
            pending.discard(address)
            return self.sent_at[address]

    def finished(self, version: int) -> bool:
        if self.stopped.is_set():
            return True
        with self._lock:
            return not self.pending.get(version)

    def fail(self, exc: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = exc
        self.stopped.set()


class Pinger(EchoTransport):
    def __init__(self, max_wait: float = 1.0) -> None:
        self.max_wait = max_wait
        self.seq_number = 0
        self.identifier = os.getpid() & 0xFFFF
        self.on_recv: Optional[RecvCallback] = None
        self._targets: dict[str, int] = {}
        self._sources: dict[int, str] = {}

    @property
    def targets(self) -> list[str]:
        return list(self._targets)

    def register_target(self, address: str) -> None:
        ip = ipaddress.ip_address(canonical_address(address))
        self._targets[str(ip)] = ip.version

    def set_max_wait(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("max wait must be positive")
        self.max_wait = seconds

    def set_source(self, address: str) -> bool:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            logger.debug("Ignoring invalid source address %r", address)
            return False
        self._sources[ip.version] = str(ip)
        return True

    def _open_socket(self, version: int) -> socket.socket:
        family = FAMILIES[version]
        try:
            sock = socket.socket(
                family.address_family, socket.SOCK_RAW, family.protocol
            )
        except PermissionError as exc:
            message = (
                "Raw socket requires elevated privileges. Use sudo or grant "
                "CAP_NET_RAW to the Python interpreter."
            )
            raise RawSocketPermissionError(message) from exc
        except OSError as exc:
            raise TransportError(f"Cannot open ICMPv{version} socket: {exc}") from exc

        source = self._sources.get(version)
        if source is not None:
            try:
                sock.bind((source, 0))
            except OSError as exc:
                sock.close()
                raise TransportError(
                    f"Cannot bind source address {source}: {exc}"
                ) from exc
        return sock

    def _send_echo_request(
        self, sock: socket.socket, version: int, address: str, state: _RoundState
    ) -> None:
        packet = build_echo_request(version, self.identifier, state.sequence)
        for attempt in range(SEND_RETRIES):
            state.mark_sent(address)
            try:
                sock.sendto(packet, (address, 0))
                return
            except OSError as exc:
                if exc.errno == errno.ENOBUFS and attempt < SEND_RETRIES - 1:
                    continue
                # An unroutable target only loses its reply for this round.
                logger.warning("Send to %s failed: %s", address, exc)
                return

    def _handle_packet(
        self,
        pkt: bytes,
        sender: str,
        version: int,
        state: _RoundState,
        received_at: int,
    ) -> None:
        family = FAMILIES[version]
        try:
            packet = parse_echo_packet(pkt, family.ip_header)
        except ValueError as err:
            logger.debug("Discarding malformed packet: %s", err)
            return

        if (
            packet.type != family.echo_reply
            or packet.id != self.identifier
            or packet.sequence != state.sequence
        ):
            return

        source = canonical_address(sender)
        sent_at = state.claim(version, source)
        if sent_at is None:
            logger.debug("Ignoring unexpected reply from %s", source)
            return

        reply = EchoReply(addr=source, rtt_ns=received_at - sent_at, sequence=packet.sequence)
        logger.debug(
            "Reply from %s in %.3f ms (seq=%d)", reply.addr, reply.rtt, reply.sequence
        )
        if self.on_recv is not None:
            self.on_recv(reply.addr, reply.rtt_ns)

    def _listen(
        self, sock: socket.socket, version: int, state: _RoundState, deadline: float
    ) -> None:
        try:
            while not state.finished(version):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return
                ready = select.select([sock], [], [], min(remaining, POLL_INTERVAL))
                if not ready[0]:
                    continue
                pkt, sender = sock.recvfrom(RECV_BUFFER)
                received_at = time.perf_counter_ns()
                self._handle_packet(pkt, sender[0], version, state, received_at)
        except Exception as exc:
            state.fail(exc)

    def run_round(self) -> None:
        if not self._targets:
            return

        self.seq_number = (self.seq_number + 1) & 0xFFFF
        state = _RoundState(self.seq_number, self._targets)
        sockets: dict[int, socket.socket] = {}
        listeners: list[threading.Thread] = []
        try:
            for version in sorted(set(self._targets.values())):
                sockets[version] = self._open_socket(version)

            deadline = time.monotonic() + self.max_wait
            for version, sock in sockets.items():
                listener = threading.Thread(
                    target=self._listen,
                    args=(sock, version, state, deadline),
                    name=f"rttping-icmpv{version}",
                    daemon=True,
                )
                listener.start()
                listeners.append(listener)

            logger.debug(
                "Round %d: sending to %d targets", state.sequence, len(self._targets)
            )
            try:
                for address, version in self._targets.items():
                    self._send_echo_request(sockets[version], version, address, state)
            except BaseException:
                state.stopped.set()
                raise
            finally:
                for listener in listeners:
                    listener.join()
        finally:
            for sock in sockets.values():
                sock.close()

        if state.error is not None:
            if isinstance(state.error, OSError):
                raise TransportError(f"Receive failed: {state.error}") from state.error
            raise state.error
