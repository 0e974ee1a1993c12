"""
Enforcement targets: the live server whitelist the reconciler drives.

- InMemoryEnforcementTarget: plain sets, used for dry runs and tests
- RconEnforcementTarget: a Minecraft server reached over RCON
"""

from __future__ import annotations

import logging
import re
import socket
import struct
from typing import Callable, Iterable, List, Optional, Set, Tuple

from .errors import EnforcementError
from .models import normalize_identity

logger = logging.getLogger(__name__)


class InMemoryEnforcementTarget:
    """Allow-list and connected sessions held in memory, with a call log."""

    def __init__(self, allowed: Iterable[str] = (), connected: Iterable[str] = ()) -> None:
        self._allowed = {normalize_identity(name): name for name in allowed}
        self._connected = {normalize_identity(name) for name in connected}
        self.calls: List[Tuple[str, str]] = []

    def list_allowed(self) -> List[str]:
        return list(self._allowed.values())

    def set_allowed(self, player_name: str, allowed: bool) -> None:
        key = normalize_identity(player_name)
        if allowed:
            self._allowed[key] = player_name
            self.calls.append(("allow", player_name))
        else:
            self._allowed.pop(key, None)
            self.calls.append(("disallow", player_name))

    def is_connected(self, player_name: str) -> bool:
        return normalize_identity(player_name) in self._connected

    def terminate_session(self, player_name: str, reason: str) -> None:
        self._connected.discard(normalize_identity(player_name))
        self.calls.append(("kick", player_name))

    def connect(self, player_name: str) -> None:
        self._connected.add(normalize_identity(player_name))


# --- RCON -----------------------------------------------------------------

SERVERDATA_RESPONSE_VALUE = 0
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_AUTH = 3

MAX_PACKET_SIZE = 4110
_FORMATTING_CODE = re.compile("\u00a7.")
_PLAYER_NAME = re.compile(r"^[A-Za-z0-9_]{1,16}$")


def encode_packet(request_id: int, packet_type: int, body: str) -> bytes:
    payload = body.encode("utf-8") + b"\x00\x00"
    return struct.pack("<iii", 8 + len(payload), request_id, packet_type) + payload


def decode_packet(data: bytes) -> Tuple[int, int, str]:
    """Decode one packet without its length prefix into (id, type, body)."""
    if len(data) < 10:
        raise EnforcementError(f"RCON packet too short: {len(data)} bytes")
    request_id, packet_type = struct.unpack_from("<ii", data)
    body = data[8:-2].decode("utf-8", errors="replace")
    return request_id, packet_type, body


def parse_player_list(text: str) -> List[str]:
    """Pull the names out of ``whitelist list`` / ``list`` replies.

    "There are 2 whitelisted player(s): Steve, Alex" -> ["Steve", "Alex"]
    """
    text = _FORMATTING_CODE.sub("", text)
    if ":" not in text:
        return []
    _, names = text.split(":", 1)
    return [name.strip() for name in re.split(r"[,\n]", names) if name.strip()]


class RconClient:
    """Minimal Source RCON client, as spoken by Minecraft servers."""

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        *,
        timeout: float = 10.0,
        connect: Callable[..., socket.socket] = socket.create_connection,
    ) -> None:
        self.host = host
        self.port = port
        self._password = password
        self._timeout = timeout
        self._connect = connect
        self._sock: Optional[socket.socket] = None
        self._next_id = 1

    def __enter__(self) -> "RconClient":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        if self._sock is not None:
            return
        try:
            self._sock = self._connect((self.host, self.port), timeout=self._timeout)
        except OSError as exc:
            raise EnforcementError(f"Could not connect to RCON at {self.host}:{self.port}: {exc}")

        request_id = self._send(SERVERDATA_AUTH, self._password)
        response_id, packet_type, _ = self._receive()
        # some servers send an empty value packet before the auth response
        if packet_type == SERVERDATA_RESPONSE_VALUE:
            response_id, packet_type, _ = self._receive()
        if packet_type != SERVERDATA_AUTH_RESPONSE or response_id == -1 or response_id != request_id:
            self.close()
            raise EnforcementError("RCON authentication failed")
        logger.info("RCON connection established", extra={"host": self.host, "port": self.port})

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None

    def command(self, text: str) -> str:
        """Run ``text`` and return the whole reply.

        Long replies arrive as several packets sharing the request id. A
        sentinel packet follows the command; the server answers it only after
        the command's last fragment, so reading up to its id drains the reply.
        """
        if self._sock is None:
            self.open()
        request_id = self._send(SERVERDATA_EXECCOMMAND, text)
        sentinel_id = self._send(SERVERDATA_RESPONSE_VALUE, "")
        fragments = []
        while True:
            response_id, _, body = self._receive()
            if response_id == sentinel_id:
                break
            if response_id != request_id:
                self.close()
                raise EnforcementError(f"RCON response id mismatch: expected {request_id}, got {response_id}")
            fragments.append(body)
        return "".join(fragments)

    def _send(self, packet_type: int, body: str) -> int:
        request_id = self._next_id
        self._next_id += 1
        try:
            self._sock.sendall(encode_packet(request_id, packet_type, body))
        except OSError as exc:
            self.close()
            raise EnforcementError(f"RCON send failed: {exc}")
        return request_id

    def _receive(self) -> Tuple[int, int, str]:
        (length,) = struct.unpack("<i", self._read_exact(4))
        if length < 10 or length > MAX_PACKET_SIZE:
            self.close()
            raise EnforcementError(f"Invalid RCON packet length: {length}")
        return decode_packet(self._read_exact(length))

    def _read_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            try:
                chunk = self._sock.recv(remaining)
            except OSError as exc:
                self.close()
                raise EnforcementError(f"RCON receive failed: {exc}")
            if not chunk:
                self.close()
                raise EnforcementError("RCON connection closed by server")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)


class RconEnforcementTarget:
    """Drives a Minecraft server's whitelist through console commands."""

    def __init__(self, client: RconClient) -> None:
        self.client = client

    @staticmethod
    def _checked(player_name: str) -> str:
        name = player_name.strip()
        if not _PLAYER_NAME.match(name):
            raise EnforcementError(f"Refusing to send invalid player name to server: {player_name!r}")
        return name

    def list_allowed(self) -> List[str]:
        return parse_player_list(self.client.command("whitelist list"))

    def online_players(self) -> Set[str]:
        return {normalize_identity(name) for name in parse_player_list(self.client.command("list"))}

    def set_allowed(self, player_name: str, allowed: bool) -> None:
        action = "add" if allowed else "remove"
        self.client.command(f"whitelist {action} {self._checked(player_name)}")

    def is_connected(self, player_name: str) -> bool:
        return normalize_identity(player_name) in self.online_players()

    def terminate_session(self, player_name: str, reason: str) -> None:
        self.client.command(f"kick {self._checked(player_name)} {reason}")

    def close(self) -> None:
        self.client.close()
