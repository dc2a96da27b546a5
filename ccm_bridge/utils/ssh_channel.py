"""Command execution over a single SSH session.

The session is driven in non-blocking mode. Before every read or write the channel is asked which
direction it is ready to proceed in, and only the permitted operation is attempted. When the
channel is ready in neither direction, the loop waits shortly instead of blocking on one direction
while the other one has pending work.

Known limitation: standard output and standard error of the remote command are merged as they
arrive, so the ordering between the two streams is best-effort only.

The server host key is checked against `~/.ssh/known_hosts`. A known host presenting a different
key fails the handshake, an unknown host is accepted.
"""

import codecs
import dataclasses
import enum
import logging
import pathlib as pl
import socket
import time
import typing as tp

import paramiko

from ccm_bridge.utils import bridge_config
from ccm_bridge.utils import configuration
from ccm_bridge.utils import errors

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 32768
# Seconds to wait when the channel is ready in neither direction
IDLE_WAIT = 0.01
KNOWN_HOSTS_FILE = pl.Path("~/.ssh/known_hosts")
DEFAULT_SSH_PORT = 22


class Direction(enum.Flag):
    NONE = 0
    INBOUND = enum.auto()
    OUTBOUND = enum.auto()


class SessionState(enum.StrEnum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CHANNEL_OPEN = "channel_open"
    EXECUTING = "executing"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclasses.dataclass(frozen=True, order=True)
class CommandResult:
    output: str
    exit_status: int


class OutputDecoder:
    """Decode standard output and standard error of a remote command as the data arrives.

    Every stream has its own incremental decoder, so a character split between two chunks of one
    stream is reassembled even when data of the other stream arrives in between.
    """

    def __init__(self) -> None:
        self._stdout = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._stderr = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: list[str] = []

    def feed(self, *, data: bytes = b"", err_data: bytes = b"") -> None:
        if data:
            self._parts.append(self._stdout.decode(data))
        if err_data:
            self._parts.append(self._stderr.decode(err_data))

    def flush(self) -> None:
        """Decode what is left of incomplete characters at the end of both streams."""
        self._parts.append(self._stdout.decode(b"", final=True))
        self._parts.append(self._stderr.decode(b"", final=True))

    @property
    def text(self) -> str:
        return "".join(self._parts)


class SessionChannel:
    """Single command execution channel multiplexed over a session."""

    def exec_command(self, command: str) -> None:
        raise NotImplementedError

    def ready_direction(self) -> Direction:
        """Return directions the channel can proceed in without blocking."""
        raise NotImplementedError

    def send(self, data: bytes) -> int:
        """Send data, return number of bytes actually sent."""
        raise NotImplementedError

    def shutdown_write(self) -> None:
        """Signal end of input to the remote command."""
        raise NotImplementedError

    def recv(self, nbytes: int) -> bytes:
        """Return buffered standard output data, empty if there's none."""
        raise NotImplementedError

    def recv_stderr(self, nbytes: int) -> bytes:
        """Return buffered standard error data, empty if there's none."""
        raise NotImplementedError

    def exit_status_ready(self) -> bool:
        raise NotImplementedError

    def exit_status(self) -> int:
        raise NotImplementedError

    def at_eof(self) -> bool:
        """Check that the remote side finished sending and all buffered data was read."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class Session:
    """Authenticated session to a remote host."""

    def handshake(self, *, timeout: float) -> None:
        raise NotImplementedError

    def authenticate(self, credentials: bridge_config.SSHCredentials) -> None:
        raise NotImplementedError

    def open_channel(self, *, timeout: float) -> SessionChannel:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


Connector = tp.Callable[..., Session]


class ParamikoChannel(SessionChannel):
    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel

    def exec_command(self, command: str) -> None:
        self._channel.exec_command(command)
        self._channel.setblocking(False)

    def ready_direction(self) -> Direction:
        direction = Direction.NONE
        if self._channel.recv_ready() or self._channel.recv_stderr_ready():
            direction |= Direction.INBOUND
        if self._channel.send_ready():
            direction |= Direction.OUTBOUND
        return direction

    def send(self, data: bytes) -> int:
        try:
            return self._channel.send(data)
        except TimeoutError:
            return 0

    def shutdown_write(self) -> None:
        self._channel.shutdown_write()

    def recv(self, nbytes: int) -> bytes:
        if not self._channel.recv_ready():
            return b""
        return self._channel.recv(nbytes)

    def recv_stderr(self, nbytes: int) -> bytes:
        if not self._channel.recv_stderr_ready():
            return b""
        return self._channel.recv_stderr(nbytes)

    def exit_status_ready(self) -> bool:
        return self._channel.exit_status_ready()

    def exit_status(self) -> int:
        return self._channel.recv_exit_status()

    def at_eof(self) -> bool:
        if self._channel.recv_ready() or self._channel.recv_stderr_ready():
            return False
        return bool(self._channel.eof_received or self._channel.closed)

    def close(self) -> None:
        self._channel.close()


class ParamikoSession(Session):
    def __init__(
        self,
        sock: socket.socket,
        *,
        host: str,
        port: int = DEFAULT_SSH_PORT,
        host_keys: paramiko.HostKeys | None = None,
    ) -> None:
        self._sock = sock
        self.host = host
        self.port = port
        self.host_keys = host_keys if host_keys is not None else load_known_hosts()
        self._transport: paramiko.Transport | None = None

    @classmethod
    def connect(cls, host: str, port: int, *, timeout: float) -> "ParamikoSession":
        """Open TCP connection to the remote host."""
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as exc:
            msg = f"Failed to connect to {host}:{port}: {exc}"
            raise errors.ConnectFailedError(msg) from exc
        return cls(sock, host=host, port=port)

    def _get_transport(self) -> paramiko.Transport:
        if self._transport is None:
            msg = "The SSH handshake was not performed."
            raise errors.SessionError(msg)
        return self._transport

    def handshake(self, *, timeout: float) -> None:
        try:
            self._transport = paramiko.Transport(self._sock)
            self._transport.start_client(timeout=timeout)
        except (paramiko.SSHException, EOFError, OSError) as exc:
            msg = f"SSH handshake failed: {exc}"
            raise errors.HandshakeFailedError(msg) from exc

        check_host_key(
            host=self.host,
            port=self.port,
            key=self._get_transport().get_remote_server_key(),
            host_keys=self.host_keys,
        )

    def authenticate(self, credentials: bridge_config.SSHCredentials) -> None:
        transport = self._get_transport()
        try:
            if credentials.password is not None:
                transport.auth_password(credentials.username, credentials.password)
            else:
                pkey = load_key_pair(
                    public_key=credentials.public_key or "",
                    private_key=credentials.private_key or "",
                )
                transport.auth_publickey(credentials.username, pkey)
        except paramiko.AuthenticationException as exc:
            msg = f"SSH authentication of user '{credentials.username}' was rejected: {exc}"
            raise errors.AuthFailedError(msg) from exc
        except (paramiko.SSHException, OSError) as exc:
            msg = f"SSH authentication of user '{credentials.username}' failed: {exc}"
            raise errors.AuthFailedError(msg) from exc

        if not transport.is_authenticated():
            msg = f"SSH authentication of user '{credentials.username}' was not completed."
            raise errors.AuthFailedError(msg)

    def open_channel(self, *, timeout: float) -> SessionChannel:
        transport = self._get_transport()
        try:
            channel = transport.open_session(timeout=timeout)
        except (paramiko.SSHException, OSError) as exc:
            msg = f"Failed to open SSH channel: {exc}"
            raise errors.SessionError(msg) from exc
        return ParamikoChannel(channel)

    def close(self) -> None:
        if self._transport is not None:
            try:
                self._transport.close()
            except Exception as excp:
                LOGGER.warning(f"Failed to close SSH transport: {excp}")
            self._transport = None
        try:
            self._sock.close()
        except Exception as excp:
            LOGGER.warning(f"Failed to close socket: {excp}")


def load_known_hosts(known_hosts: pl.Path = KNOWN_HOSTS_FILE) -> paramiko.HostKeys:
    """Return host keys from the known hosts file, no keys when the file doesn't exist."""
    host_keys = paramiko.HostKeys()
    known_hosts = known_hosts.expanduser()
    if not known_hosts.is_file():
        return host_keys

    try:
        host_keys.load(str(known_hosts))
    except (OSError, paramiko.SSHException) as exc:
        msg = f"Failed to load known hosts from '{known_hosts}': {exc}"
        raise errors.HandshakeFailedError(msg) from exc
    return host_keys


def check_host_key(
    *, host: str, port: int, key: paramiko.PKey, host_keys: paramiko.HostKeys
) -> None:
    """Check that the server key matches the known key of the host, if there's any."""
    host_entry = host if port == DEFAULT_SSH_PORT else f"[{host}]:{port}"
    known_keys = host_keys.lookup(host_entry)
    if not known_keys or key.get_name() not in known_keys:
        LOGGER.debug(f"Host '{host_entry}' has no known {key.get_name()} key, accepting it.")
        return

    if known_keys[key.get_name()] != key:
        msg = f"Host key of '{host_entry}' doesn't match the known key."
        raise errors.HandshakeFailedError(msg)


def load_key_pair(*, public_key: str, private_key: str) -> paramiko.PKey:
    """Load private key from file and check that it matches the public key file."""
    try:
        pkey = paramiko.PKey.from_path(pl.Path(private_key).expanduser())
        public_fields = pl.Path(public_key).expanduser().read_text(encoding="utf-8").split()
    except (paramiko.SSHException, OSError, ValueError) as exc:
        msg = f"Failed to load the SSH key pair: {exc}"
        raise errors.InvalidCredentialsError(msg) from exc

    if len(public_fields) < 2 or public_fields[1] != pkey.get_base64():
        msg = f"The public key '{public_key}' doesn't match the private key '{private_key}'."
        raise errors.InvalidCredentialsError(msg)

    return pkey


def check_credentials(credentials: bridge_config.SSHCredentials) -> None:
    """Check that exactly one of password or key pair credentials was supplied."""
    if not credentials.username:
        msg = "Username is required for SSH authentication."
        raise errors.InvalidCredentialsError(msg)

    has_password = credentials.password is not None
    has_key = bool(credentials.public_key or credentials.private_key)
    if has_password and has_key:
        msg = "Both password and key pair were supplied for SSH authentication."
        raise errors.InvalidCredentialsError(msg)
    if not (has_password or has_key):
        msg = "Neither password nor key pair was supplied for SSH authentication."
        raise errors.InvalidCredentialsError(msg)
    if has_key and not (credentials.public_key and credentials.private_key):
        msg = "Both public and private key are required for SSH authentication."
        raise errors.InvalidCredentialsError(msg)


class ChannelSynchronizer:
    """Run commands on a remote host over single SSH session.

    The session is opened on first use and kept open until `close`. Every command runs in its own
    channel; a fresh channel is opened once the previous command drained.

    States: `CLOSED` -> `CONNECTING` -> `AUTHENTICATING` -> `CHANNEL_OPEN`, then for every command
    `CHANNEL_OPEN` -> `EXECUTING` -> `DRAINING` -> `CHANNEL_OPEN`. Any session failure tears
    the session down and goes back to `CLOSED`.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 22,
        credentials: bridge_config.SSHCredentials,
        timeout: float = configuration.COMMAND_TIMEOUT,
        idle_wait: float = IDLE_WAIT,
        connector: Connector | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.credentials = credentials
        self.timeout = timeout
        self.idle_wait = idle_wait
        self._connector: Connector = connector or ParamikoSession.connect

        self._session: Session | None = None
        self._channel: SessionChannel | None = None
        self._state = SessionState.CLOSED
        self._exit_status = -1

    @property
    def state(self) -> SessionState:
        return self._state

    def _set_state(self, state: SessionState) -> None:
        LOGGER.debug(f"SSH session {self.host}:{self.port}: {self._state} -> {state}")
        self._state = state

    def open(self) -> None:
        """Connect, authenticate and open a channel; no-op when the session is already open."""
        if self._state != SessionState.CLOSED:
            return

        check_credentials(self.credentials)

        self._set_state(SessionState.CONNECTING)
        try:
            self._session = self._connector(self.host, self.port, timeout=self.timeout)
            self._session.handshake(timeout=self.timeout)
            self._set_state(SessionState.AUTHENTICATING)
            self._session.authenticate(self.credentials)
            self._channel = self._session.open_channel(timeout=self.timeout)
        except errors.SessionError:
            self.close()
            raise

        self._set_state(SessionState.CHANNEL_OPEN)
        LOGGER.info(f"SSH session to {self.host}:{self.port} established.")

    def _read(self, channel: SessionChannel, *, output: OutputDecoder) -> bool:
        data = channel.recv(CHUNK_SIZE)
        err_data = channel.recv_stderr(CHUNK_SIZE)
        output.feed(data=data, err_data=err_data)
        return bool(data or err_data)

    def _write(self, channel: SessionChannel, *, pending: bytearray) -> bool:
        sent = channel.send(bytes(pending[:CHUNK_SIZE]))
        del pending[:sent]
        if not pending:
            channel.shutdown_write()
        return sent > 0

    def _recycle_channel(self) -> None:
        """Replace the drained channel with a fresh one."""
        if self._channel is not None:
            try:
                self._channel.close()
            except Exception as excp:
                LOGGER.warning(f"Failed to close SSH channel: {excp}")
            self._channel = None

        if self._session is None:
            self.close()
            return

        try:
            self._channel = self._session.open_channel(timeout=self.timeout)
        except errors.SessionError as exc:
            # The next command will reconnect
            LOGGER.warning(f"Failed to open new SSH channel, closing the session: {exc}")
            self.close()
            return

        self._set_state(SessionState.CHANNEL_OPEN)

    def step(
        self, channel: SessionChannel, *, pending: bytearray, output: OutputDecoder
    ) -> bool:
        """Run single iteration of the direction synchronization loop.

        Reads and writes only in the directions the channel is ready for. At most one state
        transition happens, and only in an iteration without any I/O.

        Returns:
            bool: True if any progress was made.
        """
        direction = channel.ready_direction()

        progressed = False
        if Direction.INBOUND in direction:
            progressed = self._read(channel, output=output)
        if self._state == SessionState.EXECUTING and pending and Direction.OUTBOUND in direction:
            progressed = self._write(channel, pending=pending) or progressed
        if progressed:
            return True

        if self._state == SessionState.EXECUTING and channel.exit_status_ready():
            if pending:
                LOGGER.debug(f"Remote command finished, discarding {len(pending)} bytes of input.")
                pending.clear()
            self._set_state(SessionState.DRAINING)
            return True

        if self._state == SessionState.DRAINING and channel.at_eof():
            output.flush()
            self._exit_status = channel.exit_status()
            self._recycle_channel()
            return True

        return False

    def execute(self, command: str, *, stdin: bytes = b"") -> CommandResult:
        """Run the command and return its merged output and exit status."""
        self.open()
        channel = self._channel
        if channel is None:
            msg = "The SSH channel is not open."
            raise errors.SessionError(msg)

        LOGGER.debug(f"Running `{command}` on {self.host}:{self.port}")
        pending = bytearray(stdin)
        output = OutputDecoder()
        self._exit_status = -1

        try:
            channel.exec_command(command)
            self._set_state(SessionState.EXECUTING)
            if not pending:
                channel.shutdown_write()

            deadline = time.monotonic() + self.timeout
            while self._state in (SessionState.EXECUTING, SessionState.DRAINING):
                if time.monotonic() > deadline:
                    msg = f"Command `{command}` didn't finish in {self.timeout} seconds."
                    raise errors.CommandTimeoutError(msg)
                if not self.step(channel, pending=pending, output=output):
                    time.sleep(self.idle_wait)
        except errors.SessionError:
            self.close()
            raise
        except (paramiko.SSHException, EOFError, OSError) as exc:
            self.close()
            msg = f"SSH session to {self.host}:{self.port} failed: {exc}"
            raise errors.SessionError(msg) from exc

        return CommandResult(output=output.text, exit_status=self._exit_status)

    def close(self) -> None:
        """Close channel, then session and its transport.

        Failures are logged and never raised.
        """
        if self._channel is not None:
            try:
                self._channel.close()
            except Exception as excp:
                LOGGER.warning(f"Failed to close SSH channel: {excp}")
            self._channel = None

        if self._session is not None:
            try:
                self._session.close()
            except Exception as excp:
                LOGGER.warning(f"Failed to close SSH session: {excp}")
            self._session = None

        if self._state != SessionState.CLOSED:
            self._set_state(SessionState.CLOSED)
