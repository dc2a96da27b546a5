"""Startup parameters of the bridge."""

import dataclasses
import enum
import logging
import pathlib as pl
import typing as tp

from ccm_bridge.utils import configuration
from ccm_bridge.utils import helpers
from ccm_bridge.utils import types as ttypes

LOGGER = logging.getLogger(__name__)


class DeploymentType(enum.StrEnum):
    LOCAL = "local"
    SSH = "ssh"


class AuthenticationType(enum.StrEnum):
    USERNAME_PASSWORD = "username_password"
    PUBLIC_KEY = "public_key"


class DseCredentialsType(enum.StrEnum):
    USERNAME_PASSWORD = "username_password"
    INI_FILE = "ini_file"


@dataclasses.dataclass(frozen=True, order=True)
class SSHCredentials:
    """Credentials for SSH authentication.

    Exactly one of `password` or the `public_key` + `private_key` pair is expected to be set.
    """

    username: str
    password: str | None = None
    public_key: str | None = None
    private_key: str | None = None


@dataclasses.dataclass(frozen=True)
class BridgeConfig:
    cassandra_version: str = configuration.CASSANDRA_VERSION
    dse_version: str = configuration.DSE_VERSION
    use_git: bool = configuration.USE_GIT
    use_dse: bool = configuration.USE_DSE
    cluster_prefix: str = configuration.CLUSTER_PREFIX
    dse_credentials_type: DseCredentialsType = DseCredentialsType(configuration.DSE_CREDENTIALS)
    dse_username: str = configuration.DSE_USERNAME
    dse_password: str = configuration.DSE_PASSWORD
    deployment_type: DeploymentType = DeploymentType(configuration.DEPLOYMENT)
    authentication_type: AuthenticationType = AuthenticationType(configuration.AUTHENTICATION)
    host: str = configuration.HOST
    port: int = configuration.SSH_PORT
    username: str = configuration.SSH_USERNAME
    password: str = configuration.SSH_PASSWORD
    public_key: str = configuration.SSH_PUBLIC_KEY
    private_key: str = configuration.SSH_PRIVATE_KEY
    command_timeout: float = configuration.COMMAND_TIMEOUT
    ssl_path: str = configuration.SSL_PATH
    workdir: ttypes.FileType = configuration.WORKDIR
    status_attempts: int = configuration.STATUS_ATTEMPTS
    status_delay: float = configuration.STATUS_DELAY

    @property
    def server_version(self) -> str:
        """Return version of the server (Cassandra or DSE) the cluster is created with."""
        return self.dse_version if self.use_dse else self.cassandra_version

    @property
    def ip_prefix(self) -> str:
        return helpers.get_ip_prefix(self.host)

    def ssh_credentials(self) -> SSHCredentials:
        """Return credentials selected by the authentication type."""
        if self.authentication_type == AuthenticationType.PUBLIC_KEY:
            return SSHCredentials(
                username=self.username,
                public_key=self.public_key or None,
                private_key=self.private_key or None,
            )
        return SSHCredentials(username=self.username, password=self.password)

    @classmethod
    def from_env(cls, **overrides: tp.Any) -> "BridgeConfig":
        """Return configuration with defaults taken from environment variables."""
        return cls(**overrides)

    @classmethod
    def from_file(cls, config_file: ttypes.FileType, **overrides: tp.Any) -> "BridgeConfig":
        """Return configuration loaded from a `KEY=VALUE` configuration file."""
        settings = load_config_file(config_file)
        kwargs = {**settings, **overrides}
        return cls(**kwargs)


# Mapping of configuration file keys to `BridgeConfig` fields and value converters
_FILE_KEYS: dict[str, tuple[str, tp.Callable[[str], tp.Any]]] = {
    "CASSANDRA_VERSION": ("cassandra_version", str),
    "DSE_VERSION": ("dse_version", str),
    "USE_GIT": ("use_git", helpers.str_to_bool),
    "USE_DSE": ("use_dse", helpers.str_to_bool),
    "CLUSTER_PREFIX": ("cluster_prefix", str),
    "DSE_CREDENTIALS_TYPE": (
        "dse_credentials_type",
        lambda v: DseCredentialsType(helpers.to_lower(v)),
    ),
    "DSE_USERNAME": ("dse_username", str),
    "DSE_PASSWORD": ("dse_password", str),
    "DEPLOYMENT_TYPE": ("deployment_type", lambda v: DeploymentType(helpers.to_lower(v))),
    "AUTHENTICATION_TYPE": (
        "authentication_type",
        lambda v: AuthenticationType(helpers.to_lower(v)),
    ),
    "HOST": ("host", str),
    "SSH_PORT": ("port", int),
    "SSH_USERNAME": ("username", str),
    "SSH_PASSWORD": ("password", str),
    "SSH_PUBLIC_KEY": ("public_key", str),
    "SSH_PRIVATE_KEY": ("private_key", str),
}


def load_config_file(config_file: ttypes.FileType) -> dict[str, tp.Any]:
    """Load `BridgeConfig` keyword arguments from a configuration file.

    Lines have the `KEY=VALUE` format; blank lines and lines starting with `#` are ignored.
    """
    config_path = pl.Path(config_file).expanduser()
    settings: dict[str, tp.Any] = {}

    with open(config_path, encoding="utf-8") as in_fp:
        for lineno, raw_line in enumerate(in_fp, start=1):
            line = helpers.trim(raw_line)
            if not line or line.startswith("#"):
                continue

            key, sep, value = line.partition("=")
            if not sep:
                msg = f"Invalid line {lineno} in '{config_path}': {line}"
                raise ValueError(msg)

            key = helpers.trim(key).upper()
            record = _FILE_KEYS.get(key)
            if not record:
                LOGGER.warning(f"Ignoring unknown configuration key '{key}' in '{config_path}'.")
                continue

            field_name, converter = record
            try:
                settings[field_name] = converter(helpers.trim(value))
            except ValueError as exc:
                msg = f"Invalid value for '{key}' in '{config_path}': {value.strip()}"
                raise ValueError(msg) from exc

    return settings
