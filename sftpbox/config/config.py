import dataclasses
import os
from typing import Mapping, Optional

DEFAULT_HOSTNAME = "0.0.0.0"
DEFAULT_PORT = 2222
DEFAULT_ROOT = "sftp_root"
DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "admin"
DEFAULT_HOST_KEY = os.path.join("keys", "host_rsa_key")

@dataclasses.dataclass(frozen=True)
class Credentials:
    username: str
    password: str = dataclasses.field(repr=False)

@dataclasses.dataclass(frozen=True)
class ServerConfig:
    hostname: str
    port: int
    root: str
    credentials: Credentials
    host_key: str

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ServerConfig':
        env = os.environ if environ is None else environ
        return cls(
            hostname=env.get("SFTP_HOST", DEFAULT_HOSTNAME),
            port=parse_port(env.get("SFTP_PORT", str(DEFAULT_PORT))),
            root=os.path.abspath(env.get("SFTP_ROOT", DEFAULT_ROOT)),
            credentials=Credentials(
                username=env.get("SFTP_USER", DEFAULT_USERNAME),
                password=env.get("SFTP_PASS", DEFAULT_PASSWORD)
            ),
            host_key=os.path.abspath(env.get("SFTP_HOST_KEY", DEFAULT_HOST_KEY))
        )

def parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError as ex:
        raise ValueError(f"Invalid port: {value!r}") from ex
    if not 0 < port < 65536:
        raise ValueError(f"Invalid port: {value!r}")
    return port
