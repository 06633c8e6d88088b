import logging
from typing import Optional

import asyncssh

from sftpbox.server.authenticator import Authenticator

LOGGER = logging.getLogger(__name__)

class SSHServer(asyncssh.SSHServer):
    # Password auth only, against the one configured pair
    def __init__(self, authenticator: Authenticator) -> None:
        self._authenticator = authenticator
        self._peername: object = None

    def connection_made(self, conn: asyncssh.SSHServerConnection) -> None:
        self._peername = conn.get_extra_info("peername")
        LOGGER.info("client connected: %s", self._peername)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            LOGGER.error("client error %s: %s", self._peername, exc)
        else:
            LOGGER.info("client disconnected: %s", self._peername)

    def begin_auth(self, username: str) -> bool:
        return True

    def password_auth_supported(self) -> bool:
        return True

    def validate_password(self, username: str, password: str) -> bool:
        return self._authenticator.authenticate(username, password)
