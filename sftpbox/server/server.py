import functools
import logging
import os
from typing import Optional, Type
from types import TracebackType

import asyncssh

from sftpbox.config.config import ServerConfig
from sftpbox.server.authenticator import Authenticator
from sftpbox.server.keys import load_or_generate_host_key
from sftpbox.server.sftp_server import serve_sftp
from sftpbox.server.ssh_server import SSHServer

LOGGER = logging.getLogger(__name__)

class Server:
    def __init__(self, config: ServerConfig, host_key: Optional[asyncssh.SSHKey] = None):
        self._config = config
        self._authenticator = Authenticator(config.credentials)
        self._host_key = host_key
        self._server: Optional[asyncssh.SSHAcceptor] = None

    @property
    def port(self) -> int:
        # The bound port, which differs from the config for port 0
        assert self._server is not None, "not serving"
        return self._server.sockets[0].getsockname()[1]

    async def serve(self) -> None:
        assert self._server is None, "already serving"
        root = self._config.root
        if not os.path.isdir(root):
            LOGGER.info("creating sftp root directory: %s", root)
            os.makedirs(root, exist_ok=True)

        host_key = self._host_key
        if host_key is None:
            host_key = load_or_generate_host_key(self._config.host_key)

        self._server = await asyncssh.create_server(
            functools.partial(SSHServer, self._authenticator),
            self._config.hostname,
            self._config.port,
            server_host_keys=[host_key],
            process_factory=functools.partial(serve_sftp, root=root),
            encoding=None
        )
        LOGGER.info("sftp server listening on %s:%d", self._config.hostname, self.port)
        LOGGER.info("root directory: %s", root)

    async def __aenter__(self) -> 'Server':
        await self.serve()
        return self

    async def wait_closed(self) -> None:
        if self._server is not None:
            await self._server.wait_closed()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType]
    ) -> None:
        await self.close()
