import argparse
import asyncio
import dataclasses
import logging
import os
from typing import List, Optional

from sftpbox.config.config import ServerConfig
from sftpbox.server.server import Server

LOGLEVEL = os.environ.get('LOGLEVEL', 'INFO').upper()

def parse_args(argv: Optional[List[str]] = None) -> ServerConfig:
    # Credentials only ever come from SFTP_USER / SFTP_PASS,
    # never the command line.
    config = ServerConfig.from_env()
    parser = argparse.ArgumentParser(description="Serve a directory over SFTP")
    parser.add_argument("--hostname", type=str, default=config.hostname)
    parser.add_argument("--port", type=int, default=config.port)
    parser.add_argument("--root", type=str, default=config.root)
    parser.add_argument("--host-key", type=str, default=config.host_key)
    args = parser.parse_args(argv)
    return dataclasses.replace(
        config,
        hostname=args.hostname,
        port=args.port,
        root=os.path.abspath(args.root),
        host_key=os.path.abspath(args.host_key)
    )

def serve() -> None:
    logging.basicConfig(
        level=LOGLEVEL,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s"
    )
    config = parse_args()

    async def run_server() -> None:
        async with Server(config) as server:
            await server.wait_closed()

    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("stopping server")

if __name__ == "__main__":
    serve()
