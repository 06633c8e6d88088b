# Host key handling. The key is generated once and then
# reused, so clients don't see a new fingerprint on every
# start.

import logging
import os

import asyncssh

LOGGER = logging.getLogger(__name__)

DEFAULT_KEY_TYPE = "ssh-rsa"
DEFAULT_KEY_SIZE = 4096

def load_or_generate_host_key(
    path: str,
    key_type: str = DEFAULT_KEY_TYPE,
    key_size: int = DEFAULT_KEY_SIZE
) -> asyncssh.SSHKey:
    if os.path.exists(path):
        LOGGER.info("loading host key %s", path)
        return asyncssh.read_private_key(path)

    LOGGER.info("generating %s host key %s", key_type, path)
    if key_type == "ssh-rsa":
        key = asyncssh.generate_private_key(key_type, key_size=key_size)
    else:
        key = asyncssh.generate_private_key(key_type)

    keydir = os.path.dirname(path)
    if keydir:
        os.makedirs(keydir, exist_ok=True)
    key.write_private_key(path)
    os.chmod(path, 0o600)
    return key
