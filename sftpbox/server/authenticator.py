import hmac
import logging

from sftpbox.config.config import Credentials

LOGGER = logging.getLogger(__name__)

class Authenticator:
    # Exactly one identity is ever allowed in. There is no
    # per-user anything past this point.
    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    @property
    def username(self) -> str:
        return self._credentials.username

    def authenticate(self, username: str, password: str) -> bool:
        user_ok = hmac.compare_digest(username.encode("utf-8"),
                                      self._credentials.username.encode("utf-8"))
        pass_ok = hmac.compare_digest(password.encode("utf-8"),
                                      self._credentials.password.encode("utf-8"))
        if user_ok and pass_ok:
            LOGGER.info("authentication successful for user: %s", username)
            return True
        LOGGER.info("authentication failed for user: %s", username)
        return False

