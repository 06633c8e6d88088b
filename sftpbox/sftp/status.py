# Local failures -> SFTP status codes.

import errno
import logging

from sftpbox.sftp.dat import Status, SFTPException

LOGGER = logging.getLogger(__name__)

NO_SUCH_FILE_ERRNOS = frozenset((errno.ENOENT, errno.ENOTDIR))
PERMISSION_DENIED_ERRNOS = frozenset((errno.EACCES, errno.EPERM))

def to_status(ex: OSError) -> Status:
    if ex.errno in NO_SUCH_FILE_ERRNOS:
        return Status.NO_SUCH_FILE
    if ex.errno in PERMISSION_DENIED_ERRNOS:
        return Status.PERMISSION_DENIED
    return Status.FAILURE

def status_for_exception(op: str, target: str, ex: Exception) -> SFTPException:
    # Always log first; the peer only ever sees the code.
    LOGGER.warning("%s %s failed: %s", op, target, ex)
    if isinstance(ex, OSError):
        return SFTPException(to_status(ex), str(ex))
    return SFTPException(Status.FAILURE, str(ex))
