# SFTP request/response primitives.
#
# The transport layer (asyncssh) already did the
# packet parsing by the time anything gets here, so
# these are just typed records. One request in, one
# Message out, echoing the request id.
#
# OPEN:     open/create a local file, returns a handle
# READ:     read up to length bytes at offset from a file handle
# WRITE:    write data at offset through a file handle
# CLOSE:    release a file or directory handle
# OPENDIR:  snapshot a directory listing, returns a handle
# READDIR:  hand out the next batch of the snapshot
# STAT:     attributes, following symlinks
# LSTAT:    attributes, not following symlinks
# FSTAT:    attributes of an open file handle
# SETSTAT:  acknowledged, nothing is changed
# FSETSTAT: same, for an open file handle
# MKDIR / RMDIR / REMOVE / RENAME: what they say
# REALPATH: canonical display form of a path

from enum import Enum
from typing import NamedTuple, List, Optional, Union

from sftpbox.fs.dat import Attrs

class MessageType(Enum):
    OPEN = 3
    CLOSE = 4
    READ = 5
    WRITE = 6
    LSTAT = 7
    FSTAT = 8
    SETSTAT = 9
    FSETSTAT = 10
    OPENDIR = 11
    READDIR = 12
    REMOVE = 13
    MKDIR = 14
    RMDIR = 15
    REALPATH = 16
    STAT = 17
    RENAME = 18

    STATUS = 101
    HANDLE = 102
    DATA = 103
    NAME = 104
    ATTRS = 105

class Status(Enum):
    OK = 0
    EOF = 1
    NO_SUCH_FILE = 2
    PERMISSION_DENIED = 3
    FAILURE = 4

# What the peer gets to read. The real reason only
# ever goes to our log.
STATUS_MESSAGES = {
    Status.OK: "Success",
    Status.EOF: "End of file",
    Status.NO_SUCH_FILE: "No such file",
    Status.PERMISSION_DENIED: "Permission denied",
    Status.FAILURE: "Failure",
}

# Open flags, as sent by the client
FXF_READ = 0x00000001
FXF_WRITE = 0x00000002
FXF_APPEND = 0x00000004
FXF_CREAT = 0x00000008
FXF_TRUNC = 0x00000010
FXF_EXCL = 0x00000020

HANDLE_SIZE = 4
READDIR_BATCH = 100

class OpenRequest(NamedTuple):
    request_id: int
    path: str
    pflags: int
    permissions: Optional[int] = None

class ReadRequest(NamedTuple):
    request_id: int
    handle: bytes
    offset: int
    length: int

class WriteRequest(NamedTuple):
    request_id: int
    handle: bytes
    offset: int
    data: bytes

class CloseRequest(NamedTuple):
    request_id: int
    handle: bytes

class OpendirRequest(NamedTuple):
    request_id: int
    path: str

class ReaddirRequest(NamedTuple):
    request_id: int
    handle: bytes

class StatRequest(NamedTuple):
    request_id: int
    path: str

class LstatRequest(NamedTuple):
    request_id: int
    path: str

class FstatRequest(NamedTuple):
    request_id: int
    handle: bytes

class SetstatRequest(NamedTuple):
    request_id: int
    path: str
    attrs: Optional[Attrs] = None

class FsetstatRequest(NamedTuple):
    request_id: int
    handle: bytes
    attrs: Optional[Attrs] = None

class MkdirRequest(NamedTuple):
    request_id: int
    path: str
    permissions: Optional[int] = None

class RmdirRequest(NamedTuple):
    request_id: int
    path: str

class RemoveRequest(NamedTuple):
    request_id: int
    path: str

class RenameRequest(NamedTuple):
    request_id: int
    oldpath: str
    newpath: str

class RealpathRequest(NamedTuple):
    request_id: int
    path: str

Request = Union[
    OpenRequest, ReadRequest, WriteRequest, CloseRequest, OpendirRequest,
    ReaddirRequest, StatRequest, LstatRequest, FstatRequest, SetstatRequest,
    FsetstatRequest, MkdirRequest, RmdirRequest, RemoveRequest,
    RenameRequest, RealpathRequest
]

class Name(NamedTuple):
    filename: str
    longname: str
    attrs: Attrs

class StatusResponse(NamedTuple):
    code: Status
    message: str

class HandleResponse(NamedTuple):
    handle: bytes

class DataResponse(NamedTuple):
    data: bytes

class NameResponse(NamedTuple):
    names: List[Name]

class AttrsResponse(NamedTuple):
    attrs: Attrs

Payload = Union[StatusResponse, HandleResponse, DataResponse, NameResponse, AttrsResponse]

class Message(NamedTuple):
    message_type: MessageType
    request_id: int
    payload: Payload

class SFTPException(Exception):
    def __init__(self, status: Status, reason: str = "") -> None:
        self.status = Status(status)
        self.reason = reason
        super().__init__(reason or self.status.name)
