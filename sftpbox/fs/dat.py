# Data structures for handle-to-filesystem mapping.

# Through these, a session is able to flip SFTP
# requests that name a handle back into the open
# file or the directory listing that the handle was
# created for. Handles themselves are just integers
# on our side (4 big-endian bytes on the wire), so
# they don't need an introduction here.

# There is one handle table per SFTP session and
# nothing in here is shared between sessions.
import asyncio
from typing import NamedTuple, List, Any

# Attribute record sent back for STAT/LSTAT/FSTAT
# and for every READDIR entry. Times are whole
# seconds, uid/gid are 0 where the platform has none.
class Attrs(NamedTuple):
    mode: int
    uid: int
    gid: int
    size: int
    atime: int
    mtime: int

class FileHandle(NamedTuple):
    file: Any       # aiofiles binary file object
    pflags: int
    path: str       # local path, for logging
    lock: asyncio.Lock

# A directory cursor: the names which have not been
# handed out yet, plus the directory they live in.
# The list is a snapshot taken at OPENDIR time and
# is consumed from the front by READDIR.
class DirHandle(NamedTuple):
    path: str
    remaining: List[str]
    lock: asyncio.Lock
