# Handle<->open object mapping logic
#
# Every session owns exactly one HandleTable. A handle
# is a 32 bit counter, never reused while the session
# lives, and points at either an open file or a
# directory cursor -- never both, since they share the
# one dict.

import logging
import struct
from typing import Dict, List, Union

from sftpbox.fs.dat import FileHandle, DirHandle
from sftpbox.fs import unix
from sftpbox.sftp.dat import Status, SFTPException, HANDLE_SIZE, READDIR_BATCH
from sftpbox.sftp.status import status_for_exception

LOGGER = logging.getLogger(__name__)

HANDLE_MASK = 0xffffffff

HandleData = Union[FileHandle, DirHandle]

def encode_handle(handle: int) -> bytes:
    return struct.pack("!I", handle)

def decode_handle(raw: bytes) -> int:
    if len(raw) != HANDLE_SIZE:
        raise SFTPException(Status.FAILURE, "malformed handle")
    handle, = struct.unpack("!I", raw)
    return handle

class HandleTable:
    def __init__(self) -> None:
        self._next_handle = 0
        self._handles: Dict[int, HandleData] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, handle: int) -> bool:
        return handle in self._handles

    def allocate(self, data: HandleData) -> int:
        # Wrapping past 2**32 would take a very long session;
        # if it happens, step over anything still open.
        while True:
            handle = self._next_handle
            self._next_handle = (self._next_handle + 1) & HANDLE_MASK
            if handle not in self._handles:
                break

        self._handles[handle] = data
        LOGGER.debug("allocated handle %d for %s", handle, data.path)
        return handle

    def lookup(self, handle: int) -> HandleData:
        try:
            return self._handles[handle]
        except KeyError as ex:
            LOGGER.warning("unknown handle %d", handle)
            raise SFTPException(Status.FAILURE, "invalid handle") from ex

    def lookup_file(self, handle: int) -> FileHandle:
        data = self.lookup(handle)
        if not isinstance(data, FileHandle):
            LOGGER.warning("handle %d is not a file", handle)
            raise SFTPException(Status.FAILURE, "not a file handle")
        return data

    def lookup_dir(self, handle: int) -> DirHandle:
        data = self.lookup(handle)
        if not isinstance(data, DirHandle):
            LOGGER.warning("handle %d is not a directory", handle)
            raise SFTPException(Status.FAILURE, "not a directory handle")
        return data

    def check_live(self, handle: int, data: HandleData) -> None:
        # Call again after every await: a CLOSE may have
        # run while we were parked.
        if self._handles.get(handle) is not data:
            LOGGER.warning("handle %d was released mid-request", handle)
            raise SFTPException(Status.FAILURE, "invalid handle")

    async def release(self, handle: int) -> None:
        try:
            data = self._handles.pop(handle)
        except KeyError as ex:
            LOGGER.warning("release of unknown handle %d", handle)
            raise SFTPException(Status.FAILURE, "invalid handle") from ex

        LOGGER.debug("released handle %d for %s", handle, data.path)
        if isinstance(data, FileHandle):
            # The entry is gone either way, close errors
            # are only reported.
            try:
                await unix.close_file(data.file)
            except (OSError, ValueError) as ex:
                raise status_for_exception("close", data.path, ex) from ex

    async def release_all(self) -> None:
        for handle in list(self._handles):
            try:
                await self.release(handle)
            except SFTPException:
                # already logged by release
                pass

def next_batch(cursor: DirHandle, batch_size: int = READDIR_BATCH) -> List[str]:
    batch = cursor.remaining[:batch_size]
    del cursor.remaining[:batch_size]
    return batch
