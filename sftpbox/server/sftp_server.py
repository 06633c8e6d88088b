# asyncssh <-> Session glue.
#
# asyncssh parses the packets and keeps a handle table
# of its own, whose values are whatever open() hands it.
# We hand it our handle bytes, so every READ, WRITE and
# CLOSE comes straight back to the session's table.
# Directory handles get the same treatment in
# SFTPSessionHandler, which answers OPENDIR and READDIR
# from the session instead of asyncssh's own listing.
# Responses go the other way: non-OK statuses become
# SFTPError, everything else a return value.

import asyncio
import logging
import os
from typing import List, Optional, Tuple

import asyncssh
from asyncssh.constants import FXP_CLOSE, FXP_OPENDIR, FXP_READDIR
from asyncssh.packet import SSHPacket
from asyncssh.sftp import SFTPServerHandler

from sftpbox.fs.dat import Attrs
from sftpbox.sftp.dat import Status, Request, Payload, StatusResponse, Name, \
    OpenRequest, ReadRequest, WriteRequest, CloseRequest, OpendirRequest, \
    ReaddirRequest, StatRequest, LstatRequest, FstatRequest, SetstatRequest, \
    FsetstatRequest, MkdirRequest, RmdirRequest, RemoveRequest, RenameRequest, \
    RealpathRequest
from sftpbox.sftp.dispatch import Session

LOGGER = logging.getLogger(__name__)

REQUEST_ID_MASK = 0xffffffff
SFTP_VERSION = 3

def to_sftp_attrs(attrs: Attrs) -> asyncssh.SFTPAttrs:
    return asyncssh.SFTPAttrs(
        size=attrs.size,
        uid=attrs.uid,
        gid=attrs.gid,
        permissions=attrs.mode,
        atime=attrs.atime,
        mtime=attrs.mtime
    )

def to_sftp_name(name: Name) -> asyncssh.SFTPName:
    return asyncssh.SFTPName(
        os.fsencode(name.filename),
        os.fsencode(name.longname),
        to_sftp_attrs(name.attrs)
    )

def from_sftp_attrs(attrs: Optional[asyncssh.SFTPAttrs]) -> Optional[Attrs]:
    if attrs is None:
        return None
    return Attrs(
        mode=attrs.permissions or 0,
        uid=attrs.uid or 0,
        gid=attrs.gid or 0,
        size=attrs.size or 0,
        atime=int(attrs.atime or 0),
        mtime=int(attrs.mtime or 0)
    )

class SFTPServer(asyncssh.SFTPServer):
    def __init__(self, chan: asyncssh.SSHServerChannel, root: str) -> None:
        # chroot keeps asyncssh's own defaults confined too,
        # for anything we don't override below.
        super().__init__(chan, chroot=root)
        self._session = Session(root)
        self._request_id = 0
        LOGGER.info("sftp session started, root %s", root)

    @property
    def session(self) -> Session:
        return self._session

    def _next_request_id(self) -> int:
        request_id = self._request_id
        self._request_id = (self._request_id + 1) & REQUEST_ID_MASK
        return request_id

    async def _call(self, request: Request) -> Payload:
        message = await self._session.dispatch(request)
        payload = message.payload
        if isinstance(payload, StatusResponse) and payload.code != Status.OK:
            raise asyncssh.SFTPError(payload.code.value, payload.message)
        return payload

    async def open(self, path: bytes, pflags: int, attrs: asyncssh.SFTPAttrs) -> bytes:
        request = OpenRequest(self._next_request_id(), os.fsdecode(path), pflags,
                              attrs.permissions)
        payload = await self._call(request)
        return payload.handle  # type: ignore[union-attr]

    async def close(self, file_obj: bytes) -> None:
        await self._call(CloseRequest(self._next_request_id(), file_obj))

    async def read(self, file_obj: bytes, offset: int, size: int) -> bytes:
        payload = await self._call(ReadRequest(self._next_request_id(), file_obj, offset, size))
        return payload.data  # type: ignore[union-attr]

    async def write(self, file_obj: bytes, offset: int, data: bytes) -> int:
        await self._call(WriteRequest(self._next_request_id(), file_obj, offset, data))
        return len(data)

    async def fstat(self, file_obj: bytes) -> asyncssh.SFTPAttrs:
        payload = await self._call(FstatRequest(self._next_request_id(), file_obj))
        return to_sftp_attrs(payload.attrs)  # type: ignore[union-attr]

    async def fsetstat(self, file_obj: bytes, attrs: asyncssh.SFTPAttrs) -> None:
        await self._call(FsetstatRequest(self._next_request_id(), file_obj,
                                         from_sftp_attrs(attrs)))

    async def stat(self, path: bytes) -> asyncssh.SFTPAttrs:
        payload = await self._call(StatRequest(self._next_request_id(), os.fsdecode(path)))
        return to_sftp_attrs(payload.attrs)  # type: ignore[union-attr]

    async def lstat(self, path: bytes) -> asyncssh.SFTPAttrs:
        payload = await self._call(LstatRequest(self._next_request_id(), os.fsdecode(path)))
        return to_sftp_attrs(payload.attrs)  # type: ignore[union-attr]

    async def setstat(self, path: bytes, attrs: asyncssh.SFTPAttrs) -> None:
        await self._call(SetstatRequest(self._next_request_id(), os.fsdecode(path),
                                        from_sftp_attrs(attrs)))

    async def opendir(self, path: bytes) -> bytes:
        payload = await self._call(OpendirRequest(self._next_request_id(), os.fsdecode(path)))
        return payload.handle  # type: ignore[union-attr]

    async def readdir(self, handle: bytes) -> List[asyncssh.SFTPName]:
        payload = await self._call(ReaddirRequest(self._next_request_id(), handle))
        return [to_sftp_name(name) for name in payload.names]  # type: ignore[union-attr]

    async def mkdir(self, path: bytes, attrs: asyncssh.SFTPAttrs) -> None:
        await self._call(MkdirRequest(self._next_request_id(), os.fsdecode(path),
                                      attrs.permissions))

    async def rmdir(self, path: bytes) -> None:
        await self._call(RmdirRequest(self._next_request_id(), os.fsdecode(path)))

    async def remove(self, path: bytes) -> None:
        await self._call(RemoveRequest(self._next_request_id(), os.fsdecode(path)))

    async def rename(self, oldpath: bytes, newpath: bytes) -> None:
        await self._call(RenameRequest(self._next_request_id(), os.fsdecode(oldpath),
                                       os.fsdecode(newpath)))

    async def realpath(self, path: bytes) -> bytes:
        payload = await self._call(RealpathRequest(self._next_request_id(), os.fsdecode(path)))
        return os.fsencode(payload.names[0].filename)  # type: ignore[union-attr]

    # Symlinks, links and the openssh extensions stay off;
    # none of them go through the sandbox.
    def readlink(self, path: bytes) -> bytes:
        raise asyncssh.SFTPOpUnsupported("readlink not supported")

    def symlink(self, oldpath: bytes, newpath: bytes) -> None:
        raise asyncssh.SFTPOpUnsupported("symlink not supported")

    def link(self, oldpath: bytes, newpath: bytes) -> None:
        raise asyncssh.SFTPOpUnsupported("link not supported")

    def posix_rename(self, oldpath: bytes, newpath: bytes) -> None:
        raise asyncssh.SFTPOpUnsupported("posix-rename not supported")

    def statvfs(self, path: bytes) -> None:
        raise asyncssh.SFTPOpUnsupported("statvfs not supported")

    def fstatvfs(self, file_obj: bytes) -> None:
        raise asyncssh.SFTPOpUnsupported("fstatvfs not supported")

    def fsync(self, file_obj: bytes) -> None:
        raise asyncssh.SFTPOpUnsupported("fsync not supported")

    def exit(self) -> None:
        # asyncssh has already closed the file handles it knew
        # about by now; this sweeps up whatever is left.
        task = asyncio.ensure_future(self._session.end())
        task.add_done_callback(log_cleanup_failure)

def log_cleanup_failure(task: 'asyncio.Future[None]') -> None:
    if task.cancelled():
        return
    ex = task.exception()
    if ex is not None:
        LOGGER.error("sftp session cleanup failed: %s", ex)

class SFTPSessionHandler(SFTPServerHandler):
    """asyncssh's packet loop with directories answered by the Session.

    Wire handles for directories map to session handles in
    _dir_handles, so the snapshot and any error happen at
    OPENDIR and each READDIR returns one session batch.
    """

    _server: SFTPServer

    async def _process_opendir(self, packet: SSHPacket) -> bytes:
        path = packet.get_string()
        if self._version < 6:
            packet.check_end()

        session_handle = await self._server.opendir(path)
        handle = self._get_next_handle()
        self._dir_handles[handle] = session_handle  # type: ignore[assignment]
        return handle

    async def _process_readdir(self, packet: SSHPacket) -> Tuple[List[asyncssh.SFTPName], bool]:
        handle = packet.get_string()
        if self._version < 6:
            packet.check_end()

        session_handle = self._dir_handles.get(handle)
        if session_handle is None:
            raise asyncssh.SFTPFailure("Invalid handle")
        names = await self._server.readdir(session_handle)  # type: ignore[arg-type]
        return names, False

    async def _process_close(self, packet: SSHPacket) -> None:
        handle = packet.get_string()
        if self._version < 6:
            packet.check_end()

        session_handle = self._dir_handles.pop(handle, None)
        if session_handle is None:
            session_handle = self._file_handles.pop(handle, None)
        if session_handle is None:
            raise asyncssh.SFTPFailure("Invalid handle")
        await self._server.close(session_handle)  # type: ignore[arg-type]

    _packet_handlers = {
        **SFTPServerHandler._packet_handlers,
        FXP_CLOSE: _process_close,
        FXP_OPENDIR: _process_opendir,
        FXP_READDIR: _process_readdir,
    }

async def serve_sftp(process: asyncssh.SSHServerProcess, root: str) -> None:
    # Channels opened with encoding=None, so stdin/stdout carry raw packets
    if process.subsystem != "sftp":
        LOGGER.warning("rejecting non-sftp session request")
        process.stderr.write(b"only the sftp subsystem is available\n")
        process.exit(1)
        return

    server = SFTPServer(process.channel, root=root)
    handler = SFTPSessionHandler(server, process.stdin, process.stdout, SFTP_VERSION)
    await handler.run()
