# SFTP handlers for each type of request.
# Marshal routines from the fs layer: every path
# goes through the sandbox before anything else,
# every handle through the session's table, and
# every local failure through the status mapper.
# One Message comes back per request, always.

import asyncio
import logging
import os
from typing import Awaitable, Callable, Dict, List, Type

from sftpbox.fs import unix
from sftpbox.fs.attrs import to_attrs, to_longname, ZERO_ATTRS
from sftpbox.fs.dat import Attrs, FileHandle, DirHandle
from sftpbox.fs.handle import HandleTable, HandleData, encode_handle, \
    decode_handle, next_batch
from sftpbox.fs.sandbox import Sandbox, display_path
from sftpbox.sftp.dat import MessageType, Status, STATUS_MESSAGES, SFTPException, \
    Message, Name, Request, StatusResponse, HandleResponse, DataResponse, \
    NameResponse, AttrsResponse, OpenRequest, ReadRequest, WriteRequest, \
    CloseRequest, OpendirRequest, ReaddirRequest, StatRequest, LstatRequest, \
    FstatRequest, SetstatRequest, FsetstatRequest, MkdirRequest, RmdirRequest, \
    RemoveRequest, RenameRequest, RealpathRequest
from sftpbox.sftp.status import status_for_exception

LOGGER = logging.getLogger(__name__)

REQUEST_TYPES: Dict[Type[Request], MessageType] = {
    OpenRequest: MessageType.OPEN,
    ReadRequest: MessageType.READ,
    WriteRequest: MessageType.WRITE,
    CloseRequest: MessageType.CLOSE,
    OpendirRequest: MessageType.OPENDIR,
    ReaddirRequest: MessageType.READDIR,
    StatRequest: MessageType.STAT,
    LstatRequest: MessageType.LSTAT,
    FstatRequest: MessageType.FSTAT,
    SetstatRequest: MessageType.SETSTAT,
    FsetstatRequest: MessageType.FSETSTAT,
    MkdirRequest: MessageType.MKDIR,
    RmdirRequest: MessageType.RMDIR,
    RemoveRequest: MessageType.REMOVE,
    RenameRequest: MessageType.RENAME,
    RealpathRequest: MessageType.REALPATH,
}

# Native errors we expect out of the fs layer. ValueError
# covers I/O on a file that a concurrent CLOSE already shut
# and paths with embedded NULs.
FS_ERRORS = (OSError, ValueError)

def encode_status(request_id: int, status: Status) -> Message:
    resp = StatusResponse(status, STATUS_MESSAGES[status])
    return Message(MessageType.STATUS, request_id, resp)

def encode_handle_message(request_id: int, handle: int) -> Message:
    return Message(MessageType.HANDLE, request_id, HandleResponse(encode_handle(handle)))

def encode_data(request_id: int, data: bytes) -> Message:
    return Message(MessageType.DATA, request_id, DataResponse(data))

def encode_names(request_id: int, names: List[Name]) -> Message:
    return Message(MessageType.NAME, request_id, NameResponse(names))

def encode_attrs(request_id: int, attrs: Attrs) -> Message:
    return Message(MessageType.ATTRS, request_id, AttrsResponse(attrs))

class Session:
    """One authenticated SFTP session.

    Owns the handle table; nothing here is shared with other
    sessions except the served directory itself, and the sandbox
    keeps every session inside that.
    """

    def __init__(self, root: str) -> None:
        self._sandbox = Sandbox(root)
        self._handles = HandleTable()
        self._ended = False
        self._handlers: Dict[MessageType, Callable[..., Awaitable[Message]]] = {
            MessageType.OPEN: self._open,
            MessageType.READ: self._read,
            MessageType.WRITE: self._write,
            MessageType.CLOSE: self._close,
            MessageType.OPENDIR: self._opendir,
            MessageType.READDIR: self._readdir,
            MessageType.STAT: self._stat,
            MessageType.LSTAT: self._lstat,
            MessageType.FSTAT: self._fstat,
            MessageType.SETSTAT: self._setstat,
            MessageType.FSETSTAT: self._fsetstat,
            MessageType.MKDIR: self._mkdir,
            MessageType.RMDIR: self._rmdir,
            MessageType.REMOVE: self._remove,
            MessageType.RENAME: self._rename,
            MessageType.REALPATH: self._realpath,
        }

    @property
    def sandbox(self) -> Sandbox:
        return self._sandbox

    @property
    def handles(self) -> HandleTable:
        return self._handles

    @property
    def ended(self) -> bool:
        return self._ended

    async def dispatch(self, request: Request) -> Message:
        message_type = REQUEST_TYPES[type(request)]
        LOGGER.debug("sftp: %s request(%d)", message_type.name, request.request_id)

        try:
            return await self._handlers[message_type](request)
        except SFTPException as ex:
            LOGGER.debug(
                "sftp: %s request(%d) -> %s",
                message_type.name,
                request.request_id,
                ex.status.name
            )
            return encode_status(request.request_id, ex.status)

    async def end(self) -> None:
        # Transport went away: everything this session
        # had open gets closed, once.
        if self._ended:
            return
        self._ended = True
        LOGGER.info("sftp session ended, releasing %d handle(s)", len(self._handles))
        await self._handles.release_all()

    def _resolve(self, vpath: str) -> str:
        local = self._sandbox.resolve(vpath)
        if local is None:
            raise SFTPException(Status.PERMISSION_DENIED, "outside served root")
        return local

    def _allocate(self, data: HandleData) -> int:
        if self._ended:
            raise SFTPException(Status.FAILURE, "session ended")
        return self._handles.allocate(data)

    async def _open(self, req: OpenRequest) -> Message:
        local = self._resolve(req.path)
        try:
            f = await unix.open_file(local, req.pflags, req.permissions)
        except FS_ERRORS as ex:
            raise status_for_exception("open", local, ex) from ex

        if self._ended:
            try:
                await unix.close_file(f)
            except FS_ERRORS as ex:
                LOGGER.warning("close %s failed: %s", local, ex)
            raise SFTPException(Status.FAILURE, "session ended")

        handle = self._allocate(FileHandle(f, req.pflags, local, asyncio.Lock()))
        return encode_handle_message(req.request_id, handle)

    async def _read(self, req: ReadRequest) -> Message:
        handle = decode_handle(req.handle)
        fh = self._handles.lookup_file(handle)

        async with fh.lock:
            self._handles.check_live(handle, fh)
            try:
                data = await unix.read_at(fh.file, req.offset, req.length)
            except FS_ERRORS as ex:
                self._handles.check_live(handle, fh)
                raise status_for_exception("read", fh.path, ex) from ex
            self._handles.check_live(handle, fh)

        if not data:
            return encode_status(req.request_id, Status.EOF)
        return encode_data(req.request_id, data)

    async def _write(self, req: WriteRequest) -> Message:
        handle = decode_handle(req.handle)
        fh = self._handles.lookup_file(handle)

        async with fh.lock:
            self._handles.check_live(handle, fh)
            try:
                await unix.write_at(fh.file, req.offset, req.data)
            except FS_ERRORS as ex:
                self._handles.check_live(handle, fh)
                raise status_for_exception("write", fh.path, ex) from ex
            self._handles.check_live(handle, fh)

        return encode_status(req.request_id, Status.OK)

    async def _close(self, req: CloseRequest) -> Message:
        await self._handles.release(decode_handle(req.handle))
        return encode_status(req.request_id, Status.OK)

    async def _opendir(self, req: OpendirRequest) -> Message:
        local = self._resolve(req.path)
        try:
            entries = await unix.listdir(local)
        except FS_ERRORS as ex:
            raise status_for_exception("opendir", local, ex) from ex

        handle = self._allocate(DirHandle(local, list(entries), asyncio.Lock()))
        return encode_handle_message(req.request_id, handle)

    async def _readdir(self, req: ReaddirRequest) -> Message:
        handle = decode_handle(req.handle)
        cursor = self._handles.lookup_dir(handle)

        # Two READDIRs on one handle take turns
        async with cursor.lock:
            self._handles.check_live(handle, cursor)
            if not cursor.remaining:
                return encode_status(req.request_id, Status.EOF)

            names: List[Name] = []
            for filename in next_batch(cursor):
                fullpath = os.path.join(cursor.path, filename)
                try:
                    st = await unix.stat(fullpath)
                except FS_ERRORS as ex:
                    LOGGER.warning("could not stat %s: %s", fullpath, ex)
                    names.append(Name(filename, filename, ZERO_ATTRS))
                    continue
                names.append(Name(filename, to_longname(filename, st), to_attrs(st)))

            self._handles.check_live(handle, cursor)

        return encode_names(req.request_id, names)

    async def _stat(self, req: StatRequest) -> Message:
        local = self._resolve(req.path)
        try:
            st = await unix.stat(local)
        except FS_ERRORS as ex:
            raise status_for_exception("stat", local, ex) from ex
        return encode_attrs(req.request_id, to_attrs(st))

    async def _lstat(self, req: LstatRequest) -> Message:
        local = self._resolve(req.path)
        try:
            st = await unix.lstat(local)
        except FS_ERRORS as ex:
            raise status_for_exception("lstat", local, ex) from ex
        return encode_attrs(req.request_id, to_attrs(st))

    async def _fstat(self, req: FstatRequest) -> Message:
        handle = decode_handle(req.handle)
        fh = self._handles.lookup_file(handle)
        try:
            st = await unix.fstat(fh.file)
        except FS_ERRORS as ex:
            self._handles.check_live(handle, fh)
            raise status_for_exception("fstat", fh.path, ex) from ex
        self._handles.check_live(handle, fh)
        return encode_attrs(req.request_id, to_attrs(st))

    async def _setstat(self, req: SetstatRequest) -> Message:
        # Attribute setting isn't supported on every platform we
        # run on, so it is acknowledged and nothing changes.
        self._resolve(req.path)
        return encode_status(req.request_id, Status.OK)

    async def _fsetstat(self, req: FsetstatRequest) -> Message:
        self._handles.lookup_file(decode_handle(req.handle))
        return encode_status(req.request_id, Status.OK)

    async def _mkdir(self, req: MkdirRequest) -> Message:
        local = self._resolve(req.path)
        try:
            await unix.mkdir(local, req.permissions)
        except FS_ERRORS as ex:
            raise status_for_exception("mkdir", local, ex) from ex
        return encode_status(req.request_id, Status.OK)

    async def _rmdir(self, req: RmdirRequest) -> Message:
        local = self._resolve(req.path)
        try:
            await unix.rmdir(local)
        except FS_ERRORS as ex:
            raise status_for_exception("rmdir", local, ex) from ex
        return encode_status(req.request_id, Status.OK)

    async def _remove(self, req: RemoveRequest) -> Message:
        local = self._resolve(req.path)
        try:
            await unix.unlink(local)
        except FS_ERRORS as ex:
            raise status_for_exception("remove", local, ex) from ex
        return encode_status(req.request_id, Status.OK)

    async def _rename(self, req: RenameRequest) -> Message:
        oldlocal = self._resolve(req.oldpath)
        newlocal = self._resolve(req.newpath)
        try:
            await unix.rename(oldlocal, newlocal)
        except FS_ERRORS as ex:
            raise status_for_exception("rename", oldlocal, ex) from ex
        return encode_status(req.request_id, Status.OK)

    async def _realpath(self, req: RealpathRequest) -> Message:
        path = display_path(req.path)
        return encode_names(req.request_id, [Name(path, path, ZERO_ATTRS)])
