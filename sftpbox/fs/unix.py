# Native filesystem access, at the lowest level.
# Every call here goes through aiofiles so that a
# slow disk only ever parks the request that asked,
# never the event loop. Nothing in this module knows
# about the sandbox: callers resolve paths first.

import os
from typing import Any, List, Optional, Tuple

import aiofiles
import aiofiles.os

from sftpbox.sftp.dat import FXF_READ, FXF_WRITE, FXF_APPEND, FXF_CREAT, \
    FXF_TRUNC, FXF_EXCL

DEFAULT_FILE_PERMS = 0o666
DEFAULT_DIR_PERMS = 0o777

def open_flags(pflags: int) -> Tuple[str, int]:
    # SFTP pflags -> (python mode, os.open flags)
    if pflags & FXF_EXCL:
        mode = "xb"
    elif pflags & FXF_APPEND:
        mode = "ab"
    elif pflags & FXF_WRITE and not pflags & FXF_READ:
        mode = "wb"
    else:
        mode = "rb"

    if pflags & FXF_READ and pflags & FXF_WRITE:
        mode += "+"
        flags = os.O_RDWR
    elif pflags & FXF_WRITE:
        flags = os.O_WRONLY
    else:
        flags = os.O_RDONLY

    if pflags & FXF_APPEND:
        flags |= os.O_APPEND
    if pflags & FXF_CREAT:
        flags |= os.O_CREAT
    if pflags & FXF_TRUNC:
        flags |= os.O_TRUNC
    if pflags & FXF_EXCL:
        flags |= os.O_EXCL

    flags |= getattr(os, "O_BINARY", 0)
    return mode, flags

async def open_file(path: str, pflags: int, permissions: Optional[int] = None) -> Any:
    mode, flags = open_flags(pflags)
    perms = DEFAULT_FILE_PERMS if permissions is None else permissions
    return await aiofiles.open(
        path,
        mode,
        buffering=0,
        opener=lambda fpath, _: os.open(fpath, flags, perms)
    )

async def read_at(f: Any, offset: int, length: int) -> bytes:
    await f.seek(offset)
    data = await f.read(length)
    return data or b""

async def write_at(f: Any, offset: int, data: bytes) -> int:
    # Unbuffered writes are allowed to come up short
    await f.seek(offset)
    view = memoryview(data)
    written = 0
    while written < len(data):
        written += await f.write(view[written:])
    return written

async def close_file(f: Any) -> None:
    await f.close()

async def stat(path: str) -> os.stat_result:
    return await aiofiles.os.stat(path)

async def lstat(path: str) -> os.stat_result:
    return await aiofiles.os.stat(path, follow_symlinks=False)

async def fstat(f: Any) -> os.stat_result:
    return await aiofiles.os.stat(f.fileno())

async def listdir(path: str) -> List[str]:
    return await aiofiles.os.listdir(path)

async def mkdir(path: str, permissions: Optional[int] = None) -> None:
    perms = DEFAULT_DIR_PERMS if permissions is None else permissions
    await aiofiles.os.mkdir(path, perms)

async def rmdir(path: str) -> None:
    await aiofiles.os.rmdir(path)

async def unlink(path: str) -> None:
    await aiofiles.os.remove(path)

async def rename(oldpath: str, newpath: str) -> None:
    await aiofiles.os.rename(oldpath, newpath)
