import asyncio
import errno
import os

import pytest

from sftpbox.fs import unix
from sftpbox.fs.attrs import ZERO_ATTRS
from sftpbox.sftp.dat import MessageType, Status, FXF_READ, FXF_WRITE, FXF_CREAT, \
    FXF_TRUNC, FXF_APPEND, FXF_EXCL, OpenRequest, ReadRequest, WriteRequest, \
    CloseRequest, OpendirRequest, ReaddirRequest, StatRequest, LstatRequest, \
    FstatRequest, SetstatRequest, FsetstatRequest, MkdirRequest, RmdirRequest, \
    RemoveRequest, RenameRequest, RealpathRequest
from sftpbox.sftp.dispatch import Session


def status_of(message):
    assert message.message_type == MessageType.STATUS
    return message.payload.code


async def open_handle(session, path, pflags=FXF_READ):
    message = await session.dispatch(OpenRequest(1, path, pflags))
    assert message.message_type == MessageType.HANDLE, message
    return message.payload.handle


async def opendir_handle(session, path):
    message = await session.dispatch(OpendirRequest(1, path))
    assert message.message_type == MessageType.HANDLE, message
    return message.payload.handle


async def read_all_names(session, handle):
    batches = []
    while True:
        message = await session.dispatch(ReaddirRequest(2, handle))
        if message.message_type == MessageType.STATUS:
            assert message.payload.code == Status.EOF
            return batches
        assert message.message_type == MessageType.NAME
        batches.append([name.filename for name in message.payload.names])


@pytest.fixture
def root(tmp_path):
    served = tmp_path / "root"
    served.mkdir()
    return served


@pytest.fixture
def session(root):
    return Session(str(root))


@pytest.fixture
def fs_calls(monkeypatch):
    # Record every path that reaches the filesystem layer
    calls = []

    def recorder(name):
        real = getattr(unix, name)

        async def wrapper(*args, **kwargs):
            calls.append((name, args))
            return await real(*args, **kwargs)
        return wrapper

    for name in ("open_file", "stat", "lstat", "listdir", "mkdir", "rmdir",
                 "unlink", "rename"):
        monkeypatch.setattr(unix, name, recorder(name))
    return calls


class TestFiles:
    @pytest.mark.asyncio
    async def test_open_read_close(self, session, root):
        (root / "a.txt").write_bytes(b"hi")

        handle = await open_handle(session, "/a.txt", FXF_READ)

        message = await session.dispatch(ReadRequest(10, handle, 0, 10))
        assert message.message_type == MessageType.DATA
        assert message.request_id == 10
        assert message.payload.data == b"hi"

        message = await session.dispatch(ReadRequest(11, handle, 2, 10))
        assert status_of(message) == Status.EOF
        assert message.request_id == 11

        assert status_of(await session.dispatch(CloseRequest(12, handle))) == Status.OK

    @pytest.mark.asyncio
    async def test_handle_is_dead_after_close(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        handle = await open_handle(session, "a.txt")
        await session.dispatch(CloseRequest(1, handle))

        assert status_of(await session.dispatch(ReadRequest(2, handle, 0, 1))) == Status.FAILURE
        assert status_of(await session.dispatch(WriteRequest(3, handle, 0, b"x"))) == Status.FAILURE
        assert status_of(await session.dispatch(FstatRequest(4, handle))) == Status.FAILURE
        assert status_of(await session.dispatch(CloseRequest(5, handle))) == Status.FAILURE

    @pytest.mark.asyncio
    async def test_read_past_end_is_eof(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        handle = await open_handle(session, "/a.txt")
        message = await session.dispatch(ReadRequest(1, handle, 100, 10))
        assert status_of(message) == Status.EOF

    @pytest.mark.asyncio
    async def test_partial_read(self, session, root):
        (root / "a.txt").write_bytes(b"hello world")
        handle = await open_handle(session, "/a.txt")
        message = await session.dispatch(ReadRequest(1, handle, 6, 100))
        assert message.payload.data == b"world"

    @pytest.mark.asyncio
    async def test_write_creates_file(self, session, root):
        handle = await open_handle(session, "/new.txt", FXF_WRITE | FXF_CREAT | FXF_TRUNC)
        assert status_of(await session.dispatch(WriteRequest(1, handle, 0, b"hello"))) == Status.OK
        assert status_of(await session.dispatch(WriteRequest(2, handle, 5, b" there"))) == Status.OK
        await session.dispatch(CloseRequest(3, handle))
        assert (root / "new.txt").read_bytes() == b"hello there"

    @pytest.mark.asyncio
    async def test_write_at_offset(self, session, root):
        (root / "a.txt").write_bytes(b"aaaaaa")
        handle = await open_handle(session, "/a.txt", FXF_READ | FXF_WRITE)
        await session.dispatch(WriteRequest(1, handle, 2, b"bb"))
        message = await session.dispatch(ReadRequest(2, handle, 0, 10))
        assert message.payload.data == b"aabbaa"
        await session.dispatch(CloseRequest(3, handle))

    @pytest.mark.asyncio
    async def test_append(self, session, root):
        (root / "log.txt").write_bytes(b"one\n")
        handle = await open_handle(session, "/log.txt", FXF_WRITE | FXF_APPEND)
        await session.dispatch(WriteRequest(1, handle, 0, b"two\n"))
        await session.dispatch(CloseRequest(2, handle))
        assert (root / "log.txt").read_bytes() == b"one\ntwo\n"

    @pytest.mark.asyncio
    async def test_exclusive_create_of_existing_file_fails(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        message = await session.dispatch(
            OpenRequest(1, "/a.txt", FXF_WRITE | FXF_CREAT | FXF_EXCL))
        assert status_of(message) == Status.FAILURE

    @pytest.mark.asyncio
    async def test_open_missing_file(self, session):
        message = await session.dispatch(OpenRequest(1, "/nope.txt", FXF_READ))
        assert status_of(message) == Status.NO_SUCH_FILE

    @pytest.mark.asyncio
    async def test_open_created_with_permissions(self, session, root):
        message = await session.dispatch(
            OpenRequest(1, "/p.txt", FXF_WRITE | FXF_CREAT, 0o600))
        await session.dispatch(CloseRequest(2, message.payload.handle))
        assert (root / "p.txt").stat().st_mode & 0o777 == 0o600

    @pytest.mark.asyncio
    async def test_fstat(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        handle = await open_handle(session, "/a.txt")
        message = await session.dispatch(FstatRequest(1, handle))
        assert message.message_type == MessageType.ATTRS
        assert message.payload.attrs.size == 2

    @pytest.mark.asyncio
    async def test_fsetstat(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        handle = await open_handle(session, "/a.txt")
        assert status_of(await session.dispatch(FsetstatRequest(1, handle))) == Status.OK
        await session.dispatch(CloseRequest(2, handle))
        assert status_of(await session.dispatch(FsetstatRequest(3, handle))) == Status.FAILURE

    @pytest.mark.asyncio
    async def test_malformed_handle(self, session):
        message = await session.dispatch(ReadRequest(1, b"\x01", 0, 10))
        assert status_of(message) == Status.FAILURE


class TestHandleKinds:
    @pytest.mark.asyncio
    async def test_read_on_directory_handle(self, session):
        handle = await opendir_handle(session, "/")
        assert status_of(await session.dispatch(ReadRequest(1, handle, 0, 10))) == Status.FAILURE
        assert status_of(await session.dispatch(WriteRequest(2, handle, 0, b"x"))) == Status.FAILURE

    @pytest.mark.asyncio
    async def test_readdir_on_file_handle(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        handle = await open_handle(session, "/a.txt")
        assert status_of(await session.dispatch(ReaddirRequest(1, handle))) == Status.FAILURE

    @pytest.mark.asyncio
    async def test_handles_are_distinct(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        handles = [await open_handle(session, "/a.txt"), await opendir_handle(session, "/")]
        handles.append(await open_handle(session, "/a.txt"))
        assert len(set(handles)) == 3
        assert [int.from_bytes(h, "big") for h in handles] == [0, 1, 2]


class TestDirectories:
    @pytest.mark.asyncio
    async def test_empty_directory_is_immediately_eof(self, session):
        handle = await opendir_handle(session, "/")
        message = await session.dispatch(ReaddirRequest(1, handle))
        assert status_of(message) == Status.EOF

    @pytest.mark.asyncio
    async def test_pagination(self, session, root):
        expected = {f"file{i:03d}" for i in range(250)}
        for name in expected:
            (root / name).write_bytes(b"")

        handle = await opendir_handle(session, "/")
        batches = await read_all_names(session, handle)

        assert [len(batch) for batch in batches] == [100, 100, 50]
        listed = [name for batch in batches for name in batch]
        assert len(listed) == len(set(listed))
        assert set(listed) == expected

        # stays exhausted
        assert status_of(await session.dispatch(ReaddirRequest(3, handle))) == Status.EOF
        assert status_of(await session.dispatch(CloseRequest(4, handle))) == Status.OK

    @pytest.mark.asyncio
    async def test_entries_carry_attrs_and_longname(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        (root / "sub").mkdir()
        handle = await opendir_handle(session, "/")
        message = await session.dispatch(ReaddirRequest(1, handle))
        names = {name.filename: name for name in message.payload.names}

        assert names["a.txt"].attrs.size == 2
        assert names["a.txt"].longname.startswith("-")
        assert names["a.txt"].longname.endswith(" a.txt")
        assert names["sub"].longname.startswith("d")

    @pytest.mark.asyncio
    async def test_snapshot_is_not_refreshed(self, session, root):
        (root / "a").write_bytes(b"")
        handle = await opendir_handle(session, "/")
        (root / "b").write_bytes(b"")
        batches = await read_all_names(session, handle)
        assert batches == [["a"]]

    @pytest.mark.asyncio
    async def test_unstatable_entry_falls_back_to_zero_attrs(self, session, root, monkeypatch):
        (root / "good").write_bytes(b"x")
        (root / "bad").write_bytes(b"x")
        real_stat = unix.stat

        async def flaky_stat(path):
            if os.path.basename(path) == "bad":
                raise OSError(errno.EACCES, "denied")
            return await real_stat(path)

        monkeypatch.setattr(unix, "stat", flaky_stat)
        handle = await opendir_handle(session, "/")
        message = await session.dispatch(ReaddirRequest(1, handle))
        names = {name.filename: name for name in message.payload.names}

        assert names["bad"].attrs == ZERO_ATTRS
        assert names["bad"].longname == "bad"
        assert names["good"].attrs.size == 1

    @pytest.mark.asyncio
    async def test_opendir_missing(self, session):
        message = await session.dispatch(OpendirRequest(1, "/missing"))
        assert status_of(message) == Status.NO_SUCH_FILE

    @pytest.mark.asyncio
    async def test_opendir_on_file(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        message = await session.dispatch(OpendirRequest(1, "/a.txt"))
        assert status_of(message) == Status.NO_SUCH_FILE

    @pytest.mark.asyncio
    async def test_subdirectory_listing(self, session, root):
        (root / "sub").mkdir()
        (root / "sub" / "inner.txt").write_bytes(b"abc")
        handle = await opendir_handle(session, "/sub")
        message = await session.dispatch(ReaddirRequest(1, handle))
        [name] = message.payload.names
        assert name.filename == "inner.txt"
        assert name.attrs.size == 3


class TestPathOperations:
    @pytest.mark.asyncio
    async def test_stat_outside_root_never_touches_fs(self, session, fs_calls):
        message = await session.dispatch(StatRequest(7, "/../../etc/passwd"))
        assert status_of(message) == Status.PERMISSION_DENIED
        assert message.request_id == 7
        assert fs_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_", [
        OpenRequest(1, "../escape.txt", FXF_WRITE | FXF_CREAT),
        OpendirRequest(1, "/.."),
        LstatRequest(1, "../../etc/passwd"),
        SetstatRequest(1, "/../x"),
        MkdirRequest(1, "/../newdir"),
        RmdirRequest(1, "/.."),
        RemoveRequest(1, "\\..\\x"),
        RenameRequest(1, "/a.txt", "/../a.txt"),
        RenameRequest(1, "/../a.txt", "/b.txt"),
    ])
    async def test_escapes_are_denied(self, session, fs_calls, root, request_):
        message = await session.dispatch(request_)
        assert status_of(message) == Status.PERMISSION_DENIED
        assert fs_calls == []
        assert not (root.parent / "escape.txt").exists()
        assert not (root.parent / "newdir").exists()

    @pytest.mark.asyncio
    async def test_stat_and_lstat(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        for request in (StatRequest(1, "/a.txt"), LstatRequest(2, "a.txt")):
            message = await session.dispatch(request)
            assert message.message_type == MessageType.ATTRS
            assert message.payload.attrs.size == 2

    @pytest.mark.asyncio
    async def test_lstat_does_not_follow_symlinks(self, session, root):
        (root / "target").write_bytes(b"12345")
        os.symlink(root / "target", root / "link")
        stat_msg = await session.dispatch(StatRequest(1, "/link"))
        lstat_msg = await session.dispatch(LstatRequest(2, "/link"))
        assert stat_msg.payload.attrs.size == 5
        assert lstat_msg.payload.attrs.mode != stat_msg.payload.attrs.mode

    @pytest.mark.asyncio
    async def test_stat_missing(self, session):
        assert status_of(await session.dispatch(StatRequest(1, "/nope"))) == Status.NO_SUCH_FILE

    @pytest.mark.asyncio
    async def test_rename(self, session, root):
        (root / "old.txt").write_bytes(b"data")
        before = (await session.dispatch(StatRequest(1, "/old.txt"))).payload.attrs

        message = await session.dispatch(RenameRequest(2, "/old.txt", "/new.txt"))
        assert status_of(message) == Status.OK

        assert status_of(await session.dispatch(StatRequest(3, "/old.txt"))) == Status.NO_SUCH_FILE
        after = (await session.dispatch(StatRequest(4, "/new.txt"))).payload.attrs
        assert after == before

    @pytest.mark.asyncio
    async def test_rename_missing(self, session):
        message = await session.dispatch(RenameRequest(1, "/nope", "/other"))
        assert status_of(message) == Status.NO_SUCH_FILE

    @pytest.mark.asyncio
    async def test_mkdir_rmdir(self, session, root):
        assert status_of(await session.dispatch(MkdirRequest(1, "/sub"))) == Status.OK
        assert (root / "sub").is_dir()
        assert status_of(await session.dispatch(MkdirRequest(2, "/sub"))) == Status.FAILURE
        assert status_of(await session.dispatch(RmdirRequest(3, "/sub"))) == Status.OK
        assert not (root / "sub").exists()
        assert status_of(await session.dispatch(RmdirRequest(4, "/sub"))) == Status.NO_SUCH_FILE

    @pytest.mark.asyncio
    async def test_rmdir_non_empty(self, session, root):
        (root / "sub").mkdir()
        (root / "sub" / "f").write_bytes(b"")
        assert status_of(await session.dispatch(RmdirRequest(1, "/sub"))) == Status.FAILURE

    @pytest.mark.asyncio
    async def test_remove(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        assert status_of(await session.dispatch(RemoveRequest(1, "/a.txt"))) == Status.OK
        assert not (root / "a.txt").exists()
        assert status_of(await session.dispatch(RemoveRequest(2, "/a.txt"))) == Status.NO_SUCH_FILE

    @pytest.mark.asyncio
    async def test_setstat_is_acknowledged_without_change(self, session, root):
        path = root / "a.txt"
        path.write_bytes(b"hi")
        os.chmod(path, 0o644)
        message = await session.dispatch(SetstatRequest(1, "/a.txt"))
        assert status_of(message) == Status.OK
        assert path.stat().st_mode & 0o777 == 0o644

    @pytest.mark.asyncio
    async def test_setstat_on_missing_path_is_ok(self, session, fs_calls):
        assert status_of(await session.dispatch(SetstatRequest(1, "/nope"))) == Status.OK
        assert fs_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("vpath, expected", [
        (".", "/"),
        ("", "/"),
        ("docs", "/docs"),
        ("\\docs\\a", "/docs/a"),
        ("/docs/../x", "/x"),
    ])
    async def test_realpath(self, session, fs_calls, vpath, expected):
        message = await session.dispatch(RealpathRequest(9, vpath))
        assert message.message_type == MessageType.NAME
        assert message.request_id == 9
        [name] = message.payload.names
        assert name.filename == expected
        assert fs_calls == []


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_close_during_read(self, session, root, monkeypatch):
        (root / "a.txt").write_bytes(b"hi")
        handle = await open_handle(session, "/a.txt")

        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_read(f, offset, length):
            started.set()
            await release.wait()
            return b"hi"

        monkeypatch.setattr(unix, "read_at", slow_read)
        read_task = asyncio.ensure_future(session.dispatch(ReadRequest(1, handle, 0, 10)))
        await started.wait()

        assert status_of(await session.dispatch(CloseRequest(2, handle))) == Status.OK
        release.set()

        assert status_of(await read_task) == Status.FAILURE

    @pytest.mark.asyncio
    async def test_concurrent_readdir_is_serialized(self, session, root):
        expected = {f"f{i}" for i in range(150)}
        for name in expected:
            (root / name).write_bytes(b"")
        handle = await opendir_handle(session, "/")

        first, second = await asyncio.gather(
            session.dispatch(ReaddirRequest(1, handle)),
            session.dispatch(ReaddirRequest(2, handle)),
        )
        listed = [n.filename for n in first.payload.names] + \
            [n.filename for n in second.payload.names]
        assert sorted(len(m.payload.names) for m in (first, second)) == [50, 100]
        assert len(listed) == len(set(listed))
        assert set(listed) == expected
        assert status_of(await session.dispatch(ReaddirRequest(3, handle))) == Status.EOF

    @pytest.mark.asyncio
    async def test_interleaved_sessions_are_isolated(self, root):
        (root / "a.txt").write_bytes(b"hi")
        one = Session(str(root))
        two = Session(str(root))

        handle = await open_handle(one, "/a.txt")
        # same id, other table
        assert status_of(await two.dispatch(ReadRequest(1, handle, 0, 2))) == Status.FAILURE
        assert (await one.dispatch(ReadRequest(2, handle, 0, 2))).payload.data == b"hi"


class TestSessionEnd:
    @pytest.mark.asyncio
    async def test_end_releases_everything(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        fh = await open_handle(session, "/a.txt")
        dh = await opendir_handle(session, "/")
        file_obj = session.handles.lookup_file(int.from_bytes(fh, "big")).file

        await session.end()

        assert session.ended
        assert len(session.handles) == 0
        assert file_obj.closed
        assert status_of(await session.dispatch(ReadRequest(1, fh, 0, 2))) == Status.FAILURE
        assert status_of(await session.dispatch(ReaddirRequest(2, dh))) == Status.FAILURE

    @pytest.mark.asyncio
    async def test_no_new_handles_after_end(self, session, root):
        (root / "a.txt").write_bytes(b"hi")
        await session.end()
        assert status_of(await session.dispatch(OpenRequest(1, "/a.txt", FXF_READ))) == Status.FAILURE
        assert status_of(await session.dispatch(OpendirRequest(2, "/"))) == Status.FAILURE
        assert len(session.handles) == 0

    @pytest.mark.asyncio
    async def test_end_is_idempotent(self, session):
        await session.end()
        await session.end()
        assert session.ended
