# Native stat -> SFTP attribute conversion, plus the
# "ls -l" style long name that goes out with READDIR.

import os
import stat
import time

from sftpbox.fs.dat import Attrs

ZERO_ATTRS = Attrs(mode=0, uid=0, gid=0, size=0, atime=0, mtime=0)

# (bit, character) pairs for owner, group and other
PERMISSION_BITS = (
    (stat.S_IRUSR, "r"), (stat.S_IWUSR, "w"), (stat.S_IXUSR, "x"),
    (stat.S_IRGRP, "r"), (stat.S_IWGRP, "w"), (stat.S_IXGRP, "x"),
    (stat.S_IROTH, "r"), (stat.S_IWOTH, "w"), (stat.S_IXOTH, "x"),
)

def to_attrs(st: os.stat_result) -> Attrs:
    # Truncate, don't round, the timestamps. Windows has
    # no real owner so uid/gid may be missing or None.
    return Attrs(
        mode=st.st_mode,
        uid=getattr(st, "st_uid", None) or 0,
        gid=getattr(st, "st_gid", None) or 0,
        size=st.st_size,
        atime=int(st.st_atime),
        mtime=int(st.st_mtime)
    )

def permission_string(mode: int) -> str:
    return "".join(char if mode & bit else "-" for bit, char in PERMISSION_BITS)

def to_longname(filename: str, st: os.stat_result) -> str:
    # Display only. Clients are expected to look at the
    # attribute record, not parse this.
    kind = "d" if stat.S_ISDIR(st.st_mode) else "-"
    size = str(st.st_size).rjust(10)
    mtime = time.strftime("%b %d %Y", time.localtime(int(st.st_mtime)))
    return f"{kind}{permission_string(st.st_mode)} 1 user group {size} {mtime} {filename}"
