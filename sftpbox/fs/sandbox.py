# Virtual path -> local path resolution.
#
# Clients always talk in slash delimited paths that
# are rooted at the served directory, however many
# slashes they put in front. Nothing here touches
# the filesystem; the only job is making sure that
# whatever comes out stays under the root.

import logging
import os
import posixpath
from typing import Optional

LOGGER = logging.getLogger(__name__)

def normalize_virtual(vpath: str) -> str:
    # Backslashes count as separators, and every
    # leading separator goes.
    return vpath.replace("\\", "/").lstrip("/")

class Sandbox:
    def __init__(self, root: str) -> None:
        self._root = os.path.abspath(root)

    @property
    def root(self) -> str:
        return self._root

    def resolve(self, vpath: str) -> Optional[str]:
        """Map a client path onto the served root.

        Returns the canonical absolute local path, or None when the
        path would land outside the root. Never raises and never
        performs I/O.
        """
        relpath = normalize_virtual(vpath)
        resolved = os.path.normpath(os.path.join(self._root, relpath))

        relative = os.path.relpath(resolved, self._root)
        if relative == os.pardir or relative.startswith(os.pardir + os.sep) \
                or os.path.isabs(relative):
            LOGGER.warning("containment violation: %r", vpath)
            return None
        return resolved

    def contains(self, vpath: str) -> bool:
        return self.resolve(vpath) is not None

def display_path(vpath: str) -> str:
    # REALPATH: absolute, forward slashes, no dot segments.
    # The filesystem is not consulted so the path might
    # not exist at all.
    normalized = posixpath.normpath("/" + normalize_virtual(vpath))
    return "/" + normalized.lstrip("/")
