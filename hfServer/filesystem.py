from __future__ import annotations

import errno
import os
import posixpath
import stat
from pathlib import Path
from typing import BinaryIO, List, NamedTuple, Optional, Protocol

INDEX_NAME = "index.html"


class Forbidden(Exception):
    """
    Raised from File.readdir when directory listing is disabled.

    Carries no message; ForbiddenRecoveryMixIn turns it into a 403 response
    for the request that raised it.
    """


class FileInfo(NamedTuple):
    name: str
    is_dir: bool
    size: int
    mtime: Optional[float]
    mode: int

    @classmethod
    def from_stat(cls, name: str, st: os.stat_result) -> "FileInfo":
        return cls(name, stat.S_ISDIR(st.st_mode), st.st_size, st.st_mtime, st.st_mode)


class FileInfoShim:
    """
    Metadata view that hides the modification time of directories and of
    documents named index.html, so no Last-Modified header is sent for them.
    """

    __slots__ = ("_info",)

    def __init__(self, info: FileInfo) -> None:
        self._info = info

    @property
    def name(self) -> str:
        return self._info.name

    @property
    def is_dir(self) -> bool:
        return self._info.is_dir

    @property
    def size(self) -> int:
        return self._info.size

    @property
    def mode(self) -> int:
        return self._info.mode

    @property
    def mtime(self) -> Optional[float]:
        if self._info.is_dir or self._info.name == INDEX_NAME:
            return None
        return self._info.mtime

    def __repr__(self) -> str:
        return f"FileInfoShim({self._info!r})"


class Handle(Protocol):
    def stat(self) -> FileInfo: ...

    def readdir(self, count: int = 0) -> List[FileInfo]: ...

    def read(self, size: int = -1) -> bytes: ...

    def readinto(self, buf: bytearray | memoryview) -> int: ...

    def seek(self, offset: int, whence: int = 0) -> int: ...

    def tell(self) -> int: ...

    def close(self) -> None: ...


class OsFile:
    """An opened file or directory under a Dir root."""

    def __init__(self, path: Path, fobj: Optional[BinaryIO] = None) -> None:
        self.path = path
        self._fobj = fobj
        self._entries: Optional[List[FileInfo]] = None

    def stat(self) -> FileInfo:
        st = os.fstat(self._fobj.fileno()) if self._fobj is not None else os.stat(self.path)
        return FileInfo.from_stat(self.path.name, st)

    def readdir(self, count: int = 0) -> List[FileInfo]:
        if self._fobj is not None:
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), str(self.path))
        if self._entries is None:
            self._entries = self._scan()
        # entries are consumed across calls, like reading a directory stream
        if count <= 0:
            out, self._entries = self._entries, []
        else:
            out, self._entries = self._entries[:count], self._entries[count:]
        return out

    def _scan(self) -> List[FileInfo]:
        infos: List[FileInfo] = []
        with os.scandir(self.path) as it:
            for entry in sorted(it, key=lambda e: e.name):
                try:
                    st = entry.stat()
                except OSError:
                    # dangling symlink, or removed since scandir
                    try:
                        st = entry.stat(follow_symlinks=False)
                    except FileNotFoundError:
                        continue
                infos.append(FileInfo.from_stat(entry.name, st))
        return infos

    def _file(self) -> BinaryIO:
        if self._fobj is None:
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), str(self.path))
        return self._fobj

    def read(self, size: int = -1) -> bytes:
        return self._file().read(size)

    def readinto(self, buf: bytearray | memoryview) -> int:
        return self._file().readinto(buf)  # type: ignore[attr-defined]

    def seek(self, offset: int, whence: int = 0) -> int:
        return self._file().seek(offset, whence)

    def tell(self) -> int:
        return self._file().tell()

    def close(self) -> None:
        if self._fobj is not None:
            self._fobj.close()
        self._entries = None


class Dir:
    """
    Filesystem rooted at a directory. Request paths are slash separated and
    are cleaned before use, so they can never resolve above the root.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def resolve(self, name: str) -> Path:
        if "\x00" in name or (os.sep != "/" and os.sep in name):
            raise FileNotFoundError(errno.ENOENT, "invalid path", name)
        try:
            os.fsencode(name)
        except UnicodeEncodeError:
            # lone surrogates from percent-decoding
            raise FileNotFoundError(errno.ENOENT, "invalid path", name) from None
        cleaned = posixpath.normpath("/" + name).lstrip("/")
        parts = [p for p in cleaned.split("/") if p and p != "."]
        return self.root.joinpath(*parts)

    def open(self, name: str) -> OsFile:
        path = self.resolve(name)
        st = os.stat(path)
        if stat.S_ISDIR(st.st_mode):
            return OsFile(path)
        return OsFile(path, open(path, "rb"))


class File:
    """
    Handle returned by FileSystem.open. Listing is only delegated when
    enabled, and stat() reports metadata through FileInfoShim.
    """

    def __init__(self, handle: Handle, dir_listing: bool = False) -> None:
        self._handle = handle
        self._dir_listing = dir_listing

    def readdir(self, count: int = 0) -> List[FileInfo]:
        if self._dir_listing:
            return self._handle.readdir(count)
        raise Forbidden

    def stat(self) -> FileInfoShim:
        return FileInfoShim(self._handle.stat())

    def read(self, size: int = -1) -> bytes:
        return self._handle.read(size)

    def readinto(self, buf: bytearray | memoryview) -> int:
        return self._handle.readinto(buf)

    def seek(self, offset: int, whence: int = 0) -> int:
        return self._handle.seek(offset, whence)

    def tell(self) -> int:
        return self._handle.tell()

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> "File":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class FileSystem:
    """Opens names through the wrapped filesystem and wraps handles in File."""

    def __init__(self, fs: Dir, dir_listing: bool = False) -> None:
        self.fs = fs
        self.dir_listing = dir_listing

    @property
    def root(self) -> Path:
        return self.fs.root

    def open(self, name: str) -> File:
        return File(self.fs.open(name), self.dir_listing)
