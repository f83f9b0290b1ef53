from .filesystem import Dir, File, FileInfo, FileInfoShim, FileSystem, Forbidden
from .http_server import HttpFileServer, StaticFileHandler
from .server import hfServer

__all__ = ["hfServer", "HttpFileServer", "StaticFileHandler", "Dir", "File", "FileInfo", "FileInfoShim", "FileSystem", "Forbidden"]
