"""Stack frames and their classification."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple, Union

from vroom.packageutil import (
    is_cocoa_application_package,
    is_rust_application_package,
)
from vroom.platform import Platform

_WINDOWS_PATH = re.compile(r"^([a-z]:\\|\\\\)", re.IGNORECASE)
_PACKAGE_EXTENSION = re.compile(r"\.(dylib|so|a|dll|exe)\Z")
_JAVASCRIPT_SYSTEM_PACKAGE_PATH = re.compile(r"node_modules|^(@moz-extension|chrome-extension)")
_COCOA_SYSTEM_PACKAGES = frozenset({"Sentry", "hermes"})

_FNV64_OFFSET = 14695981039346656037
_FNV64_PRIME = 1099511628211
_MASK64 = (1 << 64) - 1

PYTHON_STDLIB = frozenset(
    {
        "__future__", "__hello__", "__phello__", "__phello__.foo", "_aix_support",
        "_ast", "_bootlocale", "_bootsubprocess", "_collections_abc", "_compat_pickle",
        "_compression", "_dummy_thread", "_markupbase", "_osx_support", "_py_abc",
        "_pydecimal", "_pyio", "_sitebuiltins", "_strptime", "_thread",
        "_threading_local", "_weakrefset", "abc", "aifc", "antigravity", "argparse",
        "array", "ast", "asynchat", "asyncio", "asyncore", "atexit", "audioop",
        "base64", "bdb", "binascii", "binhex", "bisect", "builtins", "bz2",
        "cProfile", "calendar", "cgi", "cgitb", "chunk", "cmath", "cmd", "code",
        "codecs", "codeop", "collections", "colorsys", "compileall", "concurrent",
        "configparser", "contextlib", "contextvars", "copy", "copyreg", "crypt",
        "csv", "ctypes", "curses", "dataclasses", "datetime", "dbm", "decimal",
        "difflib", "dis", "distutils", "doctest", "dummy_threading", "email",
        "encodings", "ensurepip", "enum", "errno", "faulthandler", "fcntl",
        "filecmp", "fileinput", "fnmatch", "formatter", "fpectl", "fractions",
        "ftplib", "functools", "gc", "genericpath", "getopt", "getpass", "gettext",
        "glob", "graphlib", "grp", "gzip", "hashlib", "heapq", "hmac", "html",
        "http", "idlelib", "imaplib", "imghdr", "imp", "importlib", "inspect", "io",
        "ipaddress", "itertools", "json", "keyword", "lib2to3", "linecache",
        "locale", "logging", "lzma", "macpath", "macurl2path", "mailbox", "mailcap",
        "marshal", "math", "mimetypes", "mmap", "modulefinder", "msilib", "msvcrt",
        "multiprocessing", "netrc", "nis", "nntplib", "ntpath", "nturl2path",
        "numbers", "opcode", "operator", "optparse", "os", "os2emxpath",
        "ossaudiodev", "parser", "pathlib", "pdb", "pickle", "pickletools", "pipes",
        "pkgutil", "platform", "plistlib", "poplib", "posix", "posixpath", "pprint",
        "profile", "pstats", "pty", "pwd", "py_compile", "pyclbr", "pydoc",
        "pydoc_data", "queue", "quopri", "random", "re", "readline", "reprlib",
        "resource", "rlcompleter", "runpy", "sched", "secrets", "select",
        "selectors", "shelve", "shlex", "shutil", "signal", "site", "smtpd",
        "smtplib", "sndhdr", "socket", "socketserver", "spwd", "sqlite3", "sre",
        "sre_compile", "sre_constants", "sre_parse", "ssl", "stat", "statistics",
        "string", "stringprep", "struct", "subprocess", "sunau", "symbol",
        "symtable", "sys", "sysconfig", "syslog", "tabnanny", "tarfile",
        "telnetlib", "tempfile", "termios", "test", "textwrap", "this",
        "threading", "time", "timeit", "tkinter", "token", "tokenize", "tomllib",
        "trace", "traceback", "tracemalloc", "tty", "turtle", "turtledemo", "types",
        "typing", "unicodedata", "unittest", "urllib", "uu", "uuid", "venv",
        "warnings", "wave", "weakref", "webbrowser", "winreg", "winsound",
        "wsgiref", "xdrlib", "xml", "xmlrpc", "zipapp", "zipfile", "zipimport",
        "zlib", "zoneinfo",
    }
)


class FrameNotFoundError(LookupError):
    """Raised when no frame matches what was searched for."""

    def __init__(self, message: str = "Unable to find matching frame") -> None:
        super().__init__(message)


def _platform_value(p: Union[Platform, str]) -> str:
    return p.value if isinstance(p, Platform) else p


def _fnv1_64(data: bytes) -> int:
    h = _FNV64_OFFSET
    for byte in data:
        h = (h * _FNV64_PRIME) & _MASK64
        h ^= byte
    return h


def trim_package(pkg: str) -> str:
    """Format a package path for display and aggregation."""
    separator = "\\" if _WINDOWS_PATH.match(pkg) else "/"
    pieces = pkg.split(separator)
    filename = pieces[-1]
    if len(pieces) >= 2 and filename == "":
        filename = pieces[-2]
    if filename == "":
        filename = pkg
    return _PACKAGE_EXTENSION.sub("", filename)


@dataclass
class Data:
    """Symbolication and deobfuscation details attached to a frame."""

    deobfuscation_status: str = ""
    symbolicator_status: str = ""
    js_symbolicated: Optional[bool] = None


@dataclass
class Frame:
    """One frame of a stack trace."""

    column: int = 0
    data: Data = field(default_factory=Data)
    file: str = ""
    function: str = ""
    in_app: Optional[bool] = None
    instruction_addr: str = ""
    lang: str = ""
    line: int = 0
    method_id: int = 0
    module: str = ""
    package: str = ""
    path: str = ""
    status: str = ""
    sym_addr: str = ""
    symbol: str = ""
    platform: Union[Platform, str] = ""
    is_react_native: bool = False

    def is_main(self) -> Tuple[bool, int]:
        """Return whether this is the main function (cocoa only) and a frame offset."""
        if self.status != "symbolicated":
            return False, 0
        if self.function == "main":
            return True, 0
        if self.function == "UIApplicationMain":
            return True, -1
        return False, 0

    def id(self) -> str:
        """Return a hash identifying the frame by file, function, line and address."""
        key = f"{self.file}:{self.function}:{self.line}:{self.instruction_addr}"
        return hashlib.md5(key.encode()).hexdigest()

    def module_or_package(self) -> str:
        if self.module:
            return self.module
        if self.package:
            return trim_package(self.package)
        return ""

    def write_to_hash(self, h: Any) -> None:
        """Feed the frame's identifying parts into a hash object with update()."""
        if self.module:
            s = self.module
        elif self.package:
            s = trim_package(self.package)
        elif self.file:
            s = self.file
        else:
            s = "-"
        h.update(s.encode())
        h.update((self.function or "-").encode())
        # Distinguishes unknown frames on native platforms.
        if self.instruction_addr:
            h.update(self.instruction_addr.encode())

    def is_inline(self) -> bool:
        return self.status == "symbolicated" and self.sym_addr == ""

    def is_node_application_frame(self) -> bool:
        return not self.path.startswith("node:") and "node_modules" not in self.path

    def is_javascript_application_frame(self) -> bool:
        if self.function.startswith("["):
            return False
        if not self.path:
            return True
        return _JAVASCRIPT_SYSTEM_PACKAGE_PATH.search(self.path) is None

    def is_cocoa_application_frame(self) -> bool:
        is_main, _ = self.is_main()
        if is_main:
            # main lives in the user package but holds no user code
            return False
        if self.module_or_package() in _COCOA_SYSTEM_PACKAGES:
            return False
        return is_cocoa_application_package(self.package)

    def is_rust_application_frame(self) -> bool:
        return is_rust_application_package(self.package)

    def is_python_application_frame(self) -> bool:
        path = self.path
        if (
            "/site-packages/" in path
            or "/dist-packages/" in path
            or "\\site-packages\\" in path
            or "\\dist-packages\\" in path
            or path.startswith("/usr/local/")
        ):
            return False
        top_level = self.module.split(".", 1)[0]
        # The SDK may be installed outside the default paths.
        if top_level == "sentry_sdk":
            return False
        return top_level not in PYTHON_STDLIB

    def is_php_application_frame(self) -> bool:
        return "/vendor/" not in self.path

    def fingerprint(self) -> int:
        """Return the 32-bit truncation of the FNV-1 64 hash of package and function."""
        data = f"{self.module_or_package()}:{self.function}".encode()
        return _fnv1_64(data) & 0xFFFFFFFF

    def fully_qualified_name(self, p: Union[Platform, str]) -> str:
        formatter = _FULLY_QUALIFIED_NAME_FORMATTERS.get(_platform_value(p), _default_formatter)
        return formatter(self)

    def set_in_app(self, p: Union[Platform, str]) -> None:
        # For react-native (p differs from the frame's platform) in_app is
        # unreliable, so the rules below always apply.
        if self.in_app is not None and _platform_value(p) == _platform_value(self.platform):
            return
        classifiers = {
            Platform.NODE.value: self.is_node_application_frame,
            Platform.JAVASCRIPT.value: self.is_javascript_application_frame,
            Platform.COCOA.value: self.is_cocoa_application_frame,
            Platform.RUST.value: self.is_rust_application_frame,
            Platform.PYTHON.value: self.is_python_application_frame,
            Platform.PHP.value: self.is_php_application_frame,
        }
        classifier = classifiers.get(_platform_value(self.platform))
        self.in_app = classifier() if classifier is not None else False

    def is_in_app(self) -> bool:
        return bool(self.in_app)

    def set_platform(self, p: Union[Platform, str]) -> None:
        if not self.platform:
            self.platform = p

    def set_status(self) -> None:
        if self.data.symbolicator_status:
            self.status = self.data.symbolicator_status

    def normalize(self, p: Union[Platform, str]) -> None:
        # Order matters: set_in_app relies on status and platform.
        self.set_status()
        self.set_platform(p)
        self.set_in_app(p)


def _default_formatter(f: Frame) -> str:
    return f.function


def _joined_name_formatter(separator: str) -> Callable[[Frame], str]:
    def formatter(f: Frame) -> str:
        module_or_package = f.module_or_package()
        if not module_or_package:
            return f.function
        return f"{module_or_package}{separator}{f.function}"

    return formatter


_FULLY_QUALIFIED_NAME_FORMATTERS = {
    Platform.ANDROID.value: _default_formatter,
    Platform.JAVA.value: _default_formatter,
    Platform.PHP.value: _default_formatter,
    Platform.COCOA.value: _default_formatter,
    Platform.PYTHON.value: _joined_name_formatter("."),
    Platform.NODE.value: _joined_name_formatter("."),
}