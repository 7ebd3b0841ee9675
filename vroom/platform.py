"""Platforms a profile can come from."""

from __future__ import annotations

from enum import Enum


class Platform(str, Enum):
    """A profiling platform, compared equal to its string value."""

    ANDROID = "android"
    COCOA = "cocoa"
    JAVA = "java"
    JAVASCRIPT = "javascript"
    NODE = "node"
    PHP = "php"
    PYTHON = "python"
    RUST = "rust"

    def __str__(self) -> str:
        return self.value