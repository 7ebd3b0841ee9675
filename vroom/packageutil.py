"""Classification of packages as application or system code."""

from __future__ import annotations

_ANDROID_PACKAGE_PREFIXES = (
    "android.",
    "androidx.",
    "com.android.",
    "com.google.android.",
    "com.motorola.",
    "java.",
    "javax.",
    "kotlin.",
    "kotlinx.",
    "retrofit2.",
    "sun.",
)


def is_rust_application_package(p: str) -> bool:
    """Return True if the package path belongs to the profiled Rust application."""
    return (
        p != ""
        # These come from shared libraries rather than the profiled application.
        and "/library/std/src/" not in p
        and not p.startswith("/usr/lib/system/")
        # Core library and third party crates.
        and not p.startswith("/rustc/")
        and not p.startswith("/usr/local/rustup/")
        and not p.startswith("/usr/local/cargo/")
    )


def is_cocoa_application_package(p: str) -> bool:
    """Return True if the image path is one iOS uses for applications."""
    return (
        p.startswith("/private/var/containers")
        or p.startswith("/var/containers")
        or "/Developer/Xcode/DerivedData" in p
        or "/data/Containers/Bundle/Application" in p
    )


def is_android_application_package(package_name: str) -> bool:
    """Return False if the package name belongs to an Android system package."""
    return not package_name.startswith(_ANDROID_PACKAGE_PREFIXES)