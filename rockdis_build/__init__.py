"""
rockdis_build — build/link/bind pipeline for the rockdis engine.

Compiles the engine's C++ translation units into a static archive,
resolves how the C++ runtime reaches the final link, and generates
ctypes bindings from the engine's C header.
"""

__version__ = "0.1.0"
PACKAGE_NAME = "rockdis_build"
SCHEMA_VERSION = "0.1"
