"""
Toolchain discovery.

Identifies the active C++ compiler family once per run.  The family is a
closed set {GNU, CLANG, UNSUPPORTED}; everything that branches on the
toolchain (runtime-library strategy, default C++ runtime) keys off it.
"""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class ToolchainFamily(str, Enum):
    """Compiler families the pipeline knows how to drive."""
    GNU = "gnu"
    CLANG = "clang"
    UNSUPPORTED = "unsupported"


# Wrappers that prefix the real compiler in CXX
_COMPILER_WRAPPERS = {"ccache", "sccache", "distcc"}

# MSVC-style drivers: no static C++ runtime linkage, no -print-file-name
_MSVC_DRIVERS = {"cl", "cl.exe", "clang-cl", "clang-cl.exe"}

# Runtime the compiler driver links dynamically unless told otherwise
_DEFAULT_CXX_STDLIB: Dict[ToolchainFamily, str] = {
    ToolchainFamily.GNU: "stdc++",
    ToolchainFamily.CLANG: "c++",
}


@dataclass(frozen=True)
class ToolchainDescriptor:
    """Immutable identity of the compiler used for this run."""
    command: Tuple[str, ...]
    family: ToolchainFamily
    version: str

    @property
    def executable(self) -> str:
        return _driver_name(self.command)

    def to_command(self) -> List[str]:
        return list(self.command)


def default_cxx_stdlib(family: ToolchainFamily) -> Optional[str]:
    """The C++ runtime a driver of *family* links by default, if any."""
    return _DEFAULT_CXX_STDLIB.get(family)


# =============================================================================
# Detection (cached per compiler command)
# =============================================================================

_cached_toolchains: Dict[Tuple[str, ...], ToolchainDescriptor] = {}


def _run_quiet(cmd: List[str], timeout: int = 10) -> str:
    """Run a command and return stdout, swallowing errors."""
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        return r.stdout.strip()
    except Exception:
        return ""


def _driver_name(command: Sequence[str]) -> str:
    """Basename of the real compiler, skipping ccache-style wrappers."""
    for part in command:
        name = Path(part).name.lower()
        if name in _COMPILER_WRAPPERS:
            continue
        return name
    return ""


def classify_toolchain(driver: str, version_output: str) -> ToolchainFamily:
    """
    Classify a compiler from its driver name and ``--version`` output.

    clang is checked before GNU: the GNU banner never mentions clang, while
    some clang builds install themselves as ``cc``/``c++``.
    """
    if driver in _MSVC_DRIVERS:
        return ToolchainFamily.UNSUPPORTED

    banner = version_output.lower()
    if "clang" in banner:
        return ToolchainFamily.CLANG
    if "free software foundation" in banner or "gcc" in banner or "g++" in banner:
        return ToolchainFamily.GNU

    # No usable banner: fall back on the driver name
    if not banner:
        if "clang" in driver:
            return ToolchainFamily.CLANG
        if "gcc" in driver or "g++" in driver:
            return ToolchainFamily.GNU

    return ToolchainFamily.UNSUPPORTED


def detect_toolchain(command: Sequence[str], timeout: int = 10) -> ToolchainDescriptor:
    """Capture the toolchain identity for *command*. Cached after first call."""
    key = tuple(command)
    cached = _cached_toolchains.get(key)
    if cached is not None:
        return cached

    driver = _driver_name(key)
    if driver in _MSVC_DRIVERS:
        version_raw = ""
    else:
        version_raw = _run_quiet(list(key) + ["--version"], timeout=timeout)

    family = classify_toolchain(driver, version_raw)
    version = version_raw.splitlines()[0] if version_raw else "unknown"

    descriptor = ToolchainDescriptor(command=key, family=family, version=version)
    logger.info("Toolchain: %s (%s), %s", " ".join(key), family.value, version)

    _cached_toolchains[key] = descriptor
    return descriptor


def clear_toolchain_cache() -> None:
    _cached_toolchains.clear()
