"""
Runtime-linkage resolver.

Decides how the C++ standard library reaches the final link.  GNU and
Clang toolchains are asked where their static runtime archive lives
(``-print-file-name``); when the answer is a usable absolute path the
archive is linked statically and the compiler's own dynamic runtime
linkage is switched off.  Every other case keeps the dynamic default.

The three outcomes are explicit values, never exceptions:

    GNU_STATIC       libstdc++.a located
    CLANG_STATIC     libc++.a located
    DYNAMIC_DEFAULT  unsupported toolchain, or the query gave no usable path
"""
from __future__ import annotations

import logging
import subprocess
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel

from rockdis_build.core.directives import (
    LinkDirectives,
    LinkKind,
    LinkTarget,
    SearchKind,
    SearchPath,
)
from rockdis_build.core.toolchain import ToolchainDescriptor, ToolchainFamily

logger = logging.getLogger(__name__)


# =============================================================================
# Strategy table
# =============================================================================

RUNTIME_STRATEGIES: Dict[ToolchainFamily, Optional[str]] = {
    ToolchainFamily.GNU: "libstdc++.a",
    ToolchainFamily.CLANG: "libc++.a",
    ToolchainFamily.UNSUPPORTED: None,
}

_LIB_PREFIX = "lib"
_STATIC_SUFFIX = ".a"


class RuntimeLinkOutcome(str, Enum):
    GNU_STATIC = "GNU_STATIC"
    CLANG_STATIC = "CLANG_STATIC"
    DYNAMIC_DEFAULT = "DYNAMIC_DEFAULT"


class FallbackReason(str, Enum):
    """Why static runtime resolution was skipped."""
    UNSUPPORTED_TOOLCHAIN = "UNSUPPORTED_TOOLCHAIN"
    QUERY_FAILED = "QUERY_FAILED"
    EMPTY_OUTPUT = "EMPTY_OUTPUT"
    UNDECODABLE_PATH = "UNDECODABLE_PATH"
    RELATIVE_PATH = "RELATIVE_PATH"


_STATIC_OUTCOMES = {
    ToolchainFamily.GNU: RuntimeLinkOutcome.GNU_STATIC,
    ToolchainFamily.CLANG: RuntimeLinkOutcome.CLANG_STATIC,
}


class RuntimeLinkDecision(BaseModel):
    """How the C++ runtime is supplied to the final link."""
    outcome: RuntimeLinkOutcome
    family: ToolchainFamily
    archive: Optional[str] = None       # e.g. libstdc++.a
    library: Optional[str] = None       # bare name, e.g. stdc++
    search_dir: Optional[str] = None    # directory holding the archive
    reason: Optional[FallbackReason] = None
    detail: Optional[str] = None

    @property
    def is_static(self) -> bool:
        return self.outcome != RuntimeLinkOutcome.DYNAMIC_DEFAULT

    def directives(self) -> LinkDirectives:
        """Static outcomes add the runtime archive and its directory."""
        if not self.is_static:
            return LinkDirectives()
        return LinkDirectives(
            link_targets=[LinkTarget(kind=LinkKind.STATIC, name=self.library)],
            search_paths=[SearchPath(kind=SearchKind.NATIVE, path=self.search_dir)],
        )


# =============================================================================
# Helpers
# =============================================================================

def strip_library_decoration(filename: str) -> str:
    """
    Strip the ``lib`` prefix and ``.a`` suffix from a static archive name.

    ``libstdc++.a`` → ``stdc++``.  Only a fully decorated name is
    stripped, and stripping repeats until none is left, so a bare name
    passes through unchanged.
    """
    while (
        filename.startswith(_LIB_PREFIX)
        and filename.endswith(_STATIC_SUFFIX)
        and len(filename) > len(_LIB_PREFIX) + len(_STATIC_SUFFIX)
    ):
        filename = filename[len(_LIB_PREFIX):-len(_STATIC_SUFFIX)]
    return filename


def _fallback(
    toolchain: ToolchainDescriptor,
    reason: FallbackReason,
    archive: Optional[str],
    detail: Optional[str] = None,
) -> RuntimeLinkDecision:
    logger.warning(
        "Static C++ runtime not resolved for %s (%s%s); "
        "falling back to dynamic linkage",
        toolchain.executable or "<unknown compiler>",
        reason.value,
        f": {detail}" if detail else "",
    )
    return RuntimeLinkDecision(
        outcome=RuntimeLinkOutcome.DYNAMIC_DEFAULT,
        family=toolchain.family,
        archive=archive,
        reason=reason,
        detail=detail,
    )


# =============================================================================
# Public API
# =============================================================================

def resolve_runtime_link(
    toolchain: ToolchainDescriptor,
    timeout: int = 30,
) -> RuntimeLinkDecision:
    """
    Resolve the static C++ runtime archive for *toolchain*.

    Never raises: every failure is a DYNAMIC_DEFAULT decision with a
    reason.  The result depends only on the toolchain and on what the
    toolchain reports at call time.
    """
    archive = RUNTIME_STRATEGIES[toolchain.family]
    if archive is None:
        return _fallback(toolchain, FallbackReason.UNSUPPORTED_TOOLCHAIN, None)

    cmd = toolchain.to_command() + [f"-print-file-name={archive}"]
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        return _fallback(
            toolchain, FallbackReason.QUERY_FAILED, archive, f"timed out after {timeout}s"
        )
    except OSError as e:
        return _fallback(toolchain, FallbackReason.QUERY_FAILED, archive, str(e))

    if result.returncode != 0:
        return _fallback(
            toolchain, FallbackReason.QUERY_FAILED, archive, f"exit code {result.returncode}"
        )

    try:
        text = result.stdout.decode("utf-8")
    except UnicodeDecodeError:
        return _fallback(toolchain, FallbackReason.UNDECODABLE_PATH, archive)

    text = text.strip()
    if not text:
        return _fallback(toolchain, FallbackReason.EMPTY_OUTPUT, archive)

    path = Path(text)
    # Drivers echo the bare name back when they cannot find the file
    if not path.is_absolute():
        return _fallback(toolchain, FallbackReason.RELATIVE_PATH, archive, text)

    decision = RuntimeLinkDecision(
        outcome=_STATIC_OUTCOMES[toolchain.family],
        family=toolchain.family,
        archive=archive,
        library=strip_library_decoration(archive),
        search_dir=str(path.parent),
    )
    logger.info(
        "Static C++ runtime: %s from %s", decision.library, decision.search_dir
    )
    return decision
