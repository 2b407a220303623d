"""
Native compiler — C++ translation units → one static archive.

Every unit is compiled under the same flags (fixed language standard,
warnings suppressed); no per-file overrides.  Objects are archived into
a temporary file that is renamed into place only when every unit
compiled, so a failed run never leaves an archive behind.
"""
from __future__ import annotations

import hashlib
import logging
import os
import subprocess
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from rockdis_build.core.directives import (
    LinkDirectives,
    LinkKind,
    LinkTarget,
    SearchKind,
    SearchPath,
)
from rockdis_build.core.runtime_link import RuntimeLinkDecision, strip_library_decoration
from rockdis_build.core.toolchain import ToolchainDescriptor, default_cxx_stdlib
from rockdis_build.errors import CompileError

logger = logging.getLogger(__name__)


CXX_STANDARD = "c++11"

# Fixed for every unit
BASE_CXXFLAGS = ["-w", "-fPIC", "-ffunction-sections", "-fdata-sections"]


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class CompileConfig:
    """Everything that shapes the compiler and archiver command lines."""
    toolchain: ToolchainDescriptor
    archive_name: str                      # bare: "rockdis"
    out_dir: Path
    include_dirs: Tuple[Path, ...] = ()
    std: str = CXX_STANDARD
    opt_level: str = "2"
    debug: bool = False
    extra_flags: Tuple[str, ...] = ()
    archiver: Tuple[str, ...] = ("ar",)
    cpp_link_stdlib: Optional[str] = None  # dynamic runtime, linked after all static deps
    timeout: int = 600

    @classmethod
    def for_toolchain(
        cls,
        toolchain: ToolchainDescriptor,
        archive_name: str,
        out_dir: Path,
        **kwargs,
    ) -> "CompileConfig":
        """Config with the toolchain's default dynamic C++ runtime declared."""
        kwargs.setdefault("cpp_link_stdlib", default_cxx_stdlib(toolchain.family))
        return cls(
            toolchain=toolchain,
            archive_name=strip_library_decoration(archive_name),
            out_dir=Path(out_dir),
            **kwargs,
        )

    def with_runtime(self, decision: RuntimeLinkDecision) -> "CompileConfig":
        """
        Hand C++ runtime linkage to the resolver when it located a static
        archive; otherwise keep the compiler's dynamic default.
        """
        if decision.is_static:
            return replace(self, cpp_link_stdlib=None)
        return self

    @property
    def archive_path(self) -> Path:
        return self.out_dir / f"lib{self.archive_name}.a"

    def cxxflags(self) -> List[str]:
        flags = [f"-std={self.std}"] + BASE_CXXFLAGS + [f"-O{self.opt_level}"]
        if self.debug:
            flags.append("-g")
        flags += list(self.extra_flags)
        flags += [f"-I{d}" for d in self.include_dirs]
        return flags

    def runtime_directives(self) -> LinkDirectives:
        """The dynamic C++ runtime, or nothing when the resolver took over."""
        if not self.cpp_link_stdlib:
            return LinkDirectives()
        return LinkDirectives(
            link_targets=[LinkTarget(kind=LinkKind.DEFAULT, name=self.cpp_link_stdlib)],
        )


# =============================================================================
# Results
# =============================================================================

@dataclass
class UnitResult:
    """Outcome of compiling one translation unit."""
    source: Path
    object_path: Path
    exit_code: int
    duration_ms: int
    stderr_log: Optional[Path] = None


@dataclass
class CompileResult:
    """A finished archive plus what the final link needs to know about it."""
    archive: Path
    objects: List[Path]
    units: List[UnitResult]
    command_template: str
    directives: LinkDirectives = field(default_factory=LinkDirectives)
    runtime_directives: LinkDirectives = field(default_factory=LinkDirectives)


# =============================================================================
# Helpers
# =============================================================================

def _object_name(source: Path) -> str:
    """Unique object name; same-named units in different dirs stay apart."""
    digest = hashlib.sha256(str(source).encode("utf-8")).hexdigest()[:8]
    return f"{source.stem}-{digest}.o"


def _run(cmd: List[str], timeout: int) -> Tuple[int, str, str]:
    """Run a build command and return (exit_code, stdout, stderr)."""
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, "", f"TIMEOUT after {timeout}s"
    except OSError as e:
        return -1, "", str(e)


def _tail(text: str, lines: int = 20) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


def _remove(path: Path) -> None:
    if path.exists():
        path.unlink()


# =============================================================================
# Public API
# =============================================================================

def compile_archive(sources: Sequence[Path], config: CompileConfig) -> CompileResult:
    """
    Compile *sources* and archive them as ``lib<name>.a`` in ``out_dir``.

    Raises
    ------
    CompileError
        A source is missing, a unit failed to compile, or archiving
        failed.  No archive exists at the output path afterwards.
    """
    archive_path = config.archive_path
    tmp_archive = archive_path.with_name(archive_path.name + ".tmp")

    # A stale archive must not outlive a failed run
    _remove(archive_path)
    _remove(tmp_archive)

    if not sources:
        raise CompileError(f"No sources to compile for lib{config.archive_name}.a")

    missing = [str(s) for s in sources if not Path(s).is_file()]
    if missing:
        raise CompileError("Missing source files: " + ", ".join(missing))

    obj_dir = config.out_dir / "obj"
    logs_dir = config.out_dir / "logs"
    obj_dir.mkdir(parents=True, exist_ok=True)
    logs_dir.mkdir(parents=True, exist_ok=True)

    compiler = config.toolchain.to_command()
    flags = config.cxxflags()
    command_template = " ".join(compiler + flags + ["-c", "<source>", "-o", "<object>"])

    units: List[UnitResult] = []
    objects: List[Path] = []

    for src in sources:
        src = Path(src)
        obj_path = obj_dir / _object_name(src)
        cmd = compiler + flags + ["-c", str(src), "-o", str(obj_path)]

        logger.debug("Compiling %s", src)
        t0 = time.monotonic()
        exit_code, _, stderr = _run(cmd, config.timeout)
        duration = int((time.monotonic() - t0) * 1000)

        # Only write log files if they have content
        stderr_log = None
        if stderr:
            stderr_log = logs_dir / f"compile.{obj_path.stem}.stderr"
            stderr_log.write_text(stderr)

        units.append(UnitResult(
            source=src,
            object_path=obj_path,
            exit_code=exit_code,
            duration_ms=duration,
            stderr_log=stderr_log,
        ))

        if exit_code != 0:
            raise CompileError(
                f"Compiling {src} failed (exit {exit_code}):\n{_tail(stderr)}"
            )
        objects.append(obj_path)

    # Archive: ar crs <tmp> <objects>, then rename into place
    ar_cmd = list(config.archiver) + ["crs", str(tmp_archive)] + [str(o) for o in objects]
    exit_code, _, stderr = _run(ar_cmd, config.timeout)
    if exit_code != 0:
        _remove(tmp_archive)
        raise CompileError(
            f"Archiving lib{config.archive_name}.a failed (exit {exit_code}):\n{_tail(stderr)}"
        )
    os.replace(tmp_archive, archive_path)

    logger.info(
        "Compiled %d units into %s", len(objects), archive_path
    )

    directives = LinkDirectives(
        link_targets=[LinkTarget(kind=LinkKind.STATIC, name=config.archive_name)],
        search_paths=[SearchPath(kind=SearchKind.NATIVE, path=str(config.out_dir))],
    )

    return CompileResult(
        archive=archive_path,
        objects=objects,
        units=units,
        command_template=command_template,
        directives=directives,
        runtime_directives=config.runtime_directives(),
    )
