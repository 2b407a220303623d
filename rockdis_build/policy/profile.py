"""
Pipeline profiles.

Frozen dataclasses describing the two pipelines.  Paths are relative to
the crate directory handed to the runner as its root (`librockdis_sys`
or `crates/processor`).  Use ``PipelineProfile.engine_sys()`` or
``PipelineProfile.processor()``; nothing here is user-editable.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rockdis_build.core.directives import (
    LinkDirectives,
    LinkKind,
    LinkTarget,
    SearchKind,
    SearchPath,
)


# Engine translation units, in archive order
ENGINE_UNITS: Tuple[str, ...] = (
    "redis_zset",
    "redis_set",
    "redis_list",
    "redis_hash",
    "redis_string",
    "redis_db",
    "redis_metadata",
    "encoding",
    "store",
    "util",
    "lock_manager",
    "redis_slot",
    "redis_key_encoding",
    "redis_processor",
    "redis_processor_c",
    "redis_request",
    "redis_cmd",
    "redis_reply",
)

# RocksDB and the codecs it was built with
ENGINE_STATIC_DEPS: Tuple[str, ...] = ("rocksdb", "z", "bz2", "lz4", "zstd", "snappy")


def unique_paths(paths) -> Tuple[Path, ...]:
    """Order-preserving de-duplication of include directories."""
    seen = set()
    out: List[Path] = []
    for p in paths:
        p = Path(p)
        if p not in seen:
            seen.add(p)
            out.append(p)
    return tuple(out)


@dataclass(frozen=True)
class PipelineProfile:
    """One build pipeline: what to compile, link and bind."""

    profile_id: str
    header: str
    include_dirs: Tuple[str, ...]
    binding_output: str
    sources: Tuple[str, ...] = ()
    archive_name: Optional[str] = None
    link_targets: Tuple[Tuple[LinkKind, str], ...] = ()
    search_paths: Tuple[Tuple[SearchKind, str], ...] = ()
    rerun_if_changed: Tuple[str, ...] = ()
    resolve_cxx_runtime: bool = False
    track_header_changes: bool = False
    binding_in_out_dir: bool = False

    @classmethod
    def engine_sys(cls) -> PipelineProfile:
        """Compile the engine into librockdis.a and bind its C header."""
        return cls(
            profile_id="engine-sys",
            header="../src/redis_processor_c.h",
            include_dirs=("rocksdb/include", "rocksdb/include/rocksdb"),
            binding_output="src/rockdis_bindings.py",
            sources=tuple(f"../src/{unit}.cc" for unit in ENGINE_UNITS),
            archive_name="rockdis",
            link_targets=tuple((LinkKind.STATIC, dep) for dep in ENGINE_STATIC_DEPS),
            resolve_cxx_runtime=True,
        )

    @classmethod
    def processor(cls) -> PipelineProfile:
        """Bind against the prebuilt redisdb library from the CMake tree."""
        return cls(
            profile_id="processor",
            header="wrapper.h",
            include_dirs=(
                "../../src",
                "../../cmake-build-debug/_deps/rocksdb-src/include/rocksdb",
            ),
            binding_output="bindings.py",
            link_targets=((LinkKind.DEFAULT, "redisdb"),),
            search_paths=((SearchKind.ALL, "../../cmake-build-debug"),),
            rerun_if_changed=("wrapper.h",),
            track_header_changes=True,
            binding_in_out_dir=True,
        )

    @property
    def compiles(self) -> bool:
        return bool(self.sources)

    def resolve(self, root: Path, rel: str) -> Path:
        """Crate-relative path → absolute path."""
        return (Path(root) / rel).resolve()

    def source_paths(self, root: Path) -> Tuple[Path, ...]:
        return tuple(self.resolve(root, s) for s in self.sources)

    def include_paths(self, root: Path) -> Tuple[Path, ...]:
        return unique_paths(self.resolve(root, d) for d in self.include_dirs)

    def header_path(self, root: Path) -> Path:
        return self.resolve(root, self.header)

    def binding_path(self, root: Path, out_dir: Path) -> Path:
        if self.binding_in_out_dir:
            return Path(out_dir) / self.binding_output
        return self.resolve(root, self.binding_output)

    def directives(self, root: Path) -> LinkDirectives:
        """Directives the profile declares up front, before any stage runs."""
        return LinkDirectives(
            link_targets=[LinkTarget(kind=k, name=n) for k, n in self.link_targets],
            search_paths=[
                SearchPath(kind=k, path=str(self.resolve(root, p))) for k, p in self.search_paths
            ],
            rerun_if_changed=[str(self.resolve(root, p)) for p in self.rerun_if_changed],
        )


PROFILES: Dict[str, PipelineProfile] = {
    p.profile_id: p for p in (PipelineProfile.engine_sys(), PipelineProfile.processor())
}
