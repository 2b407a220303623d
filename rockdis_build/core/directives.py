"""
Link directives — the value every pipeline stage hands to the build
orchestrator.

Stages never print directives themselves.  Each returns a
``LinkDirectives`` value; the runner merges them once, in stage order,
and the writer renders the merged value.
"""
from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class LinkKind(str, Enum):
    """How a library is linked."""
    STATIC = "static"
    DYLIB = "dylib"
    DEFAULT = "default"   # leave the choice to the linker


class SearchKind(str, Enum):
    """Which lookups a search directory applies to."""
    NATIVE = "native"
    ALL = "all"


class LinkTarget(BaseModel, frozen=True):
    """A library to link, by bare name; resolution is the linker's job."""
    kind: LinkKind = LinkKind.DEFAULT
    name: str


class SearchPath(BaseModel, frozen=True):
    """A directory the linker searches for libraries."""
    kind: SearchKind = SearchKind.ALL
    path: str


class LinkDirectives(BaseModel):
    """Ordered, de-duplicated link instructions for the final link step."""
    link_targets: List[LinkTarget] = Field(default_factory=list)
    search_paths: List[SearchPath] = Field(default_factory=list)
    rerun_if_changed: List[str] = Field(default_factory=list)

    def merge(self, *others: "LinkDirectives") -> "LinkDirectives":
        """
        Return a new value with *others* appended in order.

        The first occurrence of a target, path or watched file wins; later
        duplicates are dropped so link order stays the order of first
        declaration.
        """
        merged = LinkDirectives()
        for d in (self,) + others:
            for target in d.link_targets:
                if target not in merged.link_targets:
                    merged.link_targets.append(target)
            for sp in d.search_paths:
                if sp not in merged.search_paths:
                    merged.search_paths.append(sp)
            for path in d.rerun_if_changed:
                if path not in merged.rerun_if_changed:
                    merged.rerun_if_changed.append(path)
        return merged

    def is_empty(self) -> bool:
        return not (self.link_targets or self.search_paths or self.rerun_if_changed)

    def to_lines(self) -> List[str]:
        """
        Render in the orchestrator's line protocol:

            link-lib=<kind>=<name>
            link-search=<kind>=<path>
            rerun-if-changed=<path>
        """
        lines: List[str] = []
        for target in self.link_targets:
            lines.append(f"link-lib={target.kind.value}={target.name}")
        for sp in self.search_paths:
            lines.append(f"link-search={sp.kind.value}={sp.path}")
        for path in self.rerun_if_changed:
            lines.append(f"rerun-if-changed={path}")
        return lines

    def linker_args(self) -> List[str]:
        """
        Render as GNU-ld style driver arguments for a consumer link.

        Static targets are bracketed with ``-Bstatic``/``-Bdynamic`` so the
        linker refuses to substitute a shared library for them.
        """
        args = [f"-L{sp.path}" for sp in self.search_paths]
        for target in self.link_targets:
            if target.kind == LinkKind.STATIC:
                args += ["-Wl,-Bstatic", f"-l{target.name}", "-Wl,-Bdynamic"]
            else:
                args.append(f"-l{target.name}")
        return args
