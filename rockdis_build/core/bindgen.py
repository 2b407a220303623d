"""
Binding generator.

    header + include paths → preprocess → parse → render → atomic write

No caching: the artifact is regenerated on every run, and identical
inputs produce byte-identical output.
"""
from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

from rockdis_build.core.ctypes_render import render_module
from rockdis_build.core.directives import LinkDirectives
from rockdis_build.core.header_parser import HeaderModel, parse_header, preprocess_header
from rockdis_build.core.toolchain import ToolchainDescriptor
from rockdis_build.errors import BindingError

logger = logging.getLogger(__name__)


@dataclass
class BindingResult:
    output_path: Path
    sha256: str
    model: HeaderModel
    dependencies: List[str]
    directives: LinkDirectives = field(default_factory=LinkDirectives)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug("Could not remove %s: %s", path, e)


def write_atomic(path: Path, data: bytes) -> None:
    """Write *data* to a hidden sibling, then rename it over *path*."""
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_bytes(data)
        os.replace(tmp, path)
    except OSError as e:
        _discard(tmp)
        raise BindingError(f"Cannot write bindings to {path}: {e}") from e


def generate_bindings(
    header: Path,
    include_dirs: Sequence[Path],
    output_path: Path,
    toolchain: ToolchainDescriptor,
    track_changes: bool = False,
    timeout: int = 60,
) -> BindingResult:
    """
    Generate the ctypes binding module for *header* at *output_path*.

    With *track_changes*, the header and every file it pulled in are
    returned as ``rerun_if_changed`` directives.

    Raises
    ------
    BindingError
        The header does not preprocess or parse, uses an unsupported
        type, or the output cannot be written.  Any artifact left by an
        earlier run is removed first so it cannot be mistaken for this
        run's output.
    """
    header = Path(header)
    output_path = Path(output_path)
    include_dirs = [Path(d) for d in include_dirs]

    _discard(output_path)

    if not header.is_file():
        raise BindingError(f"Header not found: {header}")

    pre = preprocess_header(header, include_dirs, toolchain, timeout=timeout)
    model = parse_header(pre, header, include_dirs)
    data = render_module(model).encode("utf-8")
    write_atomic(output_path, data)

    sha256 = hashlib.sha256(data).hexdigest()
    logger.info(
        "Wrote bindings %s (%d functions, sha256 %s)",
        output_path, len(model.functions), sha256[:12],
    )

    directives = LinkDirectives()
    if track_changes:
        watched = [str(header)] + [d for d in model.dependencies if d != str(header)]
        directives = LinkDirectives(rerun_if_changed=watched)

    return BindingResult(
        output_path=output_path,
        sha256=sha256,
        model=model,
        dependencies=list(model.dependencies),
        directives=directives,
    )
