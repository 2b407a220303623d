"""
Pipeline receipt — rockdis_build

Single JSON receipt per pipeline run.  Records which toolchain ran, what
was compiled, how the C++ runtime is linked, which binding was written,
and the merged link directives handed to the build orchestrator.
"""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from rockdis_build import PACKAGE_NAME, SCHEMA_VERSION, __version__
from rockdis_build.core.directives import LinkDirectives
from rockdis_build.core.runtime_link import RuntimeLinkDecision


# =============================================================================
# Enums
# =============================================================================

class PhaseStatus(str, Enum):
    """Status of a single phase (compile/bindgen)."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


# =============================================================================
# Toolchain Identity
# =============================================================================

class ToolchainIdentity(BaseModel):
    """The compiler this run used."""
    command: List[str]
    family: str
    version: str


# =============================================================================
# Compile Phase
# =============================================================================

class CompileUnitResult(BaseModel):
    """Result of compiling a single translation unit."""
    source: str
    object_path: str
    exit_code: int
    duration_ms: int
    stderr_path: Optional[str] = None


class CompilePhase(BaseModel):
    """Compile + archive phase."""
    status: PhaseStatus = PhaseStatus.SKIPPED
    command_template: Optional[str] = None
    units: List[CompileUnitResult] = Field(default_factory=list)
    archive_path: Optional[str] = None
    archive_sha256: Optional[str] = None


# =============================================================================
# Binding
# =============================================================================

class BindingArtifact(BaseModel):
    """The generated binding module."""
    output_path: str
    sha256: str
    header: str
    functions: int
    records: int
    enums: int
    typedefs: int
    constants: int
    variables: int = 0
    dependencies: List[str] = Field(default_factory=list)
    ignored_parse_errors: int = 0
    parser_version: str = ""


class AbiAudit(BaseModel):
    """Header functions checked against the compiled objects."""
    checked: bool
    objects_scanned: int = 0
    declared: int = 0
    missing: List[str] = Field(default_factory=list)
    detail: Optional[str] = None


# =============================================================================
# Top-level Receipt
# =============================================================================

class BuilderInfo(BaseModel):
    """Metadata about the pipeline itself."""
    name: str = PACKAGE_NAME
    version: str = __version__
    schema_version: str = SCHEMA_VERSION


class PipelineReceipt(BaseModel):
    """
    Single authoritative receipt per pipeline run.

    Written as pipeline_receipt.json next to the directives.
    """
    builder: BuilderInfo = Field(default_factory=BuilderInfo)
    profile_id: str
    root: str
    out_dir: str

    created_at: str
    finished_at: Optional[str] = None

    toolchain: ToolchainIdentity
    compile: CompilePhase = Field(default_factory=CompilePhase)
    runtime_link: Optional[RuntimeLinkDecision] = None
    binding: Optional[BindingArtifact] = None
    abi_audit: Optional[AbiAudit] = None

    directives: LinkDirectives = Field(default_factory=LinkDirectives)


# =============================================================================
# Helpers
# =============================================================================

def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
