"""
Runner — orchestrates one pipeline run.

    toolchain → runtime linkage → compile + archive → bindings → ABI audit
              → merged directives + receipt

Each stage returns its own ``LinkDirectives``; they are merged once here,
in stage order, and written by the io layer.  The merged directive lines
are also printed to stdout for the build orchestrator.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from rockdis_build.config import Settings
from rockdis_build.core.bindgen import BindingResult, generate_bindings
from rockdis_build.core.compiler import CompileConfig, CompileResult, compile_archive
from rockdis_build.core.directives import LinkDirectives
from rockdis_build.core.runtime_link import RuntimeLinkDecision, resolve_runtime_link
from rockdis_build.core.symbols import audit_abi
from rockdis_build.core.toolchain import ToolchainDescriptor, detect_toolchain
from rockdis_build.errors import ConfigError, PipelineError
from rockdis_build.io.schema import (
    AbiAudit,
    BindingArtifact,
    CompilePhase,
    CompileUnitResult,
    PhaseStatus,
    PipelineReceipt,
    ToolchainIdentity,
    hash_file,
    now_iso,
)
from rockdis_build.io.writer import write_outputs
from rockdis_build.policy.profile import PROFILES, PipelineProfile

logger = logging.getLogger(__name__)

_OUTPUT_FILES = ("build_directives.txt", "build_directives.json", "pipeline_receipt.json")


# =============================================================================
# Helpers
# =============================================================================

def load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigError(f"Invalid build environment: {e}") from e


def _toolchain(settings: Settings) -> ToolchainDescriptor:
    command = settings.cxx_command
    if not command:
        raise ConfigError("CXX is empty")
    return detect_toolchain(command, timeout=settings.QUERY_TIMEOUT)


def _check_profile(profile: PipelineProfile) -> None:
    if profile.sources and not profile.archive_name:
        raise ConfigError(f"Profile {profile.profile_id} compiles sources but names no archive")
    if profile.archive_name and not profile.sources:
        raise ConfigError(f"Profile {profile.profile_id} names an archive but has no sources")


def _clear_stale_outputs(out_dir: Path, binding_path: Path) -> None:
    """A failed run must not leave the previous run's directives or bindings behind."""
    for path in [out_dir / name for name in _OUTPUT_FILES] + [binding_path]:
        if path.exists():
            path.unlink()


def _compile_phase(result: CompileResult) -> CompilePhase:
    return CompilePhase(
        status=PhaseStatus.SUCCESS,
        command_template=result.command_template,
        units=[
            CompileUnitResult(
                source=str(u.source),
                object_path=str(u.object_path),
                exit_code=u.exit_code,
                duration_ms=u.duration_ms,
                stderr_path=str(u.stderr_log) if u.stderr_log else None,
            )
            for u in result.units
        ],
        archive_path=str(result.archive),
        archive_sha256=hash_file(result.archive),
    )


def _binding_artifact(result: BindingResult) -> BindingArtifact:
    model = result.model
    return BindingArtifact(
        output_path=str(result.output_path),
        sha256=result.sha256,
        header=model.header,
        functions=len(model.functions),
        records=sum(1 for r in model.records.values() if r.emit),
        enums=sum(1 for e in model.enums.values() if e.emit),
        typedefs=sum(1 for t in model.typedefs.values() if t.emit),
        constants=len(model.constants),
        variables=len(model.variables),
        dependencies=result.dependencies,
        ignored_parse_errors=len(model.ignored_errors),
        parser_version=model.parser_version,
    )


# =============================================================================
# Pipeline
# =============================================================================

def run_pipeline(
    profile: PipelineProfile,
    root: Path,
    settings: Optional[Settings] = None,
) -> PipelineReceipt:
    """
    Run *profile* against the crate directory *root*.

    Raises
    ------
    PipelineError
        Any fatal stage failure.  Nothing is written to the output
        directory in that case.
    """
    settings = settings or load_settings()
    root = Path(root).resolve()
    out_dir = settings.out_dir(root).resolve()

    _check_profile(profile)
    out_dir.mkdir(parents=True, exist_ok=True)
    binding_path = profile.binding_path(root, out_dir)
    _clear_stale_outputs(out_dir, binding_path)

    toolchain = _toolchain(settings)
    receipt = PipelineReceipt(
        profile_id=profile.profile_id,
        root=str(root),
        out_dir=str(out_dir),
        created_at=now_iso(),
        toolchain=ToolchainIdentity(
            command=list(toolchain.command),
            family=toolchain.family.value,
            version=toolchain.version,
        ),
    )
    include_dirs = profile.include_paths(root)
    logger.info("Pipeline %s: root=%s out_dir=%s", profile.profile_id, root, out_dir)

    # ── Runtime linkage ──────────────────────────────────────────────
    decision: Optional[RuntimeLinkDecision] = None
    if profile.resolve_cxx_runtime:
        decision = resolve_runtime_link(toolchain, timeout=settings.QUERY_TIMEOUT)
        receipt.runtime_link = decision

    # ── Compile + archive ────────────────────────────────────────────
    compile_result: Optional[CompileResult] = None
    if profile.compiles:
        config = CompileConfig.for_toolchain(
            toolchain,
            profile.archive_name,
            out_dir,
            include_dirs=include_dirs,
            opt_level=settings.OPT_LEVEL,
            debug=settings.DEBUG,
            extra_flags=tuple(settings.extra_cxxflags),
            archiver=tuple(settings.ar_command),
            timeout=settings.COMPILE_TIMEOUT,
        )
        if decision is not None:
            config = config.with_runtime(decision)
        compile_result = compile_archive(profile.source_paths(root), config)
        receipt.compile = _compile_phase(compile_result)

    # ── Bindings ─────────────────────────────────────────────────────
    binding = generate_bindings(
        header=profile.header_path(root),
        include_dirs=include_dirs,
        output_path=binding_path,
        toolchain=toolchain,
        track_changes=profile.track_header_changes,
        timeout=settings.QUERY_TIMEOUT,
    )
    receipt.binding = _binding_artifact(binding)

    # ── ABI audit (informational) ────────────────────────────────────
    if compile_result is not None:
        audit = audit_abi(compile_result.objects, binding.model.function_names())
        receipt.abi_audit = AbiAudit(
            checked=audit.checked,
            objects_scanned=audit.objects_scanned,
            declared=audit.declared,
            missing=audit.missing,
            detail=audit.detail or None,
        )

    # ── Merge once, in stage order ───────────────────────────────────
    stages: List[LinkDirectives] = []
    if compile_result is not None:
        stages.append(compile_result.directives)
    stages.append(profile.directives(root))
    if decision is not None:
        stages.append(decision.directives())
    if compile_result is not None:
        stages.append(compile_result.runtime_directives)
    stages.append(binding.directives)
    receipt.directives = LinkDirectives().merge(*stages)

    receipt.finished_at = now_iso()
    receipt_path = write_outputs(receipt, out_dir)
    logger.info("Receipt written to %s", receipt_path)
    return receipt


# =============================================================================
# CLI
# =============================================================================

def _emit(directives: LinkDirectives) -> None:
    for line in directives.to_lines():
        print(line)


def _cmd_pipeline(args: argparse.Namespace, settings: Settings) -> None:
    receipt = run_pipeline(PROFILES[args.command], Path(args.root), settings)
    _emit(receipt.directives)


def _cmd_bindgen(args: argparse.Namespace, settings: Settings) -> None:
    result = generate_bindings(
        header=args.header,
        include_dirs=args.include,
        output_path=args.output,
        toolchain=_toolchain(settings),
        track_changes=args.track_changes,
        timeout=settings.QUERY_TIMEOUT,
    )
    _emit(result.directives)


def _cmd_resolve_runtime(args: argparse.Namespace, settings: Settings) -> None:
    decision = resolve_runtime_link(_toolchain(settings), timeout=settings.QUERY_TIMEOUT)
    print(f"outcome={decision.outcome.value}")
    if decision.reason is not None:
        print(f"reason={decision.reason.value}")
    _emit(decision.directives())


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rockdis-build",
        description="rockdis-build — compile, link-resolve and bind the rockdis engine",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    for profile_id, profile in PROFILES.items():
        p = sub.add_parser(profile_id, help=f"Run the {profile_id} pipeline")
        p.add_argument(
            "--root",
            type=Path,
            default=Path.cwd(),
            help="Crate directory the profile paths are relative to",
        )

    p = sub.add_parser("bindgen", help="Generate bindings for one header")
    p.add_argument("header", type=Path, help="C header to bind")
    p.add_argument(
        "-I", "--include",
        type=Path,
        action="append",
        default=[],
        help="Include directory (repeatable)",
    )
    p.add_argument("-o", "--output", type=Path, required=True, help="Binding module to write")
    p.add_argument(
        "--track-changes",
        action="store_true",
        help="Print rerun-if-changed lines for the header and its includes",
    )

    sub.add_parser("resolve-runtime", help="Show how the C++ runtime would be linked")
    return parser


_COMMANDS = {
    "bindgen": _cmd_bindgen,
    "resolve-runtime": _cmd_resolve_runtime,
}


def main(argv: Optional[List[str]] = None):
    """CLI entry point for rockdis-build."""
    args = _build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ConfigError as e:
        logging.basicConfig(format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
        logger.error("%s stage failed: %s", e.stage, e.message)
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.ROCKDIS_LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    handler = _COMMANDS.get(args.command, _cmd_pipeline)
    try:
        handler(args, settings)
    except PipelineError as e:
        logger.error("%s stage failed: %s", e.stage, e.message)
        sys.exit(1)


if __name__ == "__main__":
    main()
