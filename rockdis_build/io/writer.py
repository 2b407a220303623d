"""
Writer — serialize pipeline outputs.

Filesystem layout:
    <out_dir>/pipeline_receipt.json
    <out_dir>/build_directives.json
    <out_dir>/build_directives.txt    one directive per line
"""
import json
from pathlib import Path

from rockdis_build.core.directives import LinkDirectives
from rockdis_build.io.schema import PipelineReceipt


def _dump(model) -> str:
    return json.dumps(model.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"


def write_directives(directives: LinkDirectives, out_dir: Path) -> Path:
    """Write the merged directives as JSON and as line protocol."""
    out_dir.mkdir(parents=True, exist_ok=True)

    (out_dir / "build_directives.json").write_text(_dump(directives))

    lines = directives.to_lines()
    (out_dir / "build_directives.txt").write_text(
        "".join(line + "\n" for line in lines)
    )
    return out_dir / "build_directives.txt"


def write_outputs(receipt: PipelineReceipt, out_dir: Path) -> Path:
    """
    Write the receipt and its directives into *out_dir*.

    Creates *out_dir* if it does not exist.
    Returns the receipt path.
    """
    out_dir.mkdir(parents=True, exist_ok=True)

    write_directives(receipt.directives, out_dir)

    receipt_path = out_dir / "pipeline_receipt.json"
    receipt_path.write_text(_dump(receipt))
    return receipt_path
