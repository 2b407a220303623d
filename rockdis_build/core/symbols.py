"""
ABI audit — do the compiled objects define what the header declares?

Reads the symbol tables of the compiled objects and compares them with
the header's function declarations.  The result is informational: a
missing definition surfaces only at the consumer's final link, and the
pipeline does not fail on it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Set

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection

logger = logging.getLogger(__name__)


_EXPORTED_BINDINGS = {"STB_GLOBAL", "STB_WEAK"}


@dataclass
class AbiAuditResult:
    checked: bool
    objects_scanned: int = 0
    declared: int = 0
    missing: List[str] = field(default_factory=list)
    detail: str = ""


def defined_functions(path: Path) -> Set[str]:
    """
    Names of the functions an ELF object defines and exports.

    Raises
    ------
    ELFError
        If the file is not a valid ELF object.
    """
    names: Set[str] = set()
    with open(path, "rb") as f:
        elffile = ELFFile(f)
        for section in elffile.iter_sections():
            if not isinstance(section, SymbolTableSection):
                continue
            for sym in section.iter_symbols():
                if sym["st_info"]["type"] != "STT_FUNC":
                    continue
                if sym["st_info"]["bind"] not in _EXPORTED_BINDINGS:
                    continue
                if sym["st_shndx"] == "SHN_UNDEF":
                    continue
                names.add(sym.name)
    return names


def audit_abi(objects: Iterable[Path], declared: Iterable[str]) -> AbiAuditResult:
    """Report declared functions that no compiled object defines."""
    objects = list(objects)
    declared = list(declared)

    defined: Set[str] = set()
    try:
        for obj in objects:
            defined |= defined_functions(obj)
    except (ELFError, OSError) as e:
        logger.info("ABI audit skipped: %s", e)
        return AbiAuditResult(checked=False, declared=len(declared), detail=str(e))

    missing = [name for name in declared if name not in defined]
    if missing:
        logger.warning(
            "%d declared function(s) not defined by any compiled unit: %s",
            len(missing), ", ".join(missing[:10]),
        )
    return AbiAuditResult(
        checked=True,
        objects_scanned=len(objects),
        declared=len(declared),
        missing=missing,
    )
