"""
ctypes renderer — HeaderModel → Python binding module source.

The output is a pure function of the model: no timestamps, no absolute
paths, declarations in source order.  Record classes are declared up
front as empty stubs and completed later with ``_fields_`` so records
may point at each other in any order.
"""
from __future__ import annotations

import keyword
import logging
from pathlib import Path
from typing import Dict, List, Set, Tuple

from rockdis_build.core.header_parser import CRecord, CType, HeaderModel
from rockdis_build.errors import BindingError

logger = logging.getLogger(__name__)


_BUILTIN_CTYPES: Dict[str, str] = {
    "void": "None",
    "char": "ctypes.c_char",
    "signed char": "ctypes.c_byte",
    "unsigned char": "ctypes.c_ubyte",
    "short": "ctypes.c_short",
    "unsigned short": "ctypes.c_ushort",
    "int": "ctypes.c_int",
    "unsigned int": "ctypes.c_uint",
    "long": "ctypes.c_long",
    "unsigned long": "ctypes.c_ulong",
    "long long": "ctypes.c_longlong",
    "unsigned long long": "ctypes.c_ulonglong",
    "float": "ctypes.c_float",
    "double": "ctypes.c_double",
    "long double": "ctypes.c_longdouble",
    "bool": "ctypes.c_bool",
    "_Bool": "ctypes.c_bool",
    "size_t": "ctypes.c_size_t",
    "ssize_t": "ctypes.c_ssize_t",
    "ptrdiff_t": "ctypes.c_ssize_t",
    "intptr_t": "ctypes.c_ssize_t",
    "uintptr_t": "ctypes.c_size_t",
    "int8_t": "ctypes.c_int8",
    "int16_t": "ctypes.c_int16",
    "int32_t": "ctypes.c_int32",
    "int64_t": "ctypes.c_int64",
    "uint8_t": "ctypes.c_uint8",
    "uint16_t": "ctypes.c_uint16",
    "uint32_t": "ctypes.c_uint32",
    "uint64_t": "ctypes.c_uint64",
    "wchar_t": "ctypes.c_wchar",
    "char16_t": "ctypes.c_uint16",
    "char32_t": "ctypes.c_uint32",
    "__builtin_va_list": "ctypes.c_void_p",
}

# Names the generated module defines itself
_RESERVED = {"ctypes", "load", "variable", "FUNCTIONS", "VARIABLES"}


def py_name(name: str) -> str:
    """A C identifier made safe as a Python identifier."""
    if keyword.iskeyword(name) or name in _RESERVED:
        return name + "_"
    return name


class _Renderer:

    def __init__(self, model: HeaderModel):
        self.model = model
        self.records: Dict[str, CRecord] = {}

    # -----------------------------------------------------------------
    # Type resolution
    # -----------------------------------------------------------------

    def _typedef(self, name: str):
        td = self.model.typedefs.get(name)
        if td is None:
            raise BindingError(f"Unknown type name {name!r} in {self.model.header}")
        return td

    def _underlying(self, ctype: CType) -> Tuple[CType, bool]:
        """Follow typedef names to the real type; also report const-ness."""
        const = ctype.const
        seen: Set[str] = set()
        while ctype.kind == "named":
            if ctype.name in seen:
                raise BindingError(f"Typedef cycle through {ctype.name!r}")
            seen.add(ctype.name)
            ctype = self._typedef(ctype.name).ctype
            const = const or ctype.const
        return ctype, const

    def _record(self, key: str) -> CRecord:
        record = self.model.records.get(key)
        if record is None:
            raise BindingError(f"Unknown record {key!r} in {self.model.header}")
        return record

    # -----------------------------------------------------------------
    # Reachability
    # -----------------------------------------------------------------

    def collect(self) -> None:
        """Emitted records plus every record an emitted declaration uses."""
        pending: List[CType] = []
        for f in self.model.functions:
            pending.append(f.restype)
            pending.extend(p.ctype for p in f.params)
        pending.extend(v.ctype for v in self.model.variables)
        pending.extend(td.ctype for td in self.model.typedefs.values() if td.emit)
        for record in self.model.records.values():
            if record.emit:
                pending.append(CType("record", name=record.key))

        while pending:
            ctype = pending.pop()
            if ctype.kind == "record":
                if ctype.name in self.records:
                    continue
                record = self._record(ctype.name)
                self.records[ctype.name] = record
                pending.extend(f.ctype for f in record.fields or ())
            elif ctype.kind == "named":
                td = self._typedef(ctype.name)
                if not td.emit:
                    pending.append(td.ctype)
            elif ctype.kind in ("pointer", "array"):
                pending.append(ctype.target)
            elif ctype.kind == "function":
                pending.append(ctype.target)
                pending.extend(p.ctype for p in ctype.params)

    # -----------------------------------------------------------------
    # Type expressions
    # -----------------------------------------------------------------

    def expr(self, ctype: CType) -> str:
        kind = ctype.kind
        if kind == "builtin":
            mapped = _BUILTIN_CTYPES.get(ctype.name)
            if mapped is None:
                raise BindingError(f"No ctypes mapping for builtin type {ctype.name!r}")
            return mapped
        if kind == "named":
            td = self._typedef(ctype.name)
            if td.emit:
                return py_name(td.name)
            return self.expr(td.ctype)
        if kind == "record":
            return py_name(self._record(ctype.name).name)
        if kind == "enum":
            return "ctypes.c_int"
        if kind == "array":
            return f"({self.expr(ctype.target)} * {ctype.length or 0})"
        if kind == "function":
            return self._function_type(ctype)
        if kind == "pointer":
            return self._pointer(ctype.target)
        raise BindingError(f"Cannot render type kind {kind!r}")

    def _pointer(self, target: CType) -> str:
        resolved, const = self._underlying(target)
        if resolved.kind == "builtin" and resolved.name == "void":
            return "ctypes.c_void_p"
        if resolved.kind == "builtin" and resolved.name == "char" and const:
            return "ctypes.c_char_p"
        if resolved.kind == "function":
            # CFUNCTYPE objects are already pointers
            return self.expr(target)
        return f"ctypes.POINTER({self.expr(target)})"

    def _function_type(self, fn: CType) -> str:
        args = [self.expr(fn.target)] + [self.expr(p.ctype) for p in fn.params]
        return f"ctypes.CFUNCTYPE({', '.join(args)})"

    # -----------------------------------------------------------------
    # Sections
    # -----------------------------------------------------------------

    def _record_fields(self, record: CRecord) -> List[str]:
        name = py_name(record.name)
        lines: List[str] = []
        if record.anonymous:
            anon = ", ".join(repr(a) for a in record.anonymous)
            lines.append(f"{name}._anonymous_ = ({anon},)")
        if not record.fields:
            lines.append(f"{name}._fields_ = []")
            return lines
        lines.append(f"{name}._fields_ = [")
        for f in record.fields:
            if f.bits is not None:
                lines.append(f"    ({f.name!r}, {self.expr(f.ctype)}, {f.bits}),")
            else:
                lines.append(f"    ({f.name!r}, {self.expr(f.ctype)}),")
        lines.append("]")
        return lines

    def _definitions(self) -> List[str]:
        """Record bodies and typedef aliases, in source order."""
        items: List[Tuple[int, List[str]]] = []
        for record in self.records.values():
            if record.fields is not None:
                items.append((record.defined_order or record.order, self._record_fields(record)))
        for td in self.model.typedefs.values():
            if not td.emit:
                continue
            target = self.expr(td.ctype)
            alias = py_name(td.name)
            if target == alias:
                continue
            items.append((td.order, [f"{alias} = {target}"]))
        items.sort(key=lambda item: item[0])

        lines: List[str] = []
        for _, block in items:
            lines.extend(block)
        return lines

    def render(self) -> str:
        self.collect()
        header_name = Path(self.model.header).name

        out: List[str] = [
            '"""',
            f"ctypes bindings for {header_name}.",
            "",
            "Generated by rockdis-build from the preprocessed header.",
            "Do not edit by hand.",
            '"""',
            "import ctypes",
            "",
        ]

        records = sorted(self.records.values(), key=lambda r: r.order)
        if records:
            out.append("")
            for record in records:
                base = "ctypes.Structure" if record.kind == "struct" else "ctypes.Union"
                out.append(f"class {py_name(record.name)}({base}):")
                out.append("    pass")
                out.append("")
                out.append("")

        enums = [e for e in sorted(self.model.enums.values(), key=lambda e: e.order) if e.emit]
        constants: List[str] = []
        for enum in enums:
            for name, value in enum.constants:
                constants.append(f"{py_name(name)} = {value}")
        for const in self.model.constants:
            constants.append(f"{py_name(const.name)} = {const.value!r}")
        if constants:
            out.append("# Constants")
            out.extend(constants)
            out.append("")

        definitions = self._definitions()
        if definitions:
            out.append("# Records and type aliases")
            out.extend(definitions)
            out.append("")

        out.append("# name -> (restype, argtypes, variadic)")
        out.append("FUNCTIONS = {")
        for f in self.model.functions:
            argtypes = ", ".join(self.expr(p.ctype) for p in f.params)
            out.append(f"    {f.name!r}: ({self.expr(f.restype)}, [{argtypes}], {f.variadic}),")
        out.append("}")
        out.append("")

        out.append("VARIABLES = {")
        for v in self.model.variables:
            out.append(f"    {v.name!r}: {self.expr(v.ctype)},")
        out.append("}")
        out.append("")

        out.extend(_LOADER)
        return "\n".join(out) + "\n"


_LOADER = [
    "",
    "def load(path):",
    '    """Open the shared library at *path* and apply the prototypes above."""',
    "    lib = ctypes.CDLL(path)",
    "    for name, (restype, argtypes, variadic) in FUNCTIONS.items():",
    "        func = getattr(lib, name, None)",
    "        if func is None:",
    "            continue",
    "        func.restype = restype",
    "        if not variadic:",
    "            func.argtypes = argtypes",
    "    return lib",
    "",
    "",
    "def variable(lib, name):",
    '    """Access the exported global *name* of a loaded library."""',
    "    return VARIABLES[name].in_dll(lib, name)",
]


def render_module(model: HeaderModel) -> str:
    """
    Render *model* as the source of a ctypes binding module.

    Raises
    ------
    BindingError
        An emitted declaration uses a type with no ctypes equivalent.
    """
    source = _Renderer(model).render()
    logger.debug("Rendered %d bytes of bindings for %s", len(source), model.header)
    return source
