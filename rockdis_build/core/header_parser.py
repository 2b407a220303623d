"""
Header parser — preprocessed C header → declaration model.

The header is run through the toolchain preprocessor in C mode with
``-dD`` so object-like macros survive expansion.  Linemarkers attribute
every output line to the file it came from and are then blanked out, so
the tree-sitter C grammar sees plain C with row numbers intact.

Only declarations that originate in the header itself or under one of
the include roots are marked for emission.  Everything else (system
headers) is still collected so typedefs and records can be resolved.
"""
from __future__ import annotations

import ast
import hashlib
import logging
import re
import subprocess
from dataclasses import dataclass, field, replace
from importlib.metadata import version
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import tree_sitter_c as tsc
from tree_sitter import Language, Node, Parser

from rockdis_build.core.toolchain import ToolchainDescriptor
from rockdis_build.errors import BindingError

logger = logging.getLogger(__name__)

# ── Language / parser singletons ─────────────────────────────────────────────

_C_LANGUAGE = Language(tsc.language())
_PARSER: Parser | None = None


def _get_parser() -> Parser:
    """Return a cached tree-sitter C parser."""
    global _PARSER
    if _PARSER is None:
        _PARSER = Parser(_C_LANGUAGE)
    return _PARSER


def parser_version_string() -> str:
    """Runtime + grammar version for provenance."""
    try:
        ts_version = version("tree-sitter")
    except Exception:
        ts_version = "unknown"

    try:
        tsc_version = version("tree-sitter-c")
    except Exception:
        tsc_version = "unknown"

    return f"tree-sitter=={ts_version}; tree-sitter-c=={tsc_version}"


# ── Declaration model ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CType:
    """
    A C type.

    kind is one of builtin | named | record | enum | pointer | array |
    function.  ``name`` holds the builtin spelling, the typedef name or
    the record/enum key; ``target`` the pointee, element or return type.
    """
    kind: str
    name: Optional[str] = None
    target: Optional["CType"] = None
    length: Optional[int] = None
    const: bool = False
    params: Tuple["CParam", ...] = ()
    variadic: bool = False


@dataclass(frozen=True)
class CParam:
    name: Optional[str]
    ctype: CType


@dataclass(frozen=True)
class CField:
    name: str
    ctype: CType
    bits: Optional[int] = None


@dataclass
class CRecord:
    """A struct or union.  ``fields is None`` means opaque (never defined)."""
    key: str                  # "struct foo", "union <anon-3>"
    kind: str                 # struct | union
    name: str                 # class name in the generated module
    order: int
    emit: bool = False
    fields: Optional[List[CField]] = None
    anonymous: List[str] = field(default_factory=list)
    defined_order: Optional[int] = None
    tagless: bool = False


@dataclass
class CEnum:
    key: str
    order: int
    emit: bool = False
    constants: List[Tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class CTypedef:
    name: str
    ctype: CType
    order: int
    emit: bool


@dataclass(frozen=True)
class CFunction:
    name: str
    restype: CType
    params: Tuple[CParam, ...]
    variadic: bool
    order: int


@dataclass(frozen=True)
class CVariable:
    name: str
    ctype: CType
    order: int


MacroValue = Union[int, float, bytes]


@dataclass(frozen=True)
class CConstant:
    name: str
    value: MacroValue
    order: int


@dataclass(frozen=True)
class ParseError:
    """A single error node found in the parse tree."""
    path: str
    line: int        # 0-based, in the preprocessed output
    column: int      # 0-based
    message: str


@dataclass
class HeaderModel:
    """Everything the binding renderer needs from one header."""
    header: str
    records: Dict[str, CRecord] = field(default_factory=dict)
    enums: Dict[str, CEnum] = field(default_factory=dict)
    typedefs: Dict[str, CTypedef] = field(default_factory=dict)
    functions: List[CFunction] = field(default_factory=list)
    variables: List[CVariable] = field(default_factory=list)
    constants: List[CConstant] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    ignored_errors: List[ParseError] = field(default_factory=list)
    source_hash: str = ""
    parser_version: str = ""

    def function_names(self) -> List[str]:
        return [f.name for f in self.functions]


# ── Preprocessing ────────────────────────────────────────────────────────────

_LINEMARKER_RE = re.compile(r'^#\s*(?:line\s+)?(\d+)\s+"((?:[^"\\]|\\.)*)"(.*)$')


@dataclass
class PreprocessedHeader:
    """Preprocessor output with linemarkers removed."""
    text: str
    origins: List[str]          # origin file of every output line
    dependencies: List[str]     # real files seen, first-seen order


def _unescape_marker_path(raw: str) -> str:
    return re.sub(r"\\(.)", r"\1", raw)


def split_linemarkers(output: str) -> PreprocessedHeader:
    """
    Attribute each line of preprocessor output to its origin file and
    blank the linemarkers themselves.  Row numbers are preserved.

    Trailing whitespace is stripped: GCC writes an empty macro as
    ``#define NAME `` and tree-sitter would otherwise read the following
    lines as its value.
    """
    lines = [line.rstrip() for line in output.split("\n")]
    origins: List[str] = []
    dependencies: List[str] = []
    seen = set()
    current = "<unknown>"

    for i, line in enumerate(lines):
        m = _LINEMARKER_RE.match(line)
        if m:
            current = _unescape_marker_path(m.group(2))
            if not current.startswith("<") and current not in seen:
                seen.add(current)
                dependencies.append(current)
            lines[i] = ""
        origins.append(current)

    return PreprocessedHeader(
        text="\n".join(lines),
        origins=origins,
        dependencies=dependencies,
    )


def preprocess_header(
    header: Path,
    include_dirs: Sequence[Path],
    toolchain: ToolchainDescriptor,
    timeout: int = 60,
) -> PreprocessedHeader:
    """
    Run the toolchain preprocessor over *header* in C mode.

    Raises
    ------
    BindingError
        The preprocessor could not run or rejected the header
        (unresolvable include, bad directive).
    """
    cmd = toolchain.to_command() + ["-x", "c", "-E", "-dD"]
    cmd += [f"-I{d}" for d in include_dirs]
    cmd.append(str(header))

    try:
        result = subprocess.run(cmd, capture_output=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise BindingError(f"Preprocessing {header} timed out after {timeout}s") from e
    except OSError as e:
        raise BindingError(f"Preprocessor could not run for {header}: {e}") from e

    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise BindingError(
            f"Preprocessing {header} failed (exit {result.returncode}):\n{stderr}"
        )

    return split_linemarkers(result.stdout.decode("utf-8", errors="replace"))


# ── Origin policy ────────────────────────────────────────────────────────────

class _OriginPolicy:
    """Decides whether a file's declarations are emitted."""

    def __init__(self, header: Path, include_dirs: Sequence[Path]):
        self._header = Path(header).resolve()
        self._roots = [Path(d).resolve() for d in include_dirs]
        self._cache: Dict[str, bool] = {}

    def emits(self, origin: str) -> bool:
        cached = self._cache.get(origin)
        if cached is not None:
            return cached
        result = False
        if not origin.startswith("<"):
            path = Path(origin).resolve()
            if path == self._header:
                result = True
            else:
                for root in self._roots:
                    try:
                        path.relative_to(root)
                    except ValueError:
                        continue
                    result = True
                    break
        self._cache[origin] = result
        return result


# ── Literal / expression evaluation ──────────────────────────────────────────

_INT_RE = re.compile(r"^([+-]?)(0[xX][0-9a-fA-F]+|0[bB][01]+|0[0-7]*|[1-9][0-9]*)([uUlL]*)$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+(?=[eE]))([eE][+-]?\d+)?[fFlL]?$")
_STRING_RE = re.compile(r'^"((?:[^"\\]|\\.)*)"$')
_CHAR_RE = re.compile(r"^'((?:[^'\\]|\\.)+)'$")


def parse_int_literal(text: str) -> Optional[int]:
    """Value of a C integer literal, or None."""
    m = _INT_RE.match(text.strip())
    if m is None:
        return None
    sign, digits, _ = m.groups()
    if digits[:2] in ("0x", "0X"):
        value = int(digits[2:], 16)
    elif digits[:2] in ("0b", "0B"):
        value = int(digits[2:], 2)
    elif len(digits) > 1 and digits[0] == "0":
        value = int(digits[1:], 8)
    else:
        value = int(digits)
    return -value if sign == "-" else value


def _parse_char_literal(text: str) -> Optional[int]:
    m = _CHAR_RE.match(text.strip())
    if m is None:
        return None
    try:
        value = ast.literal_eval("b'" + m.group(1) + "'")
    except (ValueError, SyntaxError):
        return None
    return value[0] if len(value) == 1 else None


def parse_macro_literal(text: str) -> Optional[MacroValue]:
    """
    Value of an object-like macro body when it is a single literal
    (integer, float, char or string), or None.
    """
    text = text.strip()
    while text.startswith("(") and text.endswith(")"):
        text = text[1:-1].strip()
    if not text:
        return None

    as_int = parse_int_literal(text)
    if as_int is not None:
        return as_int

    if _FLOAT_RE.match(text):
        return float(text.rstrip("fFlL"))

    as_char = _parse_char_literal(text)
    if as_char is not None:
        return as_char

    m = _STRING_RE.match(text)
    if m is not None:
        try:
            return ast.literal_eval('b"' + m.group(1) + '"')
        except (ValueError, SyntaxError):
            return None

    return None


def _c_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _c_mod(a: int, b: int) -> int:
    return a - b * _c_div(a, b)


_BINARY_OPS = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _c_div,
    "%": _c_mod,
    "<<": lambda a, b: a << b,
    ">>": lambda a, b: a >> b,
    "&": lambda a, b: a & b,
    "|": lambda a, b: a | b,
    "^": lambda a, b: a ^ b,
    "&&": lambda a, b: int(bool(a) and bool(b)),
    "||": lambda a, b: int(bool(a) or bool(b)),
    "==": lambda a, b: int(a == b),
    "!=": lambda a, b: int(a != b),
    "<": lambda a, b: int(a < b),
    ">": lambda a, b: int(a > b),
    "<=": lambda a, b: int(a <= b),
    ">=": lambda a, b: int(a >= b),
}

_UNARY_OPS = {
    "-": lambda a: -a,
    "+": lambda a: a,
    "~": lambda a: ~a,
    "!": lambda a: int(not a),
}


# ── Builtin types ────────────────────────────────────────────────────────────

# type_identifier spellings the grammar does not treat as primitive
_BUILTIN_TYPE_NAMES = {"_Bool", "wchar_t", "ptrdiff_t", "__builtin_va_list"}


def canonical_builtin(words: Sequence[str]) -> str:
    """
    Normalise a builtin type spelling: ``long unsigned int`` →
    ``unsigned long``, ``short int`` → ``short``, ``signed`` → ``int``.
    """
    unsigned = "unsigned" in words
    explicit_signed = "signed" in words
    rest = [w for w in words if w not in ("signed", "unsigned")]

    longs = rest.count("long")
    others = [w for w in rest if w not in ("long", "int")]
    if not others:
        base = " ".join(["long"] * longs) if longs else "int"
    elif others == ["double"] and longs:
        base = "long double"
    else:
        base = " ".join(others)

    if base == "char":
        if unsigned:
            return "unsigned char"
        if explicit_signed:
            return "signed char"
        return "char"
    if unsigned:
        return f"unsigned {base}"
    return base


VOID = CType("builtin", name="void")


# ── Declaration collector ────────────────────────────────────────────────────

class _Unsupported(Exception):
    """A construct the binding model cannot express."""

    def __init__(self, node: Node, what: str):
        super().__init__(what)
        self.node = node
        self.what = what


def _text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace")


class _DeclCollector:
    """Walks the top level of the parse tree and fills a HeaderModel."""

    def __init__(self, model: HeaderModel, origins: List[str], policy: _OriginPolicy):
        self.model = model
        self.origins = origins
        self.policy = policy
        self._order = 0
        self._anon = 0
        self._known: Dict[str, int] = {}
        self._constants: Dict[str, CConstant] = {}
        self._functions: Dict[str, CFunction] = {}
        self._variables: Dict[str, CVariable] = {}

    # -----------------------------------------------------------------
    # Bookkeeping
    # -----------------------------------------------------------------

    def _next_order(self) -> int:
        self._order += 1
        return self._order

    def _origin(self, node: Node) -> str:
        row = node.start_point[0]
        if row < len(self.origins):
            return self.origins[row]
        return "<unknown>"

    def _emits(self, node: Node) -> bool:
        return self.policy.emits(self._origin(node))

    # -----------------------------------------------------------------
    # Top level
    # -----------------------------------------------------------------

    def collect(self, root: Node) -> None:
        handlers = {
            "declaration": self._declaration,
            "function_definition": self._function_definition,
            "type_definition": self._type_definition,
            "struct_specifier": self._bare_specifier,
            "union_specifier": self._bare_specifier,
            "enum_specifier": self._bare_specifier,
            "preproc_def": self._macro,
            "preproc_call": self._preproc_call,
        }
        for node in root.named_children:
            handler = handlers.get(node.type)
            if handler is None:
                continue
            try:
                handler(node)
            except _Unsupported as e:
                if self._emits(e.node) or self._emits(node):
                    raise BindingError(
                        f"{self._origin(node)}: unsupported declaration "
                        f"({e.what}): {_text(node).strip()[:120]}"
                    ) from e
                logger.debug("Skipping system declaration (%s) at row %d",
                             e.what, node.start_point[0])

        self.model.functions = list(self._functions.values())
        self.model.variables = list(self._variables.values())
        self.model.constants = list(self._constants.values())

    def _declaration(self, node: Node) -> None:
        emit = self._emits(node)
        storage = self._storage(node)
        base = self._base_type(node, emit)
        for d in node.children_by_field_name("declarator"):
            if d.type == "init_declarator":
                d = d.child_by_field_name("declarator")
            name, ctype = self._declare(base, d, emit)
            if name is None or not emit or "static" in storage:
                continue
            if ctype.kind == "function":
                self._add_function(name, ctype)
            elif name not in self._variables:
                self._variables[name] = CVariable(name, ctype, self._next_order())

    def _function_definition(self, node: Node) -> None:
        emit = self._emits(node)
        storage = self._storage(node)
        base = self._base_type(node, emit)
        name, ctype = self._declare(base, node.child_by_field_name("declarator"), emit)
        # static / inline bodies in a header export no symbol
        if name is None or not emit or storage & {"static", "inline", "__inline", "__inline__"}:
            return
        if ctype.kind == "function":
            self._add_function(name, ctype)

    def _add_function(self, name: str, ctype: CType) -> None:
        if name in self._functions:
            return
        self._functions[name] = CFunction(
            name=name,
            restype=ctype.target or VOID,
            params=ctype.params,
            variadic=ctype.variadic,
            order=self._next_order(),
        )

    def _type_definition(self, node: Node) -> None:
        emit = self._emits(node)
        base = self._base_type(node, emit)
        for d in node.children_by_field_name("declarator"):
            name, ctype = self._declare(base, d, emit)
            if name is None or name in self.model.typedefs:
                continue
            if ctype.kind == "record":
                record = self.model.records[ctype.name]
                if record.tagless:
                    # typedef struct { ... } name_t;
                    record.name = name
                    record.tagless = False
            self.model.typedefs[name] = CTypedef(
                name=name, ctype=ctype, order=self._next_order(), emit=emit,
            )

    def _bare_specifier(self, node: Node) -> None:
        self._specifier(node, self._emits(node))

    def _macro(self, node: Node) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        name = _text(name_node)
        self._constants.pop(name, None)
        if not self._emits(node):
            return
        value_node = node.child_by_field_name("value")
        if value_node is None:
            return
        value = parse_macro_literal(_text(value_node))
        if value is None:
            logger.debug("Skipping non-literal macro %s", name)
            return
        self._constants[name] = CConstant(name, value, self._next_order())

    def _preproc_call(self, node: Node) -> None:
        directive = node.child_by_field_name("directive")
        argument = node.child_by_field_name("argument")
        if directive is None or argument is None:
            return
        if _text(directive).replace(" ", "") == "#undef":
            self._constants.pop(_text(argument).strip(), None)

    # -----------------------------------------------------------------
    # Specifiers
    # -----------------------------------------------------------------

    @staticmethod
    def _storage(node: Node) -> set:
        return {_text(c) for c in node.children if c.type == "storage_class_specifier"}

    def _base_type(self, node: Node, emit: bool) -> CType:
        type_node = node.child_by_field_name("type")
        if type_node is None:
            raise _Unsupported(node, "missing type specifier")
        base = self._specifier(type_node, emit)
        if any(c.type == "type_qualifier" and _text(c) == "const" for c in node.children):
            base = replace(base, const=True)
        return base

    def _specifier(self, node: Node, emit: bool) -> CType:
        t = node.type
        if t == "primitive_type":
            return CType("builtin", name=canonical_builtin([_text(node)]))
        if t == "sized_type_specifier":
            return CType("builtin", name=canonical_builtin(_text(node).split()))
        if t == "type_identifier":
            name = _text(node)
            if name in _BUILTIN_TYPE_NAMES:
                return CType("builtin", name=name)
            return CType("named", name=name)
        if t in ("struct_specifier", "union_specifier"):
            return self._record(node, emit)
        if t == "enum_specifier":
            return self._enum(node, emit)
        raise _Unsupported(node, f"type specifier {t}")

    def _record(self, node: Node, emit: bool) -> CType:
        kind = "struct" if node.type == "struct_specifier" else "union"
        name_node = node.child_by_field_name("name")
        body = node.child_by_field_name("body")

        if name_node is not None:
            tag = _text(name_node)
            key = f"{kind} {tag}"
            pyname, tagless = tag, False
        else:
            self._anon += 1
            key = f"{kind} <anon-{self._anon}>"
            pyname, tagless = f"_anon_{kind}_{self._anon}", True

        record = self.model.records.get(key)
        if record is None:
            record = CRecord(
                key=key, kind=kind, name=pyname, order=self._next_order(), tagless=tagless,
            )
            self.model.records[key] = record
        record.emit = record.emit or emit

        # First definition wins; later ones are redeclarations
        if body is not None and record.fields is None:
            record.fields = []
            for child in body.named_children:
                if child.type == "field_declaration":
                    self._field(child, record, emit)
            record.defined_order = self._next_order()

        return CType("record", name=key)

    def _field(self, node: Node, record: CRecord, emit: bool) -> None:
        base = self._base_type(node, emit)
        bits = None
        for child in node.children:
            if child.type == "bitfield_clause" and child.named_children:
                bits = self._evaluate(child.named_children[0])

        declarators = node.children_by_field_name("declarator")
        if not declarators:
            if base.kind == "record":
                # C11 anonymous struct/union member
                name = f"_anonymous_{len(record.anonymous)}"
                record.anonymous.append(name)
                record.fields.append(CField(name, base))
            return

        for d in declarators:
            name, ctype = self._declare(base, d, emit)
            if name is None:
                continue
            record.fields.append(CField(name, ctype, bits))

    def _enum(self, node: Node, emit: bool) -> CType:
        name_node = node.child_by_field_name("name")
        body = node.child_by_field_name("body")

        if name_node is not None:
            key = f"enum {_text(name_node)}"
        else:
            self._anon += 1
            key = f"enum <anon-{self._anon}>"

        enum = self.model.enums.get(key)
        if enum is None:
            enum = CEnum(key=key, order=self._next_order())
            self.model.enums[key] = enum
        enum.emit = enum.emit or emit

        if body is not None and not enum.constants:
            value = -1
            for e in body.named_children:
                if e.type != "enumerator":
                    continue
                name = _text(e.child_by_field_name("name"))
                value_node = e.child_by_field_name("value")
                value = self._evaluate(value_node) if value_node is not None else value + 1
                enum.constants.append((name, value))
                self._known[name] = value

        return CType("enum", name=key)

    # -----------------------------------------------------------------
    # Declarators
    # -----------------------------------------------------------------

    def _declare(self, base: CType, node: Optional[Node], emit: bool) -> Tuple[Optional[str], CType]:
        """
        Apply a (possibly abstract) declarator to *base*, outermost first.

        ``int *a[3]`` wraps int in a pointer, then the pointer in an array,
        then names it: array of 3 pointers to int.
        """
        if node is None:
            return None, base

        t = node.type
        if t in ("identifier", "field_identifier", "type_identifier", "primitive_type"):
            return _text(node), base

        if t in ("pointer_declarator", "abstract_pointer_declarator"):
            return self._declare(CType("pointer", target=base), node.child_by_field_name("declarator"), emit)

        if t in ("array_declarator", "abstract_array_declarator"):
            size = node.child_by_field_name("size")
            length = self._evaluate(size) if size is not None else 0
            return self._declare(
                CType("array", target=base, length=length),
                node.child_by_field_name("declarator"),
                emit,
            )

        if t in ("function_declarator", "abstract_function_declarator"):
            params, variadic = self._params(node.child_by_field_name("parameters"), emit)
            fn = CType("function", target=base, params=params, variadic=variadic)
            return self._declare(fn, node.child_by_field_name("declarator"), emit)

        if t in ("parenthesized_declarator", "abstract_parenthesized_declarator",
                 "attributed_declarator"):
            for child in node.named_children:
                if child.type.endswith("declarator") or child.type in (
                    "identifier", "field_identifier", "type_identifier",
                ):
                    return self._declare(base, child, emit)
            return None, base

        raise _Unsupported(node, f"declarator {t}")

    def _params(self, node: Optional[Node], emit: bool) -> Tuple[Tuple[CParam, ...], bool]:
        if node is None:
            return (), False

        params: List[CParam] = []
        variadic = False
        for child in node.named_children:
            if child.type == "variadic_parameter":
                variadic = True
                continue
            if child.type != "parameter_declaration":
                continue
            base = self._base_type(child, emit)
            name, ctype = self._declare(base, child.child_by_field_name("declarator"), emit)
            # Parameter type adjustment: arrays and functions decay to pointers
            if ctype.kind == "array":
                ctype = CType("pointer", target=ctype.target)
            elif ctype.kind == "function":
                ctype = CType("pointer", target=ctype)
            params.append(CParam(name, ctype))

        # f(void) declares no parameters
        if len(params) == 1 and params[0].name is None and params[0].ctype == VOID:
            params = []
        return tuple(params), variadic

    # -----------------------------------------------------------------
    # Constant expressions
    # -----------------------------------------------------------------

    def _evaluate(self, node: Node) -> int:
        """Evaluate an integer constant expression (enum values, sizes)."""
        t = node.type
        if t == "number_literal":
            value = parse_int_literal(_text(node))
            if value is None:
                raise _Unsupported(node, f"non-integer literal {_text(node)}")
            return value
        if t == "char_literal":
            value = _parse_char_literal(_text(node))
            if value is None:
                raise _Unsupported(node, f"char literal {_text(node)}")
            return value
        if t == "identifier":
            name = _text(node)
            if name not in self._known:
                raise _Unsupported(node, f"unknown constant {name}")
            return self._known[name]
        if t == "parenthesized_expression":
            return self._evaluate(node.named_children[0])
        if t == "cast_expression":
            return self._evaluate(node.child_by_field_name("value"))
        if t == "unary_expression":
            op = node.child_by_field_name("operator").type
            if op not in _UNARY_OPS:
                raise _Unsupported(node, f"operator {op}")
            return _UNARY_OPS[op](self._evaluate(node.child_by_field_name("argument")))
        if t == "binary_expression":
            op = node.child_by_field_name("operator").type
            if op not in _BINARY_OPS:
                raise _Unsupported(node, f"operator {op}")
            left = self._evaluate(node.child_by_field_name("left"))
            right = self._evaluate(node.child_by_field_name("right"))
            if op in ("/", "%") and right == 0:
                raise _Unsupported(node, "division by zero")
            return _BINARY_OPS[op](left, right)
        if t == "conditional_expression":
            if self._evaluate(node.child_by_field_name("condition")):
                return self._evaluate(node.child_by_field_name("consequence"))
            return self._evaluate(node.child_by_field_name("alternative"))
        raise _Unsupported(node, f"expression {t}")


# ── Error collection ─────────────────────────────────────────────────────────

def _collect_errors(node: Node, origins: List[str], errors: List[ParseError]) -> None:
    """Walk the error-bearing parts of the tree and collect ERROR / MISSING nodes."""
    if node.type == "ERROR" or node.is_missing:
        row, col = node.start_point
        path = origins[row] if row < len(origins) else "<unknown>"
        msg = f"MISSING({node.type})" if node.is_missing else "ERROR"
        errors.append(ParseError(path=path, line=row, column=col, message=msg))
        return
    if not node.has_error:
        return
    for child in node.children:
        _collect_errors(child, origins, errors)


# ── Public API ───────────────────────────────────────────────────────────────

def parse_header(
    pre: PreprocessedHeader,
    header: Path,
    include_dirs: Sequence[Path],
) -> HeaderModel:
    """
    Build the declaration model for a preprocessed header.

    Raises
    ------
    BindingError
        The header or a file under the include roots does not parse, or
        declares something the binding model cannot express.
    """
    source_bytes = pre.text.encode("utf-8")
    tree = _get_parser().parse(source_bytes)
    policy = _OriginPolicy(header, include_dirs)

    errors: List[ParseError] = []
    _collect_errors(tree.root_node, pre.origins, errors)
    fatal = [e for e in errors if policy.emits(e.path)]
    if fatal:
        listing = "; ".join(f"{e.path}:{e.message} at row {e.line}" for e in fatal[:5])
        raise BindingError(f"Header {header} does not parse: {listing}")
    for e in errors:
        logger.debug("Ignoring parse error in system header %s (row %d)", e.path, e.line)

    model = HeaderModel(
        header=str(header),
        dependencies=list(pre.dependencies),
        ignored_errors=errors,
        source_hash=hashlib.sha256(source_bytes).hexdigest(),
        parser_version=parser_version_string(),
    )
    _DeclCollector(model, pre.origins, policy).collect(tree.root_node)

    logger.info(
        "Parsed %s: %d functions, %d records, %d typedefs, %d constants",
        Path(header).name,
        len(model.functions),
        sum(1 for r in model.records.values() if r.emit),
        sum(1 for t in model.typedefs.values() if t.emit),
        len(model.constants),
    )
    return model
