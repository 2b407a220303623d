"""Tests for the binding generator (preprocesses with g++)."""
import ctypes
import textwrap

import pytest

from conftest import fake_toolchain
from rockdis_build.core.bindgen import generate_bindings
from rockdis_build.core.toolchain import ToolchainDescriptor, ToolchainFamily
from rockdis_build.errors import BindingError


def _namespace(path):
    ns: dict = {}
    exec(compile(path.read_text(), str(path), "exec"), ns)
    return ns


class TestThreeFunctions:
    """A header declaring three C functions yields exactly three bindings."""

    def test_exactly_three(self, three_project, gnu_toolchain, tmp_path):
        out = tmp_path / "bindings.py"
        result = generate_bindings(
            three_project / "three.h", [three_project], out, gnu_toolchain,
        )
        ns = _namespace(out)
        assert sorted(ns["FUNCTIONS"]) == ["rd_add", "rd_len", "rd_noop"]
        assert result.model.function_names() == ["rd_add", "rd_len", "rd_noop"]

    def test_prototypes(self, three_project, gnu_toolchain, tmp_path):
        out = tmp_path / "bindings.py"
        generate_bindings(three_project / "three.h", [three_project], out, gnu_toolchain)
        functions = _namespace(out)["FUNCTIONS"]
        assert functions["rd_add"] == (ctypes.c_int32, [ctypes.c_int32, ctypes.c_int32], False)
        assert functions["rd_len"] == (ctypes.c_size_t, [ctypes.c_char_p], False)
        assert functions["rd_noop"] == (None, [], False)

    def test_regeneration_byte_identical(self, three_project, gnu_toolchain, tmp_path):
        out = tmp_path / "bindings.py"
        first = generate_bindings(three_project / "three.h", [three_project], out, gnu_toolchain)
        data = out.read_bytes()
        second = generate_bindings(three_project / "three.h", [three_project], out, gnu_toolchain)
        assert out.read_bytes() == data
        assert first.sha256 == second.sha256

    def test_no_tracking_by_default(self, three_project, gnu_toolchain, tmp_path):
        result = generate_bindings(
            three_project / "three.h", [three_project], tmp_path / "b.py", gnu_toolchain,
        )
        assert result.directives.is_empty()


class TestLayeredIncludes:

    @pytest.fixture
    def layered(self, tmp_path):
        src = tmp_path / "src"
        inc = tmp_path / "vendor" / "include"
        src.mkdir()
        inc.mkdir(parents=True)
        (inc / "c.h").write_text(textwrap.dedent("""\
            #ifndef C_H
            #define C_H
            typedef struct vendor_batch_t vendor_batch_t;
            #define VENDOR_MAX 64
            #endif
        """))
        (src / "api.h").write_text(textwrap.dedent("""\
            #include <stddef.h>
            #include <stdint.h>
            #include "c.h"

            typedef struct api api_t;

            struct api_result {
                char* err_msg;
                size_t err_len;
                vendor_batch_t* batch;
            };

            api_t* new_api(void* db);
            void free_api(api_t* p);
            struct api_result api_handle(api_t* p, int64_t table_id, const char* req, size_t len);
        """))
        return src, inc

    def test_vendor_declarations_emitted(self, layered, gnu_toolchain, tmp_path):
        src, inc = layered
        out = tmp_path / "out" / "bindings.py"
        generate_bindings(src / "api.h", [src, inc], out, gnu_toolchain)
        ns = _namespace(out)
        assert ns["VENDOR_MAX"] == 64
        assert ns["vendor_batch_t"] is not None
        fields = dict(ns["api_result"]._fields_)
        assert fields["batch"]._type_ is ns["vendor_batch_t"]
        _, argtypes, _ = ns["FUNCTIONS"]["api_handle"]
        assert argtypes[1] is ctypes.c_int64

    def test_track_changes(self, layered, gnu_toolchain, tmp_path):
        src, inc = layered
        result = generate_bindings(
            src / "api.h", [src, inc], tmp_path / "b.py", gnu_toolchain, track_changes=True,
        )
        watched = result.directives.rerun_if_changed
        assert watched[0] == str(src / "api.h")
        assert any(p.endswith("c.h") for p in watched)
        assert any(p.endswith("stddef.h") for p in watched)
        assert len(watched) == len(set(watched))

    def test_missing_include_fails(self, layered, gnu_toolchain, tmp_path):
        src, _ = layered
        out = tmp_path / "b.py"
        out.write_text("# stale bindings\n")
        with pytest.raises(BindingError, match="Preprocessing"):
            generate_bindings(src / "api.h", [src], out, gnu_toolchain)
        assert not out.exists()


class TestFailures:

    def test_missing_header(self, tmp_path):
        with pytest.raises(BindingError, match="Header not found"):
            generate_bindings(
                tmp_path / "nope.h", [], tmp_path / "b.py", fake_toolchain(),
            )

    def test_missing_preprocessor(self, tmp_path):
        header = tmp_path / "a.h"
        header.write_text("int a(void);\n")
        broken = ToolchainDescriptor(
            command=("definitely-not-a-compiler-xyz",),
            family=ToolchainFamily.GNU,
            version="unknown",
        )
        with pytest.raises(BindingError, match="could not run"):
            generate_bindings(header, [], tmp_path / "b.py", broken)

    def test_unwritable_output(self, three_project, gnu_toolchain, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        with pytest.raises(BindingError, match="Cannot write bindings"):
            generate_bindings(
                three_project / "three.h", [three_project], blocker / "b.py", gnu_toolchain,
            )

    def test_bad_header_syntax(self, gnu_toolchain, tmp_path):
        header = tmp_path / "bad.h"
        header.write_text("int broken(;\n")
        out = tmp_path / "b.py"
        with pytest.raises(BindingError):
            generate_bindings(header, [tmp_path], out, gnu_toolchain)
        assert not out.exists()


class TestEmptyMacros:
    """Declarations right after an empty #define survive real preprocessing."""

    def test_include_guard(self, gnu_toolchain, tmp_path):
        header = tmp_path / "guarded.h"
        header.write_text(textwrap.dedent("""\
            #ifndef GUARDED_H
            #define GUARDED_H
            int f1(void);
            int f2(void);
            int f3(void);
            #endif
        """))
        result = generate_bindings(header, [tmp_path], tmp_path / "b.py", gnu_toolchain)
        assert result.model.function_names() == ["f1", "f2", "f3"]

    def test_api_macro(self, gnu_toolchain, tmp_path):
        header = tmp_path / "api.h"
        header.write_text("#define API\nAPI int f1(void);\nint f2(void);\n")
        result = generate_bindings(header, [tmp_path], tmp_path / "b.py", gnu_toolchain)
        assert result.model.function_names() == ["f1", "f2"]

    def test_vendor_header_after_stdint(self, gnu_toolchain, tmp_path):
        inc = tmp_path / "rocksdb" / "include" / "rocksdb"
        inc.mkdir(parents=True)
        (inc / "c.h").write_text(textwrap.dedent("""\
            #include <stdint.h>
            typedef struct rocksdb_t rocksdb_t;
            rocksdb_t* rocksdb_open_stub(int64_t id);
        """))
        header = tmp_path / "engine.h"
        header.write_text('#include "c.h"\nvoid engine_close(rocksdb_t* db);\n')
        out = tmp_path / "b.py"
        result = generate_bindings(header, [tmp_path, inc], out, gnu_toolchain)
        assert result.model.function_names() == ["rocksdb_open_stub", "engine_close"]
        ns = _namespace(out)
        _, argtypes, _ = ns["FUNCTIONS"]["engine_close"]
        assert argtypes[0]._type_ is ns["rocksdb_t"]
