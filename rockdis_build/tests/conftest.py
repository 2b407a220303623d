"""
Test fixtures for rockdis_build.

Provides sample headers, C++ units and hand-written preprocessor output
(mimics ``cc -x c -E -dD``) so the parser can be tested without a compiler.
"""
from __future__ import annotations

import shutil
import subprocess
import tempfile
import textwrap
from pathlib import Path

import pytest

from rockdis_build.core.header_parser import parse_header, split_linemarkers
from rockdis_build.core.toolchain import (
    ToolchainDescriptor,
    ToolchainFamily,
    clear_toolchain_cache,
    detect_toolchain,
)


# ── Hand-written preprocessor output ─────────────────────────────────────────

HEADER_PATH = "/proj/include/api.h"
INCLUDE_DIR = "/proj/include"

API_PREPROCESSED = textwrap.dedent("""\
    # 1 "/proj/include/api.h"
    # 1 "<built-in>"
    #define __STDC__ 1
    #define __GNUC__ 12
    # 1 "<command-line>"
    # 1 "/usr/include/stdint.h" 1 3 4
    typedef unsigned long sys_size_t;
    typedef struct { int quot; int rem; } div_t;
    int sys_only(int x);
    #define SYS_LIMIT 99
    # 2 "/proj/include/api.h" 2

    #define RD_VERSION 3
    #define RD_MASK 0xff
    #define RD_NEG (-1)
    #define RD_RATIO 0.5
    #define RD_NAME "rockdis"
    #define RD_MACRO_FN(x) ((x) + 1)
    #define RD_EXPR (RD_VERSION + 1)
    #define RD_GONE 1
    #undef RD_GONE

    typedef struct rd_handle rd_handle_t;

    typedef enum {
        RD_OK,
        RD_ERR = 5,
        RD_NEXT,
        RD_FLAG = 1 << 3,
        RD_COMBO = RD_ERR | RD_FLAG
    } rd_status;

    struct rd_point {
        int x;
        int y;
    };

    typedef struct {
        unsigned int ready : 1;
        unsigned int mode : 3;
        unsigned int rest : 28;
    } rd_flags;

    union rd_value {
        long long i;
        double d;
    };

    struct rd_result {
        char* err_msg;
        size_t err_len;
        const char* name;
        struct rd_point points[RD_NEXT];
        rd_handle_t* handle;
    };

    typedef void (*rd_callback)(int code, void* ctx);

    rd_handle_t* rd_open(const char* path, sys_size_t len);
    void rd_close(rd_handle_t* h);
    int rd_format(char* buf, const char* fmt, ...);
    int rd_count(void);
    void rd_visit(rd_handle_t* h, rd_callback cb, void* ctx);
    struct rd_point rd_origin(void);
    rd_status rd_status_of(rd_handle_t* h);
    static int rd_hidden(int x) { return x; }
    static inline int rd_inline(int x) { return x + 1; }
    extern int rd_debug_level;
""")


def preprocessed(text: str):
    """Split hand-written preprocessor output the way the real pipeline does."""
    return split_linemarkers(text)


def parse_api(text: str = API_PREPROCESSED):
    return parse_header(preprocessed(text), Path(HEADER_PATH), [Path(INCLUDE_DIR)])


@pytest.fixture
def api_model():
    """Declaration model for API_PREPROCESSED."""
    return parse_api()


# ── Real sources (compiled with g++) ─────────────────────────────────────────

THREE_H = textwrap.dedent("""\
    #ifndef THREE_H
    #define THREE_H
    #include <stdint.h>
    #include <stddef.h>

    #ifdef __cplusplus
    extern "C" {
    #endif

    int32_t rd_add(int32_t a, int32_t b);
    size_t rd_len(const char* s);
    void rd_noop(void);

    #ifdef __cplusplus
    }
    #endif
    #endif
""")

THREE_UNITS = {
    "add.cc": textwrap.dedent("""\
        #include "three.h"
        int32_t rd_add(int32_t a, int32_t b) { return a + b; }
    """),
    "len.cc": textwrap.dedent("""\
        #include <string>
        #include "three.h"
        size_t rd_len(const char* s) { return std::string(s).size(); }
    """),
    "noop.cc": textwrap.dedent("""\
        #include "three.h"
        void rd_noop(void) {}
    """),
}

CONSUMER_CC = textwrap.dedent("""\
    #include "three.h"
    int main() {
        rd_noop();
        return (int)(rd_add(1, 2) + rd_len("abc")) - 6;
    }
""")


@pytest.fixture
def three_project(tmp_path: Path) -> Path:
    """A directory holding three.h, three single-function units and a consumer."""
    proj = tmp_path / "three"
    proj.mkdir()
    (proj / "three.h").write_text(THREE_H)
    for name, text in THREE_UNITS.items():
        (proj / name).write_text(text)
    (proj / "main.cc").write_text(CONSUMER_CC)
    return proj


# ── Toolchain fixtures ───────────────────────────────────────────────────────

def fake_toolchain(family: ToolchainFamily = ToolchainFamily.GNU) -> ToolchainDescriptor:
    """A toolchain descriptor that never needs a real compiler."""
    command = {
        ToolchainFamily.GNU: ("g++",),
        ToolchainFamily.CLANG: ("clang++",),
        ToolchainFamily.UNSUPPORTED: ("cl.exe",),
    }[family]
    return ToolchainDescriptor(command=command, family=family, version="fake 1.0")


def _gxx_available() -> bool:
    """Check if g++ is in PATH."""
    return shutil.which("g++") is not None


def _gxx_produces_elf() -> bool:
    """Test if g++ produces ELF objects (Linux/WSL) rather than PE/Mach-O."""
    if not _gxx_available():
        return False

    with tempfile.TemporaryDirectory() as tmpdir:
        src = Path(tmpdir) / "probe.cc"
        obj = Path(tmpdir) / "probe.o"
        src.write_text("extern \"C\" int probe() { return 0; }\n")
        try:
            subprocess.run(
                ["g++", "-c", str(src), "-o", str(obj)],
                check=True,
                capture_output=True,
                timeout=30,
            )
        except (subprocess.SubprocessError, OSError):
            return False
        return obj.exists() and obj.read_bytes()[:4] == b"\x7fELF"


@pytest.fixture(scope="session")
def gxx_ok():
    """Skip tests if g++ is not available or doesn't produce ELF objects."""
    if not _gxx_available():
        pytest.skip("g++ not available - install g++ to run these tests")
    if not _gxx_produces_elf():
        pytest.skip("g++ does not produce ELF objects (likely macOS or native Windows)")


@pytest.fixture
def gnu_toolchain(gxx_ok) -> ToolchainDescriptor:
    """The real g++ toolchain, detected fresh for each test."""
    clear_toolchain_cache()
    return detect_toolchain(["g++"])


@pytest.fixture(autouse=True)
def _fresh_toolchain_cache():
    clear_toolchain_cache()
    yield
    clear_toolchain_cache()
