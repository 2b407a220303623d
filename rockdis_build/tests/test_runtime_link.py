"""Tests for the runtime-linkage resolver (subprocess stubbed)."""
import logging
import subprocess

import pytest

from conftest import fake_toolchain
from rockdis_build.core import runtime_link
from rockdis_build.core.runtime_link import (
    FallbackReason,
    RuntimeLinkOutcome,
    resolve_runtime_link,
    strip_library_decoration,
)
from rockdis_build.core.toolchain import ToolchainFamily

GCC_LIBDIR = "/usr/lib/gcc/x86_64-linux-gnu/12"


def _stub_run(monkeypatch, stdout=b"", returncode=0, exc=None):
    """Replace subprocess.run in the resolver; returns the recorded calls."""
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if exc is not None:
            raise exc
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=b"")

    monkeypatch.setattr(runtime_link.subprocess, "run", fake_run)
    return calls


class TestStaticOutcomes:

    def test_gnu_static(self, monkeypatch):
        calls = _stub_run(monkeypatch, stdout=f"{GCC_LIBDIR}/libstdc++.a\n".encode())
        d = resolve_runtime_link(fake_toolchain(ToolchainFamily.GNU))

        assert calls == [["g++", "-print-file-name=libstdc++.a"]]
        assert d.outcome == RuntimeLinkOutcome.GNU_STATIC
        assert d.is_static
        assert d.library == "stdc++"
        assert d.search_dir == GCC_LIBDIR
        assert d.directives().to_lines() == [
            "link-lib=static=stdc++",
            f"link-search=native={GCC_LIBDIR}",
        ]

    def test_clang_static(self, monkeypatch):
        calls = _stub_run(monkeypatch, stdout=b"/usr/lib/llvm-15/lib/libc++.a\n")
        d = resolve_runtime_link(fake_toolchain(ToolchainFamily.CLANG))

        assert calls == [["clang++", "-print-file-name=libc++.a"]]
        assert d.outcome == RuntimeLinkOutcome.CLANG_STATIC
        assert d.library == "c++"
        assert d.search_dir == "/usr/lib/llvm-15/lib"


class TestFallback:

    def test_unsupported_never_queries(self, monkeypatch):
        calls = _stub_run(monkeypatch, stdout=b"/x/libstdc++.a")
        d = resolve_runtime_link(fake_toolchain(ToolchainFamily.UNSUPPORTED))

        assert calls == []
        assert d.outcome == RuntimeLinkOutcome.DYNAMIC_DEFAULT
        assert d.reason == FallbackReason.UNSUPPORTED_TOOLCHAIN
        assert d.directives().is_empty()

    def test_relative_path(self, monkeypatch):
        # gcc echoes the bare name when it cannot find the archive
        _stub_run(monkeypatch, stdout=b"libstdc++.a\n")
        d = resolve_runtime_link(fake_toolchain())
        assert d.outcome == RuntimeLinkOutcome.DYNAMIC_DEFAULT
        assert d.reason == FallbackReason.RELATIVE_PATH
        assert d.directives().is_empty()

    def test_nonzero_exit(self, monkeypatch):
        _stub_run(monkeypatch, stdout=f"{GCC_LIBDIR}/libstdc++.a".encode(), returncode=1)
        d = resolve_runtime_link(fake_toolchain())
        assert d.outcome == RuntimeLinkOutcome.DYNAMIC_DEFAULT
        assert d.reason == FallbackReason.QUERY_FAILED

    def test_empty_output(self, monkeypatch):
        _stub_run(monkeypatch, stdout=b"  \n")
        d = resolve_runtime_link(fake_toolchain())
        assert d.reason == FallbackReason.EMPTY_OUTPUT

    def test_undecodable_output(self, monkeypatch):
        _stub_run(monkeypatch, stdout=b"/usr/lib/\xff\xfe/libstdc++.a")
        d = resolve_runtime_link(fake_toolchain())
        assert d.reason == FallbackReason.UNDECODABLE_PATH

    def test_spawn_failure(self, monkeypatch):
        _stub_run(monkeypatch, exc=FileNotFoundError("g++"))
        d = resolve_runtime_link(fake_toolchain())
        assert d.reason == FallbackReason.QUERY_FAILED

    def test_timeout(self, monkeypatch):
        _stub_run(monkeypatch, exc=subprocess.TimeoutExpired(["g++"], 30))
        d = resolve_runtime_link(fake_toolchain(), timeout=30)
        assert d.reason == FallbackReason.QUERY_FAILED
        assert "timed out" in d.detail

    def test_fallback_is_logged(self, monkeypatch, caplog):
        _stub_run(monkeypatch, stdout=b"libstdc++.a")
        with caplog.at_level(logging.WARNING, logger="rockdis_build.core.runtime_link"):
            resolve_runtime_link(fake_toolchain())
        assert "falling back to dynamic linkage" in caplog.text
        assert "RELATIVE_PATH" in caplog.text

    @pytest.mark.parametrize("family", list(ToolchainFamily))
    @pytest.mark.parametrize("stdout,returncode", [
        (b"/abs/libx.a", 0),
        (b"libx.a", 0),
        (b"", 0),
        (b"\xff", 0),
        (b"/abs/libx.a", 2),
    ])
    def test_never_raises(self, monkeypatch, family, stdout, returncode):
        _stub_run(monkeypatch, stdout=stdout, returncode=returncode)
        d = resolve_runtime_link(fake_toolchain(family))
        assert d.outcome in set(RuntimeLinkOutcome)
        assert d.is_static == (d.reason is None)


class TestLibraryNames:
    """Tests for strip_library_decoration()."""

    @pytest.mark.parametrize("name,bare", [
        ("libstdc++.a", "stdc++"),
        ("libc++.a", "c++"),
        ("librockdis.a", "rockdis"),
        ("rockdis", "rockdis"),
        ("stdc++", "stdc++"),
        ("lib.a", "lib.a"),
        ("libfoo.so", "libfoo.so"),
    ])
    def test_strip(self, name, bare):
        assert strip_library_decoration(name) == bare

    @pytest.mark.parametrize("name", ["libstdc++.a", "libc++.a", "liblibx.a.a", "rockdis"])
    def test_idempotent(self, name):
        once = strip_library_decoration(name)
        assert strip_library_decoration(once) == once
