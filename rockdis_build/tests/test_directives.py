"""Tests for the link-directive accumulator."""
from rockdis_build.core.directives import (
    LinkDirectives,
    LinkKind,
    LinkTarget,
    SearchKind,
    SearchPath,
)


def _static(name):
    return LinkTarget(kind=LinkKind.STATIC, name=name)


class TestMerge:
    """Tests for LinkDirectives.merge()."""

    def test_order_preserved(self):
        a = LinkDirectives(link_targets=[_static("rockdis")])
        b = LinkDirectives(link_targets=[_static("rocksdb"), _static("z")])
        merged = a.merge(b)
        assert [t.name for t in merged.link_targets] == ["rockdis", "rocksdb", "z"]

    def test_first_occurrence_wins(self):
        a = LinkDirectives(
            link_targets=[_static("rocksdb")],
            search_paths=[SearchPath(kind=SearchKind.NATIVE, path="/out")],
        )
        b = LinkDirectives(
            link_targets=[_static("z"), _static("rocksdb")],
            search_paths=[SearchPath(kind=SearchKind.NATIVE, path="/out")],
        )
        merged = a.merge(b)
        assert [t.name for t in merged.link_targets] == ["rocksdb", "z"]
        assert len(merged.search_paths) == 1

    def test_kind_distinguishes_targets(self):
        a = LinkDirectives(link_targets=[_static("stdc++")])
        b = LinkDirectives(link_targets=[LinkTarget(name="stdc++")])
        assert len(a.merge(b).link_targets) == 2

    def test_merge_does_not_mutate(self):
        a = LinkDirectives(link_targets=[_static("rockdis")])
        b = LinkDirectives(rerun_if_changed=["wrapper.h"])
        a.merge(b)
        assert a.rerun_if_changed == []
        assert len(a.link_targets) == 1

    def test_empty(self):
        assert LinkDirectives().is_empty()
        assert LinkDirectives().merge(LinkDirectives()).is_empty()
        assert not LinkDirectives(rerun_if_changed=["a.h"]).is_empty()


class TestRender:

    def test_line_protocol(self):
        d = LinkDirectives(
            link_targets=[_static("rockdis"), LinkTarget(name="redisdb")],
            search_paths=[
                SearchPath(kind=SearchKind.NATIVE, path="/out"),
                SearchPath(path="/cmake-build-debug"),
            ],
            rerun_if_changed=["wrapper.h"],
        )
        assert d.to_lines() == [
            "link-lib=static=rockdis",
            "link-lib=default=redisdb",
            "link-search=native=/out",
            "link-search=all=/cmake-build-debug",
            "rerun-if-changed=wrapper.h",
        ]

    def test_linker_args(self):
        d = LinkDirectives(
            link_targets=[_static("rockdis"), LinkTarget(name="stdc++")],
            search_paths=[SearchPath(kind=SearchKind.NATIVE, path="/out")],
        )
        assert d.linker_args() == [
            "-L/out",
            "-Wl,-Bstatic", "-lrockdis", "-Wl,-Bdynamic",
            "-lstdc++",
        ]

    def test_json_roundtrip_shape(self):
        d = LinkDirectives(link_targets=[_static("z")])
        dumped = d.model_dump(mode="json")
        assert dumped["link_targets"] == [{"kind": "static", "name": "z"}]
