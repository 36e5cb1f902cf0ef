from __future__ import annotations

import random

import pytest

from release_stats.errors import ParseError
from release_stats.version import VersionIdentity, compare


def test_tag_and_archive_name_give_same_identity() -> None:
    assert VersionIdentity.parse_from_tag("v5.10") == VersionIdentity.parse_from_archive_name("linux-5.10.tar.xz")
    assert VersionIdentity.parse_from_tag("v2.6.12") == VersionIdentity.parse_from_archive_name(
        "https://mirrors.kernel.org/pub/linux/kernel/v2.6/linux-2.6.12.tar.bz2"
    )
    assert VersionIdentity.parse_from_tag("refs/tags/v3.0") == VersionIdentity.parse_from_archive_name("linux-3.0.0.tgz")
    assert VersionIdentity.parse_from_archive_name("v1.1.0.tar.gz") == VersionIdentity.parse("1.1")


def test_missing_patch_defaults_to_zero() -> None:
    v = VersionIdentity.parse("5.10")
    assert v.release == (5, 10, 0)
    assert v == VersionIdentity.parse("5.10.0")
    assert str(v) == "5.10"
    assert str(VersionIdentity.parse("2.6.11")) == "2.6.11"
    assert str(VersionIdentity.parse("2.6.11.0")) == "2.6.11"
    assert VersionIdentity.parse("2.6.11.1").release == (2, 6, 11, 1)


def test_canonical_text_parses_back() -> None:
    for text in ["1.0", "0.95a", "0.96c-pl1", "2.6.12-rc2", "2.4-pre3", "2.6.11.12"]:
        v = VersionIdentity.parse(text)
        assert VersionIdentity.parse(str(v)) == v
        assert str(v) == text


def test_numeric_not_string_ordering() -> None:
    assert VersionIdentity.parse("2.6.9") < VersionIdentity.parse("2.6.10")
    assert VersionIdentity.parse("0.02") < VersionIdentity.parse("0.10")
    assert VersionIdentity.parse("4.20") < VersionIdentity.parse("5.0")


def test_prerelease_sorts_before_release() -> None:
    rc1 = VersionIdentity.parse_from_tag("v2.6.12-rc1")
    rc2 = VersionIdentity.parse_from_tag("v2.6.12-rc2")
    pre = VersionIdentity.parse("2.6.12-pre1")
    final = VersionIdentity.parse_from_tag("v2.6.12")
    assert pre < rc1 < rc2 < final < VersionIdentity.parse("2.6.12.1")
    assert rc1.is_prerelease
    assert not final.is_prerelease


def test_letter_and_patchlevel_sort_after_base() -> None:
    assert VersionIdentity.parse("0.95") < VersionIdentity.parse("0.95a") < VersionIdentity.parse("0.95c")
    assert VersionIdentity.parse("0.96c") < VersionIdentity.parse("0.96c-pl1") < VersionIdentity.parse("0.97")


def test_compare() -> None:
    a = VersionIdentity.parse("3.0")
    b = VersionIdentity.parse("3.1")
    assert compare(a, b) == -1
    assert compare(b, a) == 1
    assert compare(a, VersionIdentity.parse_from_tag("v3.0.0")) == 0


def test_sorting_is_total_for_any_input_order() -> None:
    texts = ["0.01", "0.95a", "1.0", "1.2.0", "2.6.11", "2.6.12-rc2", "2.6.12", "3.0", "5.10", "6.1-rc1"]
    expected = [VersionIdentity.parse(t) for t in texts]
    shuffled = list(expected)
    random.Random(7).shuffle(shuffled)
    assert sorted(shuffled) == expected


@pytest.mark.parametrize("tag", ["v2.6.11-tree", "latest", "", "vX.Y"])
def test_unparseable_tags_raise(tag: str) -> None:
    with pytest.raises(ParseError):
        VersionIdentity.parse_from_tag(tag)


@pytest.mark.parametrize("name", ["linux-2.6.0.zip", "patch-2.6.1.gz", "linux-next.tar.gz", "README"])
def test_unparseable_archive_names_raise(name: str) -> None:
    with pytest.raises(ParseError):
        VersionIdentity.parse_from_archive_name(name)
