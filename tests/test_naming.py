import uuid

import pytest

from agor_isolation.errors import InvalidUnixNameError
from agor_isolation.naming import (
    GroupNamespace,
    is_valid_unix_name,
    looks_like_managed_group,
    looks_like_managed_user,
    parse_repo_group_name,
    parse_worktree_group_name,
    repo_group_name,
    short_id,
    unix_username_for_user,
    validate_unix_name,
    worktree_group_name,
)

UUID = "03b62447-f2c4-4d8e-9a1b-5c3d2e1f0a9b"


def test_uuid_keeps_leading_hex_digits() -> None:
    assert short_id(UUID) == "03b62447"
    assert short_id(UUID.upper()) == "03b62447"
    assert worktree_group_name(UUID) == "agor_wt_03b62447"
    assert repo_group_name(UUID) == "agor_rp_03b62447"
    assert unix_username_for_user(UUID) == "agor_03b62447"


def test_non_hex_ids_hash_to_stable_short_ids() -> None:
    first = short_id("w1")
    assert first == short_id("w1")
    assert len(first) == 8
    assert int(first, 16) >= 0
    assert short_id("w1") != short_id("w2")
    assert looks_like_managed_group(worktree_group_name("w1"), GroupNamespace.WORKTREE)


def test_parse_group_names() -> None:
    assert parse_worktree_group_name("agor_wt_03b62447") == "03b62447"
    assert parse_repo_group_name("agor_rp_03b62447") == "03b62447"
    assert parse_worktree_group_name("agor_rp_03b62447") is None
    assert parse_worktree_group_name("agor_wt_team") is None


@pytest.mark.parametrize(
    ("name", "namespace", "expected"),
    [
        ("agor_wt_deadbeef", GroupNamespace.WORKTREE, True),
        ("agor_rp_deadbeef", GroupNamespace.REPO, True),
        ("agor_rp_deadbeef", GroupNamespace.WORKTREE, False),
        ("agor_wt_team", GroupNamespace.WORKTREE, False),
        ("agor_wt_0123456789", GroupNamespace.WORKTREE, False),
        ("agor_wt_DEADBEEF", GroupNamespace.WORKTREE, False),
        ("ops-team", GroupNamespace.WORKTREE, False),
        ("agor_users", GroupNamespace.REPO, False),
    ],
)
def test_looks_like_managed_group(name: str, namespace: GroupNamespace, expected: bool) -> None:
    assert looks_like_managed_group(name, namespace) is expected


def test_looks_like_managed_user() -> None:
    assert looks_like_managed_user("agor_deadbeef")
    assert not looks_like_managed_user("agor_daemon")
    assert not looks_like_managed_user("agor_users")
    assert not looks_like_managed_user("alice")


def test_validate_unix_name() -> None:
    assert validate_unix_name("agor_wt_03b62447") == "agor_wt_03b62447"
    for good in ("ops-team", "John", "svc.build", "x" * 32):
        assert is_valid_unix_name(good)
    for bad in ("", "-rf", "a b", "a:b", "x" * 33, "../etc", "..", "alice\n", "a\tb"):
        assert not is_valid_unix_name(bad)
    with pytest.raises(InvalidUnixNameError):
        validate_unix_name("--help")


def test_derived_names_do_not_collide() -> None:
    ids = [str(uuid.uuid5(uuid.NAMESPACE_URL, str(i))) for i in range(1500)]
    ids += [f"wt-{i}" for i in range(1500)]

    for derive, namespace in (
        (worktree_group_name, GroupNamespace.WORKTREE),
        (repo_group_name, GroupNamespace.REPO),
    ):
        names = {derive(entity_id) for entity_id in ids}
        assert len(names) == len(ids)
        assert all(looks_like_managed_group(name, namespace) for name in names)

    worktree_groups = {worktree_group_name(entity_id) for entity_id in ids}
    assert worktree_groups.isdisjoint(repo_group_name(entity_id) for entity_id in ids)
