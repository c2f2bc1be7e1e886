from conftest import Database

from agor_isolation.db.models import OthersFsAccess


def test_load_snapshot(db: Database) -> None:
    db.user("u2", "bob")
    db.user("u1", "alice")
    db.user("u3", None)
    db.user("u4", "  ")
    db.repo("r1", local_path="/repos/r1")
    db.worktree("w1", "r1", others_fs_access=None, path="/wt/w1", owners=("u1", "u3"))
    db.worktree("w2", "r1", others_fs_access="none", owners=("u1",))

    snapshot = db.store.load_snapshot()

    assert [u.unix_username for u in snapshot.users] == ["alice", "bob"]
    assert snapshot.repos[0].local_path == "/repos/r1"
    assert snapshot.repos[0].unix_group is None
    w1, w2 = snapshot.worktrees
    assert w1.path == "/wt/w1"
    assert w1.others_fs_access is OthersFsAccess.READ
    assert w2.others_fs_access is OthersFsAccess.NONE
    assert w2.path is None
    # Ownerships of users without a Unix username are not loaded
    assert [(o.user_id, o.worktree.worktree_id) for o in snapshot.ownerships] == [
        ("u1", "w1"),
        ("u1", "w2"),
    ]
    assert db.store.reads == 1


def test_unrecognised_policy_loads_verbatim(db: Database) -> None:
    db.user("u1", "alice")
    db.repo("r1")
    db.worktree("w1", "r1", others_fs_access="", owners=("u1",))
    db.worktree("w2", "r1", others_fs_access="READ", owners=("u1",))

    w1, w2 = db.store.load_snapshot().worktrees

    assert w1.others_fs_access is OthersFsAccess.READ
    assert w2.others_fs_access == "READ"
    assert not isinstance(w2.others_fs_access, OthersFsAccess)
    assert len(db.store.load_snapshot().ownerships) == 2


def test_empty_database(db: Database) -> None:
    snapshot = db.store.load_snapshot()

    assert snapshot.users == ()
    assert snapshot.ownerships == ()


def test_assign_repo_group_is_write_once(db: Database) -> None:
    db.repo("r1")

    assert db.store.assign_repo_group("r1", "agor_rp_first") == "agor_rp_first"
    assert db.store.assign_repo_group("r1", "agor_rp_second") == "agor_rp_first"
    assert db.repo_group("r1") == "agor_rp_first"


def test_assign_worktree_group_keeps_existing_value(db: Database) -> None:
    db.repo("r1")
    db.worktree("w1", "r1", unix_group="legacy_team")

    assert db.store.assign_worktree_group("w1", "agor_wt_new") == "legacy_team"
    assert db.worktree_group("w1") == "legacy_team"
