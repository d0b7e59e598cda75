"""
Invitation tree: depth-bounded walk over `invited_by` back-references.
"""
from __future__ import annotations

import pytest

from admin.invitation_tree import build_invitation_forest, build_invitation_tree  # type: ignore
from records.repo_memory import InMemoryRecordsRepo  # type: ignore

from utils.seed import make_admin, make_unclaimed, make_user, utc


@pytest.fixture
def mem_repo():
    return InMemoryRecordsRepo()


def _chain(repo, length):
    """root -> u1 -> u2 -> ... ; returns the users in order."""
    users = [make_admin(repo, "root@wustl.edu", created_at=utc(2020))]
    for i in range(1, length):
        users.append(
            make_user(repo, f"u{i}@wustl.edu", first=f"U{i}", last="Chain", invited_by=users[-1].id, created_at=utc(2020 + i))
        )
    return users


def _depth(node):
    return 1 + max((_depth(c) for c in node.invitees), default=0)


def test_tree_nests_invitees(mem_repo):
    root = make_admin(mem_repo)
    a = make_user(mem_repo, "a@wustl.edu", first="A", last="One", invited_by=root.id, created_at=utc(2021))
    b = make_user(mem_repo, "b@wustl.edu", first="B", last="Two", invited_by=root.id, created_at=utc(2022))
    make_user(mem_repo, "c@wustl.edu", first="C", last="Three", invited_by=a.id)

    tree = build_invitation_tree(mem_repo, root.id)
    assert [n.id for n in tree.invitees] == [a.id, b.id]
    assert len(tree.invitees[0].invitees) == 1
    assert tree.size() == 4
    data = tree.to_dict()
    assert data["invitees"][0]["email"] == "a@wustl.edu"
    assert data["joined_at"]


def test_depth_is_bounded(mem_repo):
    users = _chain(mem_repo, 9)
    assert _depth(build_invitation_tree(mem_repo, users[0].id)) == 6  # depths 0..5
    assert _depth(build_invitation_tree(mem_repo, users[0].id, max_depth=2)) == 3
    assert build_invitation_tree(mem_repo, users[0].id, max_depth=0).invitees == []


def test_cycle_terminates(mem_repo):
    a = make_user(mem_repo, "a@wustl.edu", first="A", last="One")
    b = make_user(mem_repo, "b@wustl.edu", first="B", last="Two", invited_by=a.id)
    mem_repo.update_user(a.id, invited_by=b.id)

    tree = build_invitation_tree(mem_repo, a.id)
    assert tree.size() == 2
    assert tree.invitees[0].id == b.id
    assert tree.invitees[0].invitees == []


def test_missing_user_and_negative_depth(mem_repo):
    assert build_invitation_tree(mem_repo, "missing") is None
    root = make_admin(mem_repo)
    with pytest.raises(ValueError):
        build_invitation_tree(mem_repo, root.id, max_depth=-1)


def test_forest_roots_exclude_unclaimed_and_orphans_become_roots(mem_repo):
    first = make_admin(mem_repo, created_at=utc(2020))
    make_user(mem_repo, "child@wustl.edu", first="Chi", last="Ld", invited_by=first.id, created_at=utc(2021))
    orphan = make_user(mem_repo, "orphan@wustl.edu", first="Or", last="Phan", invited_by="deleted-user", created_at=utc(2022))
    make_unclaimed(mem_repo, "Un", "Claimed")

    forest = build_invitation_forest(mem_repo)
    assert [t.id for t in forest] == [first.id, orphan.id]
    assert sum(t.size() for t in forest) == 3
