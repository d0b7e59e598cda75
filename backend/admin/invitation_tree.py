"""
Invitation tree: who invited whom, for admin auditing.

The walk follows `invited_by` back-references downward. It is bounded by
`max_depth` so an accidental cycle in the data (A invited B, B "invited" A)
cannot recurse forever; additionally a user never appears twice on the same
root-to-leaf path.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from records.models import User
from records.repo import RecordsRepo

DEFAULT_MAX_DEPTH = 5


@dataclass
class InvitationNode:
    id: str
    name: str
    email: str
    role: str
    joined_at: datetime
    invitees: List["InvitationNode"] = field(default_factory=list)

    def size(self) -> int:
        return 1 + sum(child.size() for child in self.invitees)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "joined_at": self.joined_at.isoformat(),
            "invitees": [child.to_dict() for child in self.invitees],
        }


def _node(user: User) -> InvitationNode:
    return InvitationNode(id=user.id, name=user.full_name, email=user.email, role=user.role, joined_at=user.created_at)


def _walk(repo: RecordsRepo, user: User, depth: int, max_depth: int, path: FrozenSet[str]) -> Optional[InvitationNode]:
    if depth > max_depth:
        return None
    node = _node(user)
    on_path = path | {user.id}
    for invitee in repo.list_invitees(user.id):
        if invitee.id in on_path:
            continue
        child = _walk(repo, invitee, depth + 1, max_depth, on_path)
        if child is not None:
            node.invitees.append(child)
    return node


def build_invitation_tree(repo: RecordsRepo, user_id: str, max_depth: int = DEFAULT_MAX_DEPTH) -> Optional[InvitationNode]:
    """Return the tree rooted at `user_id` (depth 0), or None if the user is missing."""
    if max_depth < 0:
        raise ValueError("invalid_max_depth")
    user = repo.get_user(user_id)
    if user is None:
        return None
    return _walk(repo, user, 0, max_depth, frozenset())


def build_invitation_forest(repo: RecordsRepo, max_depth: int = DEFAULT_MAX_DEPTH) -> List[InvitationNode]:
    """One tree per root: users without an inviter or whose inviter is gone.

    Unclaimed profiles never joined and are not part of the forest.
    """
    users = [u for u in repo.list_users() if not u.is_unclaimed]
    known = {u.id for u in users}
    roots = [u for u in users if not u.invited_by or u.invited_by not in known]
    roots.sort(key=lambda u: u.created_at)
    forest = []
    for root in roots:
        tree = build_invitation_tree(repo, root.id, max_depth)
        if tree is not None:
            forest.append(tree)
    return forest


__all__ = ["DEFAULT_MAX_DEPTH", "InvitationNode", "build_invitation_tree", "build_invitation_forest"]
