"""
Salesperson agent forest: agent codes, invitations and acceptance.

Invariants kept here:
  - parent links form a forest (no cycles),
  - level(child) == level(parent) + 1,
  - children_count(p) == number of rows with parent_id == p,
  - no node deeper than ``max_level``.

Cycle and depth checks walk the accepter's subtree through a
``HierarchyReader`` so they can be exercised against an in-memory tree.
"""
import logging
from collections import deque
from datetime import timedelta
from typing import Dict, Iterable, List, Tuple

from sqlalchemy import func, or_, select

from extensions import db, unit_of_work, conditional_update, increment
from licensing.errors import IntegrityViolation, InvalidState, NotFound, ValidationError
from models import InvitationStatus, Salesperson, SalespersonAgentInvitation
from utils import clean_str, utc_now, validate_email, validate_phone

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 10


class HierarchyReader:
    """Read access to the parent -> children relation."""

    def children_of(self, salesperson_id) -> List[int]:
        raise NotImplementedError


class SqlHierarchyReader(HierarchyReader):

    def children_of(self, salesperson_id) -> List[int]:
        stmt = select(Salesperson.id).where(Salesperson.parent_id == salesperson_id)
        return list(db.session.scalars(stmt))


class DictHierarchyReader(HierarchyReader):
    """Reader over a plain ``{parent_id: [child_id, ...]}`` mapping."""

    def __init__(self, children: Dict[int, Iterable[int]]):
        self._children = {parent: list(kids) for parent, kids in children.items()}

    def children_of(self, salesperson_id) -> List[int]:
        return list(self._children.get(salesperson_id, ()))


def notify_invitation(invitation):
    """Delivery is out of scope; record that an invitation is ready to send."""
    logger.info("Invitation %s ready for %s", invitation.invite_code,
                invitation.email or invitation.phone)


class AgentHierarchy:

    def __init__(self, code_generator, clock=utc_now, max_level=5,
                 invitation_ttl=timedelta(days=7), reader: HierarchyReader = None):
        self.codes = code_generator
        self.clock = clock
        self.max_level = max_level
        self.invitation_ttl = invitation_ttl
        self.reader = reader or SqlHierarchyReader()

    def _salesperson(self, salesperson_id) -> Salesperson:
        salesperson = db.session.get(Salesperson, salesperson_id)
        if salesperson is None:
            raise NotFound(f"Salesperson {salesperson_id} not found")
        return salesperson

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------
    def descendants(self, root_id) -> List[Tuple[int, int]]:
        """
        Breadth-first ``(id, depth)`` pairs below ``root_id``.

        Bounded by ``max_level + 1`` hops and a visited set, so corrupted
        data cannot make it loop.
        """
        found = []
        visited = {root_id}
        queue = deque([(root_id, 0)])
        while queue:
            node_id, depth = queue.popleft()
            if depth > self.max_level:
                continue
            for child_id in self.reader.children_of(node_id):
                if child_id in visited:
                    continue
                visited.add(child_id)
                found.append((child_id, depth + 1))
                queue.append((child_id, depth + 1))
        return found

    def would_create_cycle(self, inviter_id, accepter_id) -> bool:
        """True if attaching accepter under inviter closes a loop."""
        if inviter_id == accepter_id:
            return True
        return any(node_id == inviter_id for node_id, _ in self.descendants(accepter_id))

    # ------------------------------------------------------------------
    # Agent code
    # ------------------------------------------------------------------
    def generate_agent_code(self, salesperson_id) -> str:
        salesperson = self._salesperson(salesperson_id)
        if salesperson.agent_code:
            return salesperson.agent_code

        with unit_of_work() as session:
            code = None
            for _ in range(MAX_CODE_ATTEMPTS):
                candidate = self.codes.agent_code()
                if not Salesperson.query.filter_by(agent_code=candidate).first():
                    code = candidate
                    break
            if code is None:
                raise IntegrityViolation("Could not generate a unique agent code")
            conditional_update(
                Salesperson,
                Salesperson.id == salesperson_id,
                Salesperson.agent_code.is_(None),
                agent_code=code,
            )
            session.expire(salesperson, ["agent_code"])

        # a concurrent request may have assigned one first; either way return the stored code
        logger.info("Agent code for salesperson %s is %s", salesperson_id, salesperson.agent_code)
        return salesperson.agent_code

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------
    def create_invitation(self, inviter_id, email=None, phone=None) -> SalespersonAgentInvitation:
        email = clean_str(email, "email") or None
        phone = clean_str(phone, "phone") or None
        if not email and not phone:
            raise ValidationError("Provide an email or a phone number")
        if email and not validate_email(email):
            raise ValidationError("Invalid email format")
        if phone and not validate_phone(phone):
            raise ValidationError("Phone must be 5-15 digits")

        now = self.clock()
        with unit_of_work() as session:
            self._salesperson(inviter_id)

            same_contact = []
            if email:
                same_contact.append(SalespersonAgentInvitation.email == email)
            if phone:
                same_contact.append(SalespersonAgentInvitation.phone == phone)
            existing = SalespersonAgentInvitation.query.filter(
                SalespersonAgentInvitation.status == InvitationStatus.PENDING.value,
                SalespersonAgentInvitation.expires_at > now,
                or_(*same_contact),
            ).first()
            if existing:
                raise InvalidState("A pending invitation already exists for this contact")

            invitation = SalespersonAgentInvitation(
                inviter_id=inviter_id,
                invite_code=self._unique_invite_code(),
                email=email,
                phone=phone,
                status=InvitationStatus.PENDING.value,
                expires_at=now + self.invitation_ttl,
            )
            session.add(invitation)

        logger.info("Invitation %s created by salesperson %s", invitation.id, inviter_id)
        notify_invitation(invitation)
        return invitation

    def _unique_invite_code(self):
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self.codes.invite_code()
            if not SalespersonAgentInvitation.query.filter_by(invite_code=code).first():
                return code
        raise IntegrityViolation("Could not generate a unique invite code")

    def invitations_for(self, inviter_id, status=None):
        query = SalespersonAgentInvitation.query.filter_by(inviter_id=inviter_id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(SalespersonAgentInvitation.id.desc()).all()

    def _expire(self, invitation):
        with unit_of_work():
            conditional_update(
                SalespersonAgentInvitation,
                SalespersonAgentInvitation.id == invitation.id,
                SalespersonAgentInvitation.status == InvitationStatus.PENDING.value,
                status=InvitationStatus.EXPIRED.value,
            )
        logger.info("Invitation %s marked expired", invitation.invite_code)

    def accept_invitation(self, invite_code, accepter_id) -> Salesperson:
        """
        Attach ``accepter_id`` under the invitation's inviter.

        Parent link, levels of the moved subtree, the inviter's
        children_count and the invitation status change commit together.
        """
        if not invite_code:
            raise ValidationError("invite_code is required")
        now = self.clock()

        invitation = SalespersonAgentInvitation.query.filter_by(
            invite_code=invite_code, status=InvitationStatus.PENDING.value
        ).first()
        if invitation is None:
            raise NotFound("Invitation not found or no longer pending")

        if invitation.is_expired(now):
            self._expire(invitation)
            raise InvalidState("Invitation has expired")

        with unit_of_work() as session:
            inviter = self._salesperson(invitation.inviter_id)
            accepter = self._salesperson(accepter_id)

            if accepter.parent_id is not None:
                raise InvalidState("Salesperson already has an upline")
            if inviter.level >= self.max_level:
                raise IntegrityViolation("Inviter is already at the maximum agent level")

            subtree = self.descendants(accepter.id)
            if inviter.id == accepter.id or any(node_id == inviter.id for node_id, _ in subtree):
                raise IntegrityViolation("Accepting would create a cycle in the agent tree")

            new_level = inviter.level + 1
            deepest = max((depth for _, depth in subtree), default=0)
            if new_level + deepest > self.max_level:
                raise IntegrityViolation("Accepting would exceed the maximum agent level")

            linked = conditional_update(
                Salesperson,
                Salesperson.id == accepter.id,
                Salesperson.parent_id.is_(None),
                parent_id=inviter.id,
                level=new_level,
            )
            if linked != 1:
                raise InvalidState("Salesperson already has an upline")

            self._relevel(subtree, new_level)
            increment(Salesperson, inviter.id, children_count=1)

            claimed = conditional_update(
                SalespersonAgentInvitation,
                SalespersonAgentInvitation.id == invitation.id,
                SalespersonAgentInvitation.status == InvitationStatus.PENDING.value,
                status=InvitationStatus.ACCEPTED.value,
                accepted_at=now,
                invitee_id=accepter.id,
            )
            if claimed != 1:
                raise InvalidState("Invitation is no longer pending")

            session.expire(accepter)
            session.expire(invitation)

        logger.info("Salesperson %s joined under %s at level %s", accepter_id, inviter.id, new_level)
        return accepter

    def _relevel(self, subtree, root_level):
        by_depth: Dict[int, List[int]] = {}
        for node_id, depth in subtree:
            by_depth.setdefault(depth, []).append(node_id)
        for depth, ids in by_depth.items():
            conditional_update(Salesperson, Salesperson.id.in_(ids), level=root_level + depth)
            for node_id in ids:
                node = db.session.identity_map.get(db.session.identity_key(Salesperson, node_id))
                if node is not None:
                    db.session.expire(node, ["level"])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def hierarchy(self, salesperson_id) -> dict:
        salesperson = self._salesperson(salesperson_id)
        parent = None
        if salesperson.parent_id is not None:
            upline = db.session.get(Salesperson, salesperson.parent_id)
            if upline is not None:
                parent = {"id": upline.id, "name": upline.name, "level": upline.level}

        children = Salesperson.query.filter_by(parent_id=salesperson.id) \
            .order_by(Salesperson.id).all()

        return {
            "id": salesperson.id,
            "name": salesperson.name,
            "level": salesperson.level,
            "children_count": salesperson.children_count,
            "agent_code": salesperson.agent_code,
            "parent": parent,
            "children": [
                {
                    "id": child.id,
                    "name": child.name,
                    "level": child.level,
                    "children_count": child.children_count,
                }
                for child in children
            ],
        }

    def recompute_children_count(self, salesperson_id) -> int:
        stmt = select(func.count(Salesperson.id)).where(Salesperson.parent_id == salesperson_id)
        return db.session.scalar(stmt)
