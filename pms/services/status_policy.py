"""
Report Status Policy — transition table + role authorization.

Single source of truth for whether a requested status change is legal,
given who is asking and what the current status is. The table is data:
each ``TransitionRule`` names a (from, to) pair and the role groups that
may perform it. ``is_admin`` bypasses the table entirely.

Two workflows ship:
    extended  open → in_progress → do_qc → resolved / still_issue, wont_fix
    basic     open → in_progress → resolved (+ reopen)

The active one is picked by the ``REPORT_WORKFLOW`` config key.

Usage:
    from pms.services.status_policy import ActingUser, authorize

    actor = ActingUser(id="u-1", role="tester")
    decision = authorize(actor, report, "in_progress")
    if not decision.allowed:
        ...  # decision.reason, decision.message
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from flask import current_app, has_app_context

from pms.core.exceptions import InvalidStatusError
from pms.models.report import REPORT_STATUSES, status_label

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Roles
# ═════════════════════════════════════════════════════════════════════════════

class RoleGroup(str, Enum):
    PM = "pm"
    DEV = "dev"
    QA = "qa"


ROLE_GROUPS: dict[RoleGroup, frozenset[str]] = {
    RoleGroup.PM: frozenset({"project_manager", "cto"}),
    RoleGroup.DEV: frozenset({"developer", "react_native_developer"}),
    RoleGroup.QA: frozenset({"tester", "qa", "quality_assurance"}),
}

# How each group is named in denial messages, in display order.
_GROUP_LABELS: dict[RoleGroup, tuple[str, ...]] = {
    RoleGroup.QA: ("Tester",),
    RoleGroup.DEV: ("Developer",),
    RoleGroup.PM: ("PM", "CTO"),
}


def roles_in(*groups: RoleGroup) -> frozenset[str]:
    """Union of the role names in the given groups."""
    roles: set[str] = set()
    for g in groups:
        roles |= ROLE_GROUPS[g]
    return frozenset(roles)


def _human_list(words: list[str]) -> str:
    if len(words) <= 1:
        return "".join(words)
    if len(words) == 2:
        return f"{words[0]} or {words[1]}"
    return ", ".join(words[:-1]) + f", or {words[-1]}"


def describe_groups(groups) -> str:
    """``(DEV, PM)`` -> ``"Developer, PM, or CTO"``."""
    words: list[str] = []
    for g in _GROUP_LABELS:
        if g in groups:
            words.extend(_GROUP_LABELS[g])
    return _human_list(words)


@dataclass(frozen=True)
class ActingUser:
    """The caller's identity, supplied by the authentication layer."""

    id: str
    role: str
    is_admin: bool = False

    @classmethod
    def from_profile(cls, profile) -> ActingUser:
        return cls(id=profile.id, role=profile.role or "other", is_admin=bool(profile.is_admin))

    def in_group(self, group: RoleGroup) -> bool:
        return self.role in ROLE_GROUPS[group]

    @property
    def is_pm(self) -> bool:
        return self.in_group(RoleGroup.PM)


# ═════════════════════════════════════════════════════════════════════════════
# Rules & decisions
# ═════════════════════════════════════════════════════════════════════════════

class DenialReason(str, Enum):
    NO_SUCH_TRANSITION = "no_such_transition"
    ROLE_NOT_AUTHORIZED = "role_not_authorized"


@dataclass(frozen=True)
class TransitionRule:
    """One row of the policy table."""

    from_status: str
    to_status: str
    groups: frozenset[RoleGroup]
    message: str | None = None

    @property
    def roles(self) -> frozenset[str]:
        return roles_in(*self.groups)

    @property
    def denial_message(self) -> str:
        if self.message:
            return self.message
        return (
            f"Only {describe_groups(self.groups)} can change status to "
            f"{status_label(self.to_status)}"
        )


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenialReason | None = None
    message: str = ""
    rule: TransitionRule | None = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }


PERMITTED = Decision(allowed=True)


def _rule(from_status, to_status, *groups, message=None) -> TransitionRule:
    return TransitionRule(from_status, to_status, frozenset(groups), message)


class TransitionPolicy:
    """A named set of transition rules keyed by (from, to)."""

    def __init__(self, name: str, rules: list[TransitionRule]):
        self.name = name
        self._rules: dict[tuple[str, str], TransitionRule] = {}
        for r in rules:
            if r.from_status not in REPORT_STATUSES or r.to_status not in REPORT_STATUSES:
                raise ValueError(f"Unknown status in rule {r.from_status} → {r.to_status}")
            if r.from_status == r.to_status:
                raise ValueError(f"No-op rule {r.from_status} → {r.to_status} is not allowed")
            self._rules[(r.from_status, r.to_status)] = r

    def __iter__(self):
        return iter(self._rules.values())

    def __len__(self):
        return len(self._rules)

    def rule_for(self, from_status: str, to_status: str) -> TransitionRule | None:
        return self._rules.get((from_status, to_status))

    def authorize(self, actor: ActingUser, current_status: str, requested_status: str) -> Decision:
        """Evaluate one request against the table.

        Raises:
            InvalidStatusError: requested_status is not a known status.
        """
        if requested_status not in REPORT_STATUSES:
            raise InvalidStatusError(requested_status)

        if actor.is_admin:
            return PERMITTED

        rule = self.rule_for(current_status, requested_status)
        if rule is None:
            return Decision(
                allowed=False,
                reason=DenialReason.NO_SUCH_TRANSITION,
                message=(
                    f"Cannot change status from {status_label(current_status)} "
                    f"to {status_label(requested_status)}"
                ),
            )

        if actor.role not in rule.roles:
            return Decision(
                allowed=False,
                reason=DenialReason.ROLE_NOT_AUTHORIZED,
                message=rule.denial_message,
                rule=rule,
            )
        return Decision(allowed=True, rule=rule)

    def available_transitions(self, actor: ActingUser, current_status: str) -> list[str]:
        """Statuses the actor may request from ``current_status``, in display order."""
        return [
            s for s in REPORT_STATUSES
            if s != current_status and self.authorize(actor, current_status, s).allowed
        ]

    def __repr__(self):
        return f"<TransitionPolicy {self.name}: {len(self._rules)} rules>"


# ═════════════════════════════════════════════════════════════════════════════
# Shipped workflows
# ═════════════════════════════════════════════════════════════════════════════

_DEV_PM = (RoleGroup.DEV, RoleGroup.PM)
_QA_DEV_PM = (RoleGroup.QA, RoleGroup.DEV, RoleGroup.PM)

_REOPEN = _rule(
    "resolved", "in_progress", RoleGroup.PM,
    message="Only PM or CTO can reopen a resolved report",
)

EXTENDED_POLICY = TransitionPolicy("extended", [
    _rule("open", "in_progress", *_DEV_PM),
    _rule("in_progress", "do_qc", *_DEV_PM),
    _rule("in_progress", "resolved", *_DEV_PM),
    _rule("do_qc", "resolved", *_QA_DEV_PM),
    _rule("do_qc", "still_issue", *_QA_DEV_PM),
    _rule("do_qc", "in_progress", *_QA_DEV_PM),
    _rule("still_issue", "in_progress", *_DEV_PM),
    _REOPEN,
    *[
        _rule(src, "wont_fix", RoleGroup.PM)
        for src in ("open", "in_progress", "do_qc", "still_issue")
    ],
])

BASIC_POLICY = TransitionPolicy("basic", [
    _rule("open", "in_progress", *_DEV_PM),
    _rule("in_progress", "resolved", *_DEV_PM),
    _REOPEN,
])

POLICIES: dict[str, TransitionPolicy] = {
    EXTENDED_POLICY.name: EXTENDED_POLICY,
    BASIC_POLICY.name: BASIC_POLICY,
}

DEFAULT_WORKFLOW = EXTENDED_POLICY.name


def get_policy(name: str | None = None) -> TransitionPolicy:
    """Resolve a policy by name, else from ``REPORT_WORKFLOW`` config."""
    if name is None and has_app_context():
        name = current_app.config.get("REPORT_WORKFLOW")
    name = name or DEFAULT_WORKFLOW
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown report workflow: {name!r}") from None


def authorize(actor: ActingUser, report, requested_status: str,
              policy: TransitionPolicy | None = None) -> Decision:
    """Decide whether ``actor`` may move ``report`` to ``requested_status``."""
    policy = policy or get_policy()
    return policy.authorize(actor, report.status, requested_status)


def available_transitions(actor: ActingUser, report,
                          policy: TransitionPolicy | None = None) -> list[str]:
    policy = policy or get_policy()
    return policy.available_transitions(actor, report.status)
