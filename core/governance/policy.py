"""
Policy engine — governance rules evaluated before a request transition.

Each rule is an independent object with the same contract:

    rule.check(action, request, actor_id) -> Allowed | Violation

Rules run in a fixed order and the first violation short-circuits. A
violation is a normal result, not an exception; the workflow turns it into a
'policy_violated' audit entry and a PolicyViolation error.
"""
from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

ACTION_APPROVE = 'approve'
ACTION_REJECT = 'reject'
ACTION_CANCEL = 'cancel'

EXTENSION_KEY = 'policy_engine'


@dataclass(frozen=True)
class Allowed:
    allowed = True


@dataclass(frozen=True)
class Violation:
    rule: str
    reason: str
    allowed = False


ALLOWED = Allowed()


class PolicyRule:
    """Base class for a named governance rule."""

    name = 'unnamed_rule'
    # Actions the rule applies to; None means every action.
    actions: frozenset[str] | None = None

    def applies_to(self, action: str) -> bool:
        return self.actions is None or action in self.actions

    def check(self, action, request, actor_id) -> Allowed | Violation:
        raise NotImplementedError

    def __repr__(self):
        return f'<{type(self).__name__} {self.name}>'


class SeparationOfDutiesRule(PolicyRule):
    """The approver of a request must not be its requester."""

    name = 'separation_of_duties'
    actions = frozenset({ACTION_APPROVE})

    def check(self, action, request, actor_id):
        if actor_id is not None and actor_id == request.requester_id:
            return Violation(
                rule=self.name,
                reason='Approver cannot be the requester of the same access request',
            )
        return ALLOWED


DEFAULT_RULES = (SeparationOfDutiesRule(),)


class PolicyEngine:
    """Evaluates an ordered tuple of rules against a candidate transition."""

    def __init__(self, rules=None) -> None:
        self._rules = tuple(DEFAULT_RULES if rules is None else rules)

    @property
    def rules(self) -> tuple[PolicyRule, ...]:
        return self._rules

    def with_rule(self, rule: PolicyRule) -> PolicyEngine:
        """Return a new engine with ``rule`` appended; this one is unchanged."""
        return PolicyEngine(self._rules + (rule,))

    def evaluate(self, action, request, actor_id) -> Allowed | Violation:
        for rule in self._rules:
            if not rule.applies_to(action):
                continue
            decision = rule.check(action, request, actor_id)
            if not decision.allowed:
                return decision
        return ALLOWED


def init_policy_engine(app, rules=None):
    engine = PolicyEngine(rules)
    app.extensions[EXTENSION_KEY] = engine
    return engine


def get_policy_engine() -> PolicyEngine:
    return current_app.extensions[EXTENSION_KEY]
