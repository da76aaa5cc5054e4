"""
Recurring rule service.

Owns the rule repository for one application instance and tells subscribers
about every change it makes, so dashboards can recompute their totals without
polling storage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Mapping

from balance.recurring_schedule import RecurringRule, due_occurrences
from balance.storage import GeneratedTransaction, RecurringRuleRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleChange:
    action: str
    owner_id: str
    rule: RecurringRule


RuleListener = Callable[[RuleChange], None]


class RecurringRuleService:
    def __init__(self, repository: RecurringRuleRepository) -> None:
        self._repository = repository
        self._listeners: Dict[int, RuleListener] = {}
        self._next_token = 0

    def subscribe(self, listener: RuleListener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def list_rules(self, owner_id: str) -> List[RecurringRule]:
        return self._repository.list_for_owner(owner_id)

    def get_rule(self, owner_id: str, rule_id: int) -> RecurringRule | None:
        return self._repository.get(owner_id, rule_id)

    def create_rule(self, owner_id: str, values: Mapping[str, object]) -> RecurringRule:
        rule = self._repository.create(owner_id, values)
        logger.info("Created recurring rule %s for owner %s", rule.id, owner_id)
        self._emit("created", owner_id, rule)
        return rule

    def update_rule(
        self, owner_id: str, rule_id: int, values: Mapping[str, object]
    ) -> RecurringRule | None:
        rule = self._repository.update(owner_id, rule_id, values)
        if rule is None:
            return None
        logger.info("Updated recurring rule %s for owner %s", rule.id, owner_id)
        self._emit("updated", owner_id, rule)
        return rule

    def set_active(self, owner_id: str, rule_id: int, is_active: bool) -> RecurringRule | None:
        rule = self._repository.set_active(owner_id, rule_id, is_active)
        if rule is None:
            return None
        action = "activated" if is_active else "deactivated"
        logger.info("Recurring rule %s %s for owner %s", rule.id, action, owner_id)
        self._emit(action, owner_id, rule)
        return rule

    def delete_rule(self, owner_id: str, rule_id: int) -> bool:
        rule = self._repository.delete(owner_id, rule_id)
        if rule is None:
            return False
        logger.info("Deleted recurring rule %s for owner %s", rule.id, owner_id)
        self._emit("deleted", owner_id, rule)
        return True

    def generate_due_transactions(
        self, owner_id: str, as_of: date
    ) -> List[GeneratedTransaction]:
        """Materialize every occurrence due on or before ``as_of``.

        Safe to call repeatedly: each rule remembers its last generated date
        and storage skips dates another call already recorded.
        """
        generated: List[GeneratedTransaction] = []
        for rule in self._repository.list_for_owner(owner_id):
            dates = due_occurrences(rule, as_of)
            if not dates:
                continue
            created = self._repository.record_generated(owner_id, rule, dates)
            generated.extend(created)
            refreshed = self._repository.get(owner_id, rule.id)
            if refreshed is not None:
                self._emit("generated", owner_id, refreshed)
        logger.info(
            "Generated %d recurring transaction(s) for owner %s as of %s",
            len(generated),
            owner_id,
            as_of.isoformat(),
        )
        generated.sort(key=lambda txn: (txn.date, txn.rule_id or 0))
        return generated

    def list_transactions(self, owner_id: str) -> List[GeneratedTransaction]:
        return self._repository.list_transactions(owner_id)

    def _emit(self, action: str, owner_id: str, rule: RecurringRule) -> None:
        change = RuleChange(action=action, owner_id=owner_id, rule=rule)
        for listener in list(self._listeners.values()):
            try:
                listener(change)
            except Exception:
                logger.exception("Recurring rule listener failed on %s", action)
