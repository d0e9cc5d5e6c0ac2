"""
Business Rules Engine — flat list of rules run against each processed event.

A rule applies when:
  1. its trigger lists no action types, or the event's action type is listed;
  2. its trigger lists no status changes, or one of them matches
     (``from_`` unset or equal to the previous status, ``to`` equal to the
     new status).

Enabled applicable rules run sequentially in registration order; the first
failure is logged and re-raised, so later rules do not run.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import structlog

from rmswatch.schemas.events import ProcessedEvent

logger = structlog.get_logger(__name__)

RuleAction = Callable[[ProcessedEvent], Awaitable[None]]


@dataclass(frozen=True)
class StatusChange:
    to: str
    from_: Optional[str] = None


@dataclass(frozen=True)
class RuleTrigger:
    action_types: tuple[str, ...] = ()
    status_changes: tuple[StatusChange, ...] = ()


@dataclass
class BusinessRule:
    id: str
    name: str
    description: str
    trigger: RuleTrigger
    action: RuleAction
    enabled: bool = True

    def applies_to(self, event: ProcessedEvent) -> bool:
        if self.trigger.action_types and event.action_type not in self.trigger.action_types:
            return False
        if self.trigger.status_changes:
            return any(
                (change.from_ is None or change.from_ == event.previous_status)
                and change.to == event.new_status
                for change in self.trigger.status_changes
            )
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "trigger": {
                "actionTypes": list(self.trigger.action_types),
                "statusChanges": [
                    {"from": c.from_, "to": c.to} for c in self.trigger.status_changes
                ],
            },
        }


@dataclass
class BusinessRulesEngine:
    _rules: dict[str, BusinessRule] = field(default_factory=dict)

    def register_rule(self, rule: BusinessRule) -> None:
        """Add a rule, replacing any rule with the same id."""
        self._rules[rule.id] = rule

    def unregister_rule(self, rule_id: str) -> None:
        self._rules.pop(rule_id, None)

    def get_rules(self) -> list[BusinessRule]:
        return list(self._rules.values())

    def get_applicable_rules(self, event: ProcessedEvent) -> list[BusinessRule]:
        return [r for r in self._rules.values() if r.applies_to(event)]

    async def execute_rules(self, event: ProcessedEvent) -> list[str]:
        """Run enabled applicable rules; returns the ids that ran."""
        executed: list[str] = []
        for rule in self.get_applicable_rules(event):
            if not rule.enabled:
                continue
            logger.info("rule_executing", rule_id=rule.id, event_id=event.id)
            try:
                await rule.action(event)
            except Exception as e:
                logger.error("rule_failed", rule_id=rule.id, event_id=event.id, error=str(e))
                raise
            executed.append(rule.id)
        return executed


# ── Default rules ────────────────────────────────────────────────────────


async def _notify_order_conversion(event: ProcessedEvent) -> None:
    logger.info(
        "rule_order_conversion",
        opportunity_id=event.opportunity_id,
        customer=event.customer_name,
        user=event.user_name,
        user_id=event.user_id,
    )


async def _log_status_change(event: ProcessedEvent) -> None:
    logger.info(
        "rule_status_change",
        opportunity_id=event.opportunity_id,
        previous_status=event.previous_status,
        new_status=event.new_status,
    )


async def _validate_reserved_order(event: ProcessedEvent) -> None:
    logger.info("rule_reserved_validation", opportunity_id=event.opportunity_id)


async def _alert_lost_opportunity(event: ProcessedEvent) -> None:
    logger.warning(
        "rule_lost_opportunity",
        opportunity_id=event.opportunity_id,
        customer=event.customer_name,
    )


def default_rules() -> list[BusinessRule]:
    return [
        BusinessRule(
            id="notify-order-conversion",
            name="Notify on Order Conversion",
            description="Send notification when opportunity converts to order",
            trigger=RuleTrigger(action_types=("convert_to_order",)),
            action=_notify_order_conversion,
        ),
        BusinessRule(
            id="log-status-changes",
            name="Log All Status Changes",
            description="Log all opportunity status changes for audit",
            trigger=RuleTrigger(action_types=(
                "update",
                "mark_as_provisional",
                "mark_as_reserved",
                "mark_as_lost",
                "mark_as_dead",
            )),
            action=_log_status_change,
        ),
        BusinessRule(
            id="validate-reserved-orders",
            name="Validate Reserved Orders",
            description="Run validation checks when opportunity is marked as reserved",
            trigger=RuleTrigger(action_types=("mark_as_reserved",)),
            action=_validate_reserved_order,
        ),
        BusinessRule(
            id="alert-lost-opportunities",
            name="Alert on Lost Opportunities",
            description="Send alert when opportunity is marked as lost",
            trigger=RuleTrigger(action_types=("mark_as_lost",)),
            action=_alert_lost_opportunity,
        ),
    ]


def build_default_engine() -> BusinessRulesEngine:
    engine = BusinessRulesEngine()
    for rule in default_rules():
        engine.register_rule(rule)
    return engine


rules_engine = build_default_engine()
