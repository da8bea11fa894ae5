"""Rule store: per-tenant duplicate-detection configuration."""

import logging

from django.db import transaction

from ..models import DuplicateRule, DuplicateRuleSet

logger = logging.getLogger(__name__)


def get_rule_set(tenant_id):
    return DuplicateRuleSet.objects.filter(tenant_id=tenant_id).first()


def get_or_create_rule_set(tenant_id):
    rule_set, created = DuplicateRuleSet.objects.get_or_create(tenant_id=tenant_id)
    if created:
        logger.info("Created duplicate rule set for tenant %s", tenant_id)
    return rule_set


def load_active_rules(tenant_id):
    """Return ``(rule_set, rules)`` for duplicate evaluation.

    ``rules`` is the list of active rules in stored order. It is empty when
    the tenant has no rule set or has disabled detection.
    """
    rule_set = get_rule_set(tenant_id)
    if rule_set is None or not rule_set.is_enabled:
        return rule_set, []
    return rule_set, list(rule_set.rules.filter(is_active=True))


def set_enabled(tenant_id, enabled):
    rule_set = get_or_create_rule_set(tenant_id)
    rule_set.is_enabled = enabled
    rule_set.save(update_fields=["is_enabled", "updated_at"])
    return rule_set


@transaction.atomic
def add_rule(
    tenant_id,
    name,
    match_fields,
    operator=DuplicateRule.Operator.ALL,
    window_value=None,
    window_unit=None,
    is_active=True,
):
    """Append a validated rule to the tenant's rule set.

    The window falls back to the rule set's default window.

    Raises:
        django.core.exceptions.ValidationError: invalid fields or window.
    """
    rule_set = get_or_create_rule_set(tenant_id)
    last = rule_set.rules.order_by("-position").first()
    rule = DuplicateRule(
        rule_set=rule_set,
        name=name,
        match_fields=list(match_fields),
        operator=operator,
        window_value=window_value or rule_set.default_window_value,
        window_unit=window_unit or rule_set.default_window_unit,
        is_active=is_active,
        position=(last.position + 1) if last else 0,
    )
    rule.full_clean()
    rule.save()
    return rule


def update_rule(rule, **changes):
    for attr, value in changes.items():
        setattr(rule, attr, value)
    rule.full_clean()
    rule.save()
    return rule


def delete_rule(rule):
    rule.delete()


@transaction.atomic
def reorder_rules(tenant_id, rule_ids):
    """Store *rule_ids* as the new evaluation order."""
    rule_set = get_or_create_rule_set(tenant_id)
    rules = {rule.pk: rule for rule in rule_set.rules.all()}
    for position, rule_id in enumerate(rule_ids):
        rule = rules.get(rule_id)
        if rule is None:
            continue
        rule.position = position
        rule.save(update_fields=["position", "updated_at"])
