"""Duplicate evaluator: applies a tenant's rules to a candidate order.

Rules are evaluated in stored order and the first rule that matches any
prior admitted order inside its window wins. Each field has its own
comparator; an empty value on either side never matches.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from django.db.models import Q
from django.utils import timezone

from ..exceptions import ConfigurationError
from ..models import DuplicateRule, OrderLineItem
from ..utils import address_key, normalize_address, normalize_text, phone_digits
from . import orders, rules

logger = logging.getLogger(__name__)

Field = DuplicateRule.MatchField

TOTAL_TOLERANCE = Decimal("0.01")


def _with_line_item(**lookups):
    # Subquery per field so that ALL rules may match on different lines.
    return Q(pk__in=OrderLineItem.objects.filter(**lookups).values("order_id"))


# Indexed lookup for each field; a prior order can only match a field
# when its row satisfies that field's lookup.
FIELD_LOOKUPS = {
    Field.CUSTOMER_NAME: lambda facts: Q(customer_name_key=facts.name[:255]),
    Field.CUSTOMER_PHONE: lambda facts: Q(customer_phone_digits=facts.phone),
    Field.CUSTOMER_ADDRESS: lambda facts: Q(
        customer_address_key=address_key(facts.address)
    ),
    Field.PRODUCT_ID: lambda facts: _with_line_item(product_id__in=facts.product_ids),
    Field.PRODUCT_CODE: lambda facts: _with_line_item(
        product_code__in=facts.product_codes
    ),
    Field.PRODUCT_NAME: lambda facts: _with_line_item(
        product_name_key__in=[name[:255] for name in facts.product_names]
    ),
    Field.ORDER_TOTAL: lambda facts: Q(
        total__range=(
            Decimal(facts.total) - TOTAL_TOLERANCE,
            Decimal(facts.total) + TOTAL_TOLERANCE,
        )
    ),
    Field.FULFILLMENT_LOCATION: lambda facts: Q(location_id=facts.location_id),
}

FACT_VALUES = {
    Field.CUSTOMER_NAME: lambda facts: facts.name,
    Field.CUSTOMER_PHONE: lambda facts: facts.phone,
    Field.CUSTOMER_ADDRESS: lambda facts: facts.address,
    Field.PRODUCT_ID: lambda facts: facts.product_ids,
    Field.PRODUCT_CODE: lambda facts: facts.product_codes,
    Field.PRODUCT_NAME: lambda facts: facts.product_names,
    Field.ORDER_TOTAL: lambda facts: facts.total,
    Field.FULFILLMENT_LOCATION: lambda facts: facts.location_id,
}


@dataclass(frozen=True)
class OrderFacts:
    """Comparable, pre-normalized view of an order."""

    name: str = ""
    phone: str = ""
    address: str = ""
    product_ids: frozenset = frozenset()
    product_codes: frozenset = frozenset()
    product_names: frozenset = frozenset()
    total: Optional[Decimal] = None
    location_id: str = ""

    @classmethod
    def from_candidate(cls, candidate):
        return cls(
            name=normalize_text(candidate.customer.name),
            phone=phone_digits(candidate.customer.phone),
            address=normalize_address(candidate.customer.address),
            product_ids=frozenset(candidate.product_ids),
            product_codes=frozenset(candidate.product_codes),
            product_names=frozenset(
                normalize_text(i.product_name)
                for i in candidate.line_items
                if normalize_text(i.product_name)
            ),
            total=candidate.total,
            location_id=candidate.location_id or "",
        )

    @classmethod
    def from_order(cls, order):
        items = list(order.line_items.all())
        return cls(
            name=normalize_text(order.customer_name),
            phone=order.customer_phone_digits or phone_digits(order.customer_phone),
            address=normalize_address(order.customer_address),
            product_ids=frozenset(i.product_id for i in items if i.product_id),
            product_codes=frozenset(i.product_code for i in items if i.product_code),
            product_names=frozenset(
                normalize_text(i.product_name)
                for i in items
                if normalize_text(i.product_name)
            ),
            total=order.total,
            location_id=order.location_id or "",
        )


def _same_scalar(left, right):
    return bool(left) and bool(right) and left == right


def _overlap(left, right):
    return bool(left & right)


def _close_totals(left, right):
    if left is None or right is None:
        return False
    return abs(Decimal(left) - Decimal(right)) <= TOTAL_TOLERANCE


COMPARATORS = {
    Field.CUSTOMER_NAME: lambda a, b: _same_scalar(a.name, b.name),
    Field.CUSTOMER_PHONE: lambda a, b: _same_scalar(a.phone, b.phone),
    Field.CUSTOMER_ADDRESS: lambda a, b: _same_scalar(a.address, b.address),
    Field.PRODUCT_ID: lambda a, b: _overlap(a.product_ids, b.product_ids),
    Field.PRODUCT_CODE: lambda a, b: _overlap(a.product_codes, b.product_codes),
    Field.PRODUCT_NAME: lambda a, b: _overlap(a.product_names, b.product_names),
    Field.ORDER_TOTAL: lambda a, b: _close_totals(a.total, b.total),
    Field.FULFILLMENT_LOCATION: lambda a, b: _same_scalar(a.location_id, b.location_id),
}


def matching_fields(rule_fields, candidate_facts, prior_facts):
    """Fields among *rule_fields* on which the two orders agree."""
    return [
        name for name in rule_fields if COMPARATORS[name](candidate_facts, prior_facts)
    ]


def rule_matches(rule, candidate_facts, prior_facts):
    fields = rule.enabled_fields
    matched = matching_fields(fields, candidate_facts, prior_facts)
    if rule.operator == DuplicateRule.Operator.ANY:
        return bool(matched), matched
    return len(matched) == len(fields), matched


@dataclass(frozen=True)
class DuplicateVerdict:
    is_duplicate: bool
    matched_rule: Optional[DuplicateRule] = None
    matched_order: object = None
    matched_fields: tuple = ()
    rules_checked: int = 0
    skipped_rules: tuple = field(default_factory=tuple)

    def as_detail(self):
        detail = {
            "isDuplicate": self.is_duplicate,
            "rulesChecked": self.rules_checked,
        }
        if self.skipped_rules:
            detail["skippedRules"] = list(self.skipped_rules)
        if self.is_duplicate:
            detail.update(
                {
                    "matchedRule": self.matched_rule.name,
                    "matchedRuleId": self.matched_rule.pk,
                    "matchedOrderId": self.matched_order.pk,
                    "matchedExternalOrderId": self.matched_order.external_order_id,
                    "matchedFields": list(self.matched_fields),
                }
            )
        return detail


class DuplicateEvaluator:
    """Evaluate candidates against one tenant's configured rules."""

    def __init__(self, order_source=orders.find_recent_orders):
        self.order_source = order_source

    def check_rule(self, rule):
        if not rule.enabled_fields:
            raise ConfigurationError(
                f"Duplicate rule {rule.pk} ({rule.name!r}) has no usable fields"
            )

    def prefilter(self, rule, candidate_facts):
        """Indexed filter that narrows the prior-order query for *rule*.

        Lookups are AND-ed for an ALL rule and OR-ed for an ANY rule; the
        comparators still decide the match. Returns None when the rule
        cannot match because the candidate lacks the values it needs.
        """
        present = []
        for name in rule.enabled_fields:
            value = FACT_VALUES[name](candidate_facts)
            if value is None or (name != Field.ORDER_TOTAL and not value):
                if rule.operator == DuplicateRule.Operator.ALL:
                    return None
                continue
            present.append(FIELD_LOOKUPS[name](candidate_facts))
        if not present:
            return None
        combined = present[0]
        for lookup in present[1:]:
            if rule.operator == DuplicateRule.Operator.ALL:
                combined &= lookup
            else:
                combined |= lookup
        return combined

    def evaluate(self, tenant_id, candidate, now=None):
        """Check *candidate* against the tenant's active rules.

        Args:
            tenant_id: Owner of the rules and of the prior orders.
            candidate: A :class:`CandidateOrder`.
            now: Evaluation time; the window is ``[now - window, now]``.

        Returns:
            DuplicateVerdict
        """
        now = now or timezone.now()
        _, active_rules = rules.load_active_rules(tenant_id)
        if not active_rules:
            return DuplicateVerdict(is_duplicate=False)

        candidate_facts = OrderFacts.from_candidate(candidate)
        checked = 0
        skipped = []
        for rule in active_rules:
            try:
                self.check_rule(rule)
            except ConfigurationError as exc:
                logger.warning("Skipping duplicate rule for tenant %s: %s", tenant_id, exc)
                skipped.append(rule.pk)
                continue
            checked += 1

            field_filter = self.prefilter(rule, candidate_facts)
            if field_filter is None:
                continue
            prior_orders = self.order_source(
                tenant_id,
                since=now - rule.window,
                until=now,
                field_filter=field_filter,
                exclude=(candidate.platform, candidate.external_order_id),
            )
            for prior in prior_orders:
                matched, fields = rule_matches(
                    rule, candidate_facts, OrderFacts.from_order(prior)
                )
                if matched:
                    logger.info(
                        "Order %s:%s matches rule %r against order %s",
                        candidate.platform,
                        candidate.external_order_id,
                        rule.name,
                        prior.pk,
                    )
                    return DuplicateVerdict(
                        is_duplicate=True,
                        matched_rule=rule,
                        matched_order=prior,
                        matched_fields=tuple(fields),
                        rules_checked=checked,
                        skipped_rules=tuple(skipped),
                    )

        return DuplicateVerdict(
            is_duplicate=False, rules_checked=checked, skipped_rules=tuple(skipped)
        )


def evaluate(tenant_id, candidate, now=None):
    return DuplicateEvaluator().evaluate(tenant_id, candidate, now=now)
