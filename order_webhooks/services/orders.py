"""Order store: persistence of canonical orders."""

from django.utils import timezone

from ..models import Order, OrderLineItem
from ..utils import address_key, phone_digits, text_key


def create_order(candidate, connection=None):
    """Insert an order and its line items.

    Must run inside a transaction; the caller owns it so that the unique
    constraint on (tenant, platform, external id) can abort the insert.
    """
    order = Order.objects.create(
        tenant_id=candidate.tenant_id,
        location_id=candidate.location_id,
        platform=candidate.platform,
        external_order_id=candidate.external_order_id,
        connection=connection,
        customer_name=candidate.customer.name,
        customer_name_key=text_key(candidate.customer.name),
        customer_phone=candidate.customer.phone,
        customer_phone_digits=phone_digits(candidate.customer.phone),
        customer_address=candidate.customer.address,
        customer_address_key=address_key(candidate.customer.address),
        total=candidate.total,
        currency=candidate.currency,
        placed_at=candidate.placed_at,
        created_at=timezone.now(),
    )
    OrderLineItem.objects.bulk_create(
        [
            OrderLineItem(
                order=order,
                product_id=item.product_id,
                product_name=item.product_name,
                product_name_key=text_key(item.product_name),
                product_code=item.product_code,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in candidate.line_items
        ]
    )
    return order


def find_admitted(tenant_id, platform, external_order_id):
    return Order.objects.filter(
        tenant_id=tenant_id, platform=platform, external_order_id=external_order_id
    ).first()


def find_recent_orders(tenant_id, since, until, field_filter=None, exclude=None):
    """Admitted orders of *tenant_id* created in ``[since, until]``.

    Args:
        tenant_id: Only this tenant's orders are returned.
        since: Inclusive lower bound on ``created_at``.
        until: Inclusive upper bound on ``created_at``.
        field_filter: Optional ``Q`` on indexed columns, e.g.
            ``Q(customer_phone_digits="15551234567")``.
        exclude: Optional ``(platform, external_order_id)`` to leave out.

    Returns:
        QuerySet: newest first, line items prefetched.
    """
    queryset = Order.objects.filter(
        tenant_id=tenant_id, created_at__gte=since, created_at__lte=until
    )
    if field_filter is not None:
        queryset = queryset.filter(field_filter)
    if exclude is not None:
        platform, external_order_id = exclude
        queryset = queryset.exclude(
            platform=platform, external_order_id=external_order_id
        )
    return queryset.prefetch_related("line_items").order_by("-created_at", "-id")
