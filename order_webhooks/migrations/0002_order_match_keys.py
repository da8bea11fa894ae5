# Generated manually for order_webhooks app

from django.db import migrations, models

from order_webhooks.utils import address_key, phone_digits, text_key


def backfill_keys(apps, schema_editor):
    Order = apps.get_model("order_webhooks", "Order")
    OrderLineItem = apps.get_model("order_webhooks", "OrderLineItem")
    for order in Order.objects.iterator():
        order.customer_name_key = text_key(order.customer_name)
        order.customer_address_key = address_key(order.customer_address)
        order.customer_phone_digits = (
            order.customer_phone_digits or phone_digits(order.customer_phone)
        )
        order.save(
            update_fields=[
                "customer_name_key",
                "customer_address_key",
                "customer_phone_digits",
            ]
        )
    for item in OrderLineItem.objects.iterator():
        item.product_name_key = text_key(item.product_name)
        item.save(update_fields=["product_name_key"])


class Migration(migrations.Migration):

    dependencies = [
        ("order_webhooks", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="order",
            name="customer_name_key",
            field=models.CharField(blank=True, db_index=True, default="", max_length=255),
        ),
        migrations.AddField(
            model_name="order",
            name="customer_address_key",
            field=models.CharField(blank=True, db_index=True, default="", max_length=64),
        ),
        migrations.AddField(
            model_name="orderlineitem",
            name="product_name_key",
            field=models.CharField(blank=True, db_index=True, default="", max_length=255),
        ),
        migrations.AlterField(
            model_name="orderlineitem",
            name="product_id",
            field=models.CharField(blank=True, db_index=True, default="", max_length=255),
        ),
        migrations.AlterField(
            model_name="orderlineitem",
            name="product_code",
            field=models.CharField(blank=True, db_index=True, default="", max_length=255),
        ),
        migrations.RunPython(backfill_keys, migrations.RunPython.noop),
    ]
