import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="StockMovement",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("quantity_change", models.IntegerField(help_text="Delta value (+/-)")),
                (
                    "movement_type",
                    models.CharField(
                        choices=[("RESERVE", "Reservation (Order)"), ("RELEASE", "Release (Cancellation)")],
                        max_length=20,
                    ),
                ),
                ("reference", models.CharField(db_index=True, help_text="Order ID", max_length=100)),
                ("balance_after", models.IntegerField(help_text="Snapshot of stock after the change")),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_movements",
                        to="catalog.product",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
