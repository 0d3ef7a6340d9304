from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Plan',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier for the plan', primary_key=True, serialize=False)),
                ('name', models.CharField(help_text="Display name of the plan (e.g., 'Pro', 'Enterprise')", max_length=255)),
                ('slug', models.SlugField(help_text='URL-friendly identifier for the plan', max_length=255, unique=True)),
                ('price_cents', models.PositiveIntegerField(help_text='Price in cents (e.g., 1999 for 19.99)')),
                ('currency', models.CharField(default='USD', help_text='Currency code (ISO 4217)', max_length=3)),
                ('billing_interval', models.CharField(choices=[('day', 'Daily'), ('week', 'Weekly'), ('month', 'Monthly'), ('year', 'Yearly')], default='month', help_text='Unit of the billing period', max_length=20)),
                ('interval_count', models.PositiveIntegerField(default=1, help_text='Number of intervals in one billing period')),
                ('is_active', models.BooleanField(default=True, help_text='Whether this plan is currently available for new subscriptions')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Plan',
                'verbose_name_plural': 'Plans',
                'ordering': ['price_cents'],
            },
        ),
        migrations.CreateModel(
            name='Subscription',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier for the subscription', primary_key=True, serialize=False)),
                ('gateway', models.CharField(help_text='Payment gateway handling this subscription', max_length=50)),
                ('status', models.CharField(choices=[('new', 'New'), ('pending', 'Pending'), ('active', 'Active'), ('expiring', 'Expiring'), ('ended', 'Ended'), ('cancelled', 'Cancelled')], default='new', help_text='Current lifecycle state', max_length=20)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('ends_at', models.DateTimeField(blank=True, null=True)),
                ('current_period_ends_at', models.DateTimeField(blank=True, null=True)),
                ('error', models.JSONField(blank=True, help_text='Last user-facing error descriptor (type, status, message, link)', null=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('plan', models.ForeignKey(help_text='The plan this subscription is for', on_delete=django.db.models.deletion.PROTECT, related_name='subscriptions', to='cashier.plan')),
                ('user', models.ForeignKey(help_text='Customer that owns this subscription', on_delete=django.db.models.deletion.PROTECT, related_name='subscriptions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Subscription',
                'verbose_name_plural': 'Subscriptions',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'status'], name='cashier_sub_user_id_7a1f3e_idx'),
                    models.Index(fields=['status', 'current_period_ends_at'], name='cashier_sub_status_4c9b2d_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SubscriptionTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('uid', models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ('type', models.CharField(choices=[('subscribe', 'Subscribe'), ('renew', 'Renew'), ('change_plan', 'Change plan')], max_length=20)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('success', 'Success'), ('failed', 'Failed')], default='pending', max_length=20)),
                ('amount_cents', models.PositiveIntegerField(default=0)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('title', models.CharField(blank=True, max_length=255)),
                ('description', models.TextField(blank=True)),
                ('ends_at', models.DateTimeField(blank=True, null=True)),
                ('current_period_ends_at', models.DateTimeField(blank=True, null=True)),
                ('remote_reference', models.CharField(blank=True, db_index=True, help_text='Provider transaction / payment id', max_length=255)),
                ('remote_status_code', models.CharField(blank=True, max_length=50)),
                ('remote_status_text', models.CharField(blank=True, max_length=255)),
                ('remote_payload', models.JSONField(blank=True, null=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('error', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('plan', models.ForeignKey(blank=True, help_text='Target plan of a plan change', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to='cashier.plan')),
                ('subscription', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transactions', to='cashier.subscription')),
            ],
            options={
                'verbose_name': 'Subscription transaction',
                'verbose_name_plural': 'Subscription transactions',
                'ordering': ['created_at', 'id'],
                'indexes': [
                    models.Index(fields=['subscription', 'status'], name='cashier_sub_subscri_e2d8a1_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SubscriptionLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[('subscribed', 'Subscribed'), ('paid', 'Paid'), ('renewed', 'Renewed'), ('plan_changed', 'Plan changed'), ('cancelled', 'Cancelled'), ('cancelled_now', 'Cancelled now'), ('resumed', 'Resumed'), ('ended', 'Ended'), ('expired', 'Expired'), ('error', 'Error')], max_length=20)),
                ('sequence', models.PositiveIntegerField()),
                ('data', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('subscription', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='logs', to='cashier.subscription')),
            ],
            options={
                'ordering': ['subscription', 'sequence'],
                'constraints': [
                    models.UniqueConstraint(fields=('subscription', 'sequence'), name='unique_subscription_log_sequence'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Invoice',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier for the invoice', primary_key=True, serialize=False)),
                ('amount_cents', models.PositiveIntegerField(help_text='Total amount in cents')),
                ('currency', models.CharField(default='USD', help_text='Currency code (ISO 4217)', max_length=3)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('status', models.CharField(choices=[('new', 'New'), ('paid', 'Paid'), ('failed', 'Failed')], default='new', max_length=20)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('error', models.TextField(blank=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='invoices', to=settings.AUTH_USER_MODEL)),
                ('transaction', models.ForeignKey(blank=True, help_text='Ledger entry this invoice pays, if any', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='invoices', to='cashier.subscriptiontransaction')),
            ],
            options={
                'verbose_name': 'Invoice',
                'verbose_name_plural': 'Invoices',
                'ordering': ['-created_at'],
            },
        ),
    ]
