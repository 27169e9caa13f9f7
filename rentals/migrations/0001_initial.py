import decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import rentals.validators


def money(**kwargs):
    return models.DecimalField(max_digits=12, decimal_places=2, **kwargs)


def area(**kwargs):
    return models.DecimalField(max_digits=10, decimal_places=2, **kwargs)


def rate(**kwargs):
    return models.DecimalField(max_digits=5, decimal_places=2, **kwargs)


PERIOD_CHOICES = [
    ('day', 'Day'),
    ('week', 'Week'),
    ('month', 'Month'),
    ('quarter', 'Quarter'),
    ('semester', 'Semester'),
    ('year', 'Year'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('email', models.EmailField(error_messages={'unique': 'A user with that email already exists.'}, help_text='Required. Used to log in.', max_length=254, unique=True, verbose_name='email address')),
                ('role', models.CharField(choices=[('guest', 'Guest'), ('host', 'Host'), ('admin', 'Administrator')], default='guest', help_text='Guests rent space, hosts publish it.', max_length=10, verbose_name='role')),
                ('phone_number', models.CharField(blank=True, default='', help_text='Optional. Enter phone number in international format.', max_length=20, validators=[rentals.validators.validate_phone_number], verbose_name='phone number')),
                ('anti_bypass_accepted', models.BooleanField(default=False, help_text='Host accepted the clause forbidding off-platform deals.', verbose_name='anti-bypass accepted')),
                ('anti_bypass_accepted_at', models.DateTimeField(blank=True, null=True, verbose_name='anti-bypass accepted at')),
                ('anti_bypass_legal_version', models.CharField(blank=True, default='', max_length=50, verbose_name='anti-bypass legal version')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['role'], name='rentals_use_role_6c1f2e_idx')],
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Space',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=200, verbose_name='title')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('space_type', models.CharField(choices=[('warehouse', 'Warehouse'), ('shed', 'Shed'), ('storeroom', 'Storeroom'), ('room', 'Room'), ('container', 'Container'), ('yard', 'Yard'), ('garage', 'Garage')], default='storeroom', max_length=20, verbose_name='space type')),
                ('total_sqm', area(validators=[django.core.validators.MinValueValidator(decimal.Decimal('0.01'))], verbose_name='total area (m2)')),
                ('available_sqm', area(help_text='Area that can be reserved. Cannot exceed the total area.', validators=[django.core.validators.MinValueValidator(decimal.Decimal('0.01'))], verbose_name='rentable area (m2)')),
                ('has_roof', models.BooleanField(default=True, verbose_name='roofed')),
                ('rain_protected', models.BooleanField(default=True, verbose_name='rain protected')),
                ('dust_protected', models.BooleanField(default=False, verbose_name='dust protected')),
                ('has_security', models.BooleanField(default=False, verbose_name='security')),
                ('access_type', models.CharField(choices=[('free', 'Free access'), ('scheduled', 'Scheduled access'), ('supervised', 'Supervised access')], default='scheduled', max_length=20, verbose_name='access type')),
                ('address', models.CharField(blank=True, default='', max_length=255, verbose_name='address')),
                ('city', models.CharField(blank=True, default='', max_length=100, verbose_name='city')),
                ('price_per_sqm_day', money(blank=True, null=True, validators=[rentals.validators.validate_positive_rate], verbose_name='price per m2 per day')),
                ('price_per_sqm_week', money(blank=True, null=True, validators=[rentals.validators.validate_positive_rate], verbose_name='price per m2 per week')),
                ('price_per_sqm_month', money(blank=True, null=True, validators=[rentals.validators.validate_positive_rate], verbose_name='price per m2 per month')),
                ('price_per_sqm_quarter', money(blank=True, null=True, validators=[rentals.validators.validate_positive_rate], verbose_name='price per m2 per quarter')),
                ('price_per_sqm_semester', money(blank=True, null=True, validators=[rentals.validators.validate_positive_rate], verbose_name='price per m2 per semester')),
                ('price_per_sqm_year', money(blank=True, null=True, validators=[rentals.validators.validate_positive_rate], verbose_name='price per m2 per year')),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('published', 'Published'), ('paused', 'Paused')], default='draft', max_length=20, verbose_name='status')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('host', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='spaces', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'space',
                'verbose_name_plural': 'spaces',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['host'], name='rentals_spa_host_id_1b7c3a_idx'),
                    models.Index(fields=['status'], name='rentals_spa_status_4d2e8f_idx'),
                    models.Index(fields=['city'], name='rentals_spa_city_9a0b5c_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PlatformSetting',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('key', models.CharField(choices=[('deposit_percentage', 'Deposit percentage'), ('commission_percentage', 'Commission percentage')], max_length=50, unique=True, verbose_name='key')),
                ('value', rate(validators=[rentals.validators.validate_percentage], verbose_name='value')),
                ('description', models.CharField(blank=True, default='', max_length=255, verbose_name='description')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'platform setting',
                'verbose_name_plural': 'platform settings',
                'ordering': ['key'],
            },
        ),
        migrations.CreateModel(
            name='Reservation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('requested_sqm', area(validators=[django.core.validators.MinValueValidator(decimal.Decimal('0.01'))], verbose_name='requested area (m2)')),
                ('period_type', models.CharField(choices=PERIOD_CHOICES, max_length=10, verbose_name='period type')),
                ('period_count', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)], verbose_name='period count')),
                ('price_per_sqm_applied', money(verbose_name='price per m2 applied')),
                ('total_amount', money(verbose_name='total amount')),
                ('deposit_percentage', rate(help_text='Platform deposit ratio in effect when the reservation was quoted.', validators=[rentals.validators.validate_percentage], verbose_name='deposit percentage')),
                ('deposit_amount', money(verbose_name='deposit amount')),
                ('remaining_amount', money(verbose_name='remaining amount')),
                ('frozen_pricing', models.JSONField(blank=True, default=dict, help_text='Space price table at creation time. Extensions are priced from it.', verbose_name='frozen price table')),
                ('idempotency_key', models.CharField(max_length=100, verbose_name='idempotency key')),
                ('status', models.CharField(choices=[('pending_payment', 'Pending payment'), ('deposit_held', 'Deposit held'), ('visit_required', 'Visit required'), ('confirmable', 'Confirmable'), ('contract_pending', 'Contract pending'), ('active', 'Active'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('refunded', 'Refunded')], default='pending_payment', max_length=20, verbose_name='status')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('guest', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='guest_reservations', to=settings.AUTH_USER_MODEL)),
                ('host', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='host_reservations', to=settings.AUTH_USER_MODEL)),
                ('space', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='reservations', to='rentals.space')),
            ],
            options={
                'verbose_name': 'reservation',
                'verbose_name_plural': 'reservations',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['space', 'status'], name='rentals_res_space_i_5e6f7a_idx'),
                    models.Index(fields=['guest'], name='rentals_res_guest_i_8b9c0d_idx'),
                    models.Index(fields=['host'], name='rentals_res_host_id_1e2f3a_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('guest', 'idempotency_key'), name='unique_reservation_idempotency_key'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Contract',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('contract_number', models.CharField(editable=False, max_length=20, unique=True, verbose_name='contract number')),
                ('sqm', area(verbose_name='area (m2)')),
                ('period_type', models.CharField(choices=PERIOD_CHOICES, max_length=10, verbose_name='period type')),
                ('period_count', models.PositiveIntegerField(verbose_name='period count')),
                ('start_date', models.DateField(verbose_name='start date')),
                ('end_date', models.DateField(verbose_name='end date')),
                ('total_amount', money(verbose_name='total amount')),
                ('commission_rate', rate(blank=True, help_text='Platform commission in effect when both parties signed.', null=True, validators=[rentals.validators.validate_percentage], verbose_name='commission rate')),
                ('commission_amount', money(blank=True, null=True, verbose_name='commission amount')),
                ('host_payout_amount', money(blank=True, null=True, verbose_name='host payout amount')),
                ('guest_signed', models.BooleanField(default=False, verbose_name='signed by guest')),
                ('guest_signed_at', models.DateTimeField(blank=True, null=True)),
                ('guest_signed_ip', models.GenericIPAddressField(blank=True, null=True)),
                ('host_signed', models.BooleanField(default=False, verbose_name='signed by host')),
                ('host_signed_at', models.DateTimeField(blank=True, null=True)),
                ('host_signed_ip', models.GenericIPAddressField(blank=True, null=True)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('pending_signatures', 'Pending signatures'), ('signed', 'Signed'), ('active', 'Active'), ('extended', 'Extended'), ('completed', 'Completed')], default='draft', max_length=20, verbose_name='status')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('reservation', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='contract', to='rentals.reservation')),
            ],
            options={
                'verbose_name': 'contract',
                'verbose_name_plural': 'contracts',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='rentals_con_status_2a3b4c_idx'),
                    models.Index(fields=['end_date'], name='rentals_con_end_dat_5d6e7f_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('payment_type', models.CharField(choices=[('deposit', 'Deposit'), ('extension', 'Extension'), ('balance', 'Balance')], max_length=20, verbose_name='payment type')),
                ('amount', money(validators=[django.core.validators.MinValueValidator(decimal.Decimal('0.01'))], verbose_name='amount')),
                ('method', models.CharField(choices=[('card', 'Card'), ('qr', 'QR transfer')], max_length=10, verbose_name='method')),
                ('escrow_status', models.CharField(choices=[('pending', 'Pending'), ('held', 'Held'), ('released', 'Released'), ('refunded', 'Refunded'), ('voided', 'Voided')], default='pending', max_length=20, verbose_name='escrow status')),
                ('idempotency_key', models.CharField(max_length=150, unique=True, verbose_name='idempotency key')),
                ('authorization_reference', models.CharField(blank=True, default='', max_length=100)),
                ('capture_reference', models.CharField(blank=True, default='', max_length=100)),
                ('refund_reference', models.CharField(blank=True, default='', max_length=100)),
                ('commission_rate', rate(blank=True, null=True, validators=[rentals.validators.validate_percentage])),
                ('commission_amount', money(blank=True, null=True)),
                ('host_payout_amount', money(blank=True, null=True)),
                ('attempts', models.PositiveIntegerField(default=0, verbose_name='capture attempts')),
                ('last_error', models.TextField(blank=True, default='', verbose_name='last error')),
                ('held_at', models.DateTimeField(blank=True, null=True)),
                ('released_at', models.DateTimeField(blank=True, null=True)),
                ('refunded_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('contract', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='payments', to='rentals.contract')),
                ('payer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments', to=settings.AUTH_USER_MODEL)),
                ('reservation', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='payments', to='rentals.reservation')),
            ],
            options={
                'verbose_name': 'payment',
                'verbose_name_plural': 'payments',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['escrow_status'], name='rentals_pay_escrow__8a9b0c_idx'),
                    models.Index(fields=['payer'], name='rentals_pay_payer_i_1d2e3f_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=(
                            models.Q(('contract__isnull', True), ('reservation__isnull', False))
                            | models.Q(('contract__isnull', False), ('reservation__isnull', True))
                        ),
                        name='payment_has_exactly_one_owner',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='ContractExtension',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('period_type', models.CharField(choices=PERIOD_CHOICES, max_length=10, verbose_name='period type')),
                ('period_count', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)], verbose_name='period count')),
                ('price_per_sqm_applied', money()),
                ('amount', money()),
                ('commission_amount', money()),
                ('host_payout_amount', money()),
                ('original_end_date', models.DateField()),
                ('new_end_date', models.DateField()),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('contract', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='extensions', to='rentals.contract')),
                ('payment', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='extension', to='rentals.payment')),
            ],
            options={
                'verbose_name': 'contract extension',
                'verbose_name_plural': 'contract extensions',
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='Appointment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('scheduled_date', models.DateField(verbose_name='scheduled date')),
                ('scheduled_time', models.TimeField(verbose_name='scheduled time')),
                ('status', models.CharField(choices=[('solicitada', 'Requested'), ('aceptada', 'Accepted'), ('rechazada', 'Rejected'), ('reprogramada', 'Reschedule proposed'), ('realizada', 'Completed'), ('no_asistida', 'No show')], default='solicitada', max_length=20, verbose_name='status')),
                ('reschedule_date', models.DateField(blank=True, null=True)),
                ('reschedule_time', models.TimeField(blank=True, null=True)),
                ('reschedule_reason', models.TextField(blank=True, default='')),
                ('guest_accepted_anti_bypass', models.BooleanField(default=False, help_text='Asked again for every appointment.', verbose_name='guest accepted anti-bypass')),
                ('guest_accepted_anti_bypass_at', models.DateTimeField(blank=True, null=True)),
                ('guest_accepted_anti_bypass_ip', models.GenericIPAddressField(blank=True, null=True)),
                ('guest_anti_bypass_legal_version', models.CharField(blank=True, default='', max_length=50)),
                ('notes', models.TextField(blank=True, default='', verbose_name='notes')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('reservation', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='appointments', to='rentals.reservation')),
            ],
            options={
                'verbose_name': 'appointment',
                'verbose_name_plural': 'appointments',
                'ordering': ['-created_at'],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(('status__in', ['solicitada', 'reprogramada', 'aceptada'])),
                        fields=('reservation',),
                        name='one_open_appointment_per_reservation',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(max_length=50, verbose_name='action')),
                ('entity_type', models.CharField(max_length=50, verbose_name='entity type')),
                ('entity_id', models.CharField(max_length=50, verbose_name='entity id')),
                ('old_data', models.JSONField(blank=True, null=True)),
                ('new_data', models.JSONField(blank=True, null=True)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='audit_entries', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'audit log entry',
                'verbose_name_plural': 'audit log',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['entity_type', 'entity_id'], name='rentals_aud_entity__4a5b6c_idx'),
                    models.Index(fields=['created_at'], name='rentals_aud_created_7d8e9f_idx'),
                ],
            },
        ),
    ]
