"""
Models for the storage space rental marketplace.

Aggregates:
- Space: rentable area published by a host, with a per-period price table
- Reservation: aggregate root of a rental; owns its Payments, Appointments
  and its single Contract
- Payment: escrow ledger entry (deposit, extension or balance)
- Contract / ContractExtension: signed rental agreement and its extensions
- Appointment: on-site visit negotiated between guest and host
- PlatformSetting / AuditLog: admin configuration and lifecycle trail
"""

import secrets
import string
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .exceptions import InvalidTransition
from .pricing import PERIOD_CHOICES, PERIOD_UNITS
from .validators import validate_percentage, validate_phone_number, validate_positive_rate


MONEY = {'max_digits': 12, 'decimal_places': 2}
AREA = {'max_digits': 10, 'decimal_places': 2}
RATE = {'max_digits': 5, 'decimal_places': 2}


class User(AbstractUser):
    """
    Marketplace account.

    Additional fields:
    - email: Required, unique, used to log in
    - role: guest (rents space), host (publishes space) or admin
    - anti_bypass_*: account-level acceptance of the host anti-bypass clause
    - phone_number: Optional contact number
    """

    ROLE_CHOICES = [
        ('guest', 'Guest'),
        ('host', 'Host'),
        ('admin', 'Administrator'),
    ]

    email = models.EmailField(
        _('email address'),
        unique=True,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Used to log in.')
    )

    role = models.CharField(
        _('role'),
        max_length=10,
        choices=ROLE_CHOICES,
        default='guest',
        help_text=_('Guests rent space, hosts publish it.')
    )

    phone_number = models.CharField(
        _('phone number'),
        max_length=20,
        blank=True,
        default='',
        validators=[validate_phone_number],
        help_text=_('Optional. Enter phone number in international format.')
    )

    anti_bypass_accepted = models.BooleanField(
        _('anti-bypass accepted'),
        default=False,
        help_text=_('Host accepted the clause forbidding off-platform deals.')
    )

    anti_bypass_accepted_at = models.DateTimeField(
        _('anti-bypass accepted at'),
        null=True,
        blank=True
    )

    anti_bypass_legal_version = models.CharField(
        _('anti-bypass legal version'),
        max_length=50,
        blank=True,
        default=''
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['role'], name='rentals_use_role_6c1f2e_idx'),
        ]

    def __str__(self):
        return self.email or self.username

    def is_guest(self):
        return self.role == 'guest'

    def is_host(self):
        return self.role == 'host'

    def is_platform_admin(self):
        return self.role == 'admin' or self.is_staff

    def clean(self):
        """
        Normalize email and require it.

        Raises:
            ValidationError: If email is missing
        """
        super().clean()
        if self.email:
            self.email = self.email.lower()
        if not self.email:
            raise ValidationError({'email': _('Email address is required.')})

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.lower()
        # Creation skips full_clean so duplicate emails surface as IntegrityError
        if self.pk is not None:
            self.full_clean()
        super().save(*args, **kwargs)


class Space(models.Model):
    """
    Storage space offered by a host.

    The price table holds one optional rate per period unit. A unit whose
    rate is NULL is not offered.
    """

    SPACE_TYPE_CHOICES = [
        ('warehouse', 'Warehouse'),
        ('shed', 'Shed'),
        ('storeroom', 'Storeroom'),
        ('room', 'Room'),
        ('container', 'Container'),
        ('yard', 'Yard'),
        ('garage', 'Garage'),
    ]

    ACCESS_CHOICES = [
        ('free', 'Free access'),
        ('scheduled', 'Scheduled access'),
        ('supervised', 'Supervised access'),
    ]

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('published', 'Published'),
        ('paused', 'Paused'),
    ]

    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='spaces'
    )
    title = models.CharField(_('title'), max_length=200)
    description = models.TextField(_('description'), blank=True, default='')
    space_type = models.CharField(
        _('space type'),
        max_length=20,
        choices=SPACE_TYPE_CHOICES,
        default='storeroom'
    )
    total_sqm = models.DecimalField(
        _('total area (m2)'),
        validators=[MinValueValidator(Decimal('0.01'))],
        **AREA
    )
    available_sqm = models.DecimalField(
        _('rentable area (m2)'),
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text=_('Area that can be reserved. Cannot exceed the total area.'),
        **AREA
    )

    has_roof = models.BooleanField(_('roofed'), default=True)
    rain_protected = models.BooleanField(_('rain protected'), default=True)
    dust_protected = models.BooleanField(_('dust protected'), default=False)
    has_security = models.BooleanField(_('security'), default=False)
    access_type = models.CharField(
        _('access type'),
        max_length=20,
        choices=ACCESS_CHOICES,
        default='scheduled'
    )

    address = models.CharField(_('address'), max_length=255, blank=True, default='')
    city = models.CharField(_('city'), max_length=100, blank=True, default='')

    price_per_sqm_day = models.DecimalField(
        _('price per m2 per day'), null=True, blank=True,
        validators=[validate_positive_rate], **MONEY
    )
    price_per_sqm_week = models.DecimalField(
        _('price per m2 per week'), null=True, blank=True,
        validators=[validate_positive_rate], **MONEY
    )
    price_per_sqm_month = models.DecimalField(
        _('price per m2 per month'), null=True, blank=True,
        validators=[validate_positive_rate], **MONEY
    )
    price_per_sqm_quarter = models.DecimalField(
        _('price per m2 per quarter'), null=True, blank=True,
        validators=[validate_positive_rate], **MONEY
    )
    price_per_sqm_semester = models.DecimalField(
        _('price per m2 per semester'), null=True, blank=True,
        validators=[validate_positive_rate], **MONEY
    )
    price_per_sqm_year = models.DecimalField(
        _('price per m2 per year'), null=True, blank=True,
        validators=[validate_positive_rate], **MONEY
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='draft'
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('space')
        verbose_name_plural = _('spaces')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['host'], name='rentals_spa_host_id_1b7c3a_idx'),
            models.Index(fields=['status'], name='rentals_spa_status_4d2e8f_idx'),
            models.Index(fields=['city'], name='rentals_spa_city_9a0b5c_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.available_sqm} m2)"

    def price_table(self):
        """Return {period unit: rate or None} for the pricing engine."""
        return {unit: getattr(self, f'price_per_sqm_{unit}') for unit in PERIOD_UNITS}

    def has_price_tier(self):
        return any(rate is not None and rate > 0 for rate in self.price_table().values())

    def reserved_sqm(self, exclude_reservation_id=None):
        """
        Area currently held by reservations in a holding state.

        Args:
            exclude_reservation_id: Reservation to leave out of the sum
        """
        reservations = self.reservations.filter(status__in=Reservation.HOLDING_STATUSES)
        if exclude_reservation_id is not None:
            reservations = reservations.exclude(pk=exclude_reservation_id)
        return reservations.aggregate(total=Sum('requested_sqm'))['total'] or Decimal('0')

    def remaining_sqm(self):
        return self.available_sqm - self.reserved_sqm()

    def clean(self):
        """
        Validate areas and publication requirements.

        Ensures:
        - Rentable area does not exceed total area
        - A published space has at least one price tier
        - A published space belongs to a host who accepted the anti-bypass clause
        """
        super().clean()

        if self.total_sqm is not None and self.available_sqm is not None:
            if self.available_sqm > self.total_sqm:
                raise ValidationError({
                    'available_sqm': _('Rentable area cannot exceed the total area.')
                })

        if self.status == 'published':
            if not self.has_price_tier():
                raise ValidationError({
                    'status': _('Set at least one price per m2 before publishing.')
                })
            if self.host_id and not self.host.anti_bypass_accepted:
                raise ValidationError({
                    'status': _('The host must accept the anti-bypass clause before publishing.')
                })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class PlatformSetting(models.Model):
    """
    Admin-editable platform ratio (deposit or commission percentage).

    Rows override PLATFORM_DEFAULTS from Django settings. Values are read on
    every use and never cached.
    """

    KEY_CHOICES = [
        ('deposit_percentage', 'Deposit percentage'),
        ('commission_percentage', 'Commission percentage'),
    ]

    key = models.CharField(_('key'), max_length=50, choices=KEY_CHOICES, unique=True)
    value = models.DecimalField(_('value'), validators=[validate_percentage], **RATE)
    description = models.CharField(_('description'), max_length=255, blank=True, default='')
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('platform setting')
        verbose_name_plural = _('platform settings')
        ordering = ['key']

    def __str__(self):
        return f"{self.key} = {self.value}"

    @classmethod
    def current_value(cls, key):
        """
        Return the effective percentage for key.

        Raises:
            KeyError: If key has neither a row nor a default
        """
        setting = cls.objects.filter(key=key).first()
        if setting is not None:
            return setting.value
        return Decimal(str(settings.PLATFORM_DEFAULTS[key]))

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class Reservation(models.Model):
    """
    A guest's reservation of part of a space.

    Created together with its deposit Payment in pending_payment. Status only
    moves along VALID_TRANSITIONS; terminal rows are kept, never deleted.
    """

    STATUS_CHOICES = [
        ('pending_payment', 'Pending payment'),
        ('deposit_held', 'Deposit held'),
        ('visit_required', 'Visit required'),
        ('confirmable', 'Confirmable'),
        ('contract_pending', 'Contract pending'),
        ('active', 'Active'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('refunded', 'Refunded'),
    ]

    VALID_TRANSITIONS = {
        'pending_payment': ['deposit_held', 'cancelled'],
        'deposit_held': ['visit_required', 'contract_pending', 'refunded'],
        'visit_required': ['confirmable', 'refunded'],
        'confirmable': ['contract_pending', 'refunded'],
        'contract_pending': ['active'],
        'active': ['completed'],
        'completed': [],
        'cancelled': [],
        'refunded': [],
    }

    # States that keep area reserved on the space
    HOLDING_STATUSES = [
        'pending_payment',
        'deposit_held',
        'visit_required',
        'confirmable',
        'contract_pending',
        'active',
    ]

    CANCELLABLE_STATUSES = ['deposit_held', 'visit_required', 'confirmable']

    AUDIT_STATUS_FIELD = 'status'

    space = models.ForeignKey(Space, on_delete=models.PROTECT, related_name='reservations')
    guest = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='guest_reservations'
    )
    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='host_reservations'
    )

    requested_sqm = models.DecimalField(
        _('requested area (m2)'),
        validators=[MinValueValidator(Decimal('0.01'))],
        **AREA
    )
    period_type = models.CharField(_('period type'), max_length=10, choices=PERIOD_CHOICES)
    period_count = models.PositiveIntegerField(
        _('period count'),
        validators=[MinValueValidator(1)]
    )
    price_per_sqm_applied = models.DecimalField(_('price per m2 applied'), **MONEY)
    total_amount = models.DecimalField(_('total amount'), **MONEY)
    deposit_percentage = models.DecimalField(
        _('deposit percentage'),
        validators=[validate_percentage],
        help_text=_('Platform deposit ratio in effect when the reservation was quoted.'),
        **RATE
    )
    deposit_amount = models.DecimalField(_('deposit amount'), **MONEY)
    remaining_amount = models.DecimalField(_('remaining amount'), **MONEY)
    frozen_pricing = models.JSONField(
        _('frozen price table'),
        blank=True,
        default=dict,
        help_text=_('Space price table at creation time. Extensions are priced from it.')
    )

    idempotency_key = models.CharField(_('idempotency key'), max_length=100)
    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending_payment'
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('reservation')
        verbose_name_plural = _('reservations')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['space', 'status'], name='rentals_res_space_i_5e6f7a_idx'),
            models.Index(fields=['guest'], name='rentals_res_guest_i_8b9c0d_idx'),
            models.Index(fields=['host'], name='rentals_res_host_id_1e2f3a_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['guest', 'idempotency_key'],
                name='unique_reservation_idempotency_key'
            ),
        ]

    def __str__(self):
        return f"Reservation #{self.pk} - {self.requested_sqm} m2 of {self.space_id} ({self.status})"

    def can_transition_to(self, new_status):
        return new_status in self.VALID_TRANSITIONS.get(self.status, [])

    def transition_to(self, new_status):
        """
        Move to new_status in memory. The caller saves inside its atomic block.

        Raises:
            InvalidTransition: If new_status is not adjacent to the current one
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransition(
                f'Reservation cannot move from {self.status} to {new_status}.',
                current_status=self.status,
            )
        self.status = new_status

    def quoted_breakdown(self):
        return {
            'total_amount': self.total_amount,
            'deposit_amount': self.deposit_amount,
        }

    def clean(self):
        """
        Validate amounts, parties and status transitions.

        Ensures:
        - Guest and host are different users
        - deposit + remaining == total
        - Status changes follow VALID_TRANSITIONS
        """
        super().clean()

        if self.guest_id and self.host_id and self.guest_id == self.host_id:
            raise ValidationError({'guest': _('Hosts cannot reserve their own space.')})

        if self.period_type and self.period_type not in PERIOD_UNITS:
            raise ValidationError({'period_type': _('Unknown period type.')})

        if None not in (self.total_amount, self.deposit_amount, self.remaining_amount):
            if self.deposit_amount + self.remaining_amount != self.total_amount:
                raise ValidationError({
                    'remaining_amount': _('Deposit and remaining amount must add up to the total.')
                })

        if self.pk is not None:
            old_status = Reservation.objects.filter(pk=self.pk).values_list('status', flat=True).first()
            if old_status and old_status != self.status:
                if self.status not in self.VALID_TRANSITIONS.get(old_status, []):
                    raise ValidationError({
                        'status': f'Invalid reservation status transition from {old_status} to {self.status}.'
                    })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


def generate_contract_number():
    """Return a contract number in the form CTR-YYYYMM-XXXXXX."""
    alphabet = string.ascii_uppercase + string.digits
    suffix = ''.join(secrets.choice(alphabet) for _ in range(6))
    return f"CTR-{timezone.now():%Y%m}-{suffix}"


class Contract(models.Model):
    """
    Rental contract for a reservation, signed by both parties with an OTP.

    Status cannot move past pending_signatures until both signature flags
    are set. Extensions append ContractExtension rows to the same contract.
    """

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('pending_signatures', 'Pending signatures'),
        ('signed', 'Signed'),
        ('active', 'Active'),
        ('extended', 'Extended'),
        ('completed', 'Completed'),
    ]

    VALID_TRANSITIONS = {
        'draft': ['pending_signatures'],
        'pending_signatures': ['signed'],
        'signed': ['active', 'extended'],
        'active': ['extended', 'completed'],
        'extended': ['active'],
        'completed': [],
    }

    SIGNED_STATUSES = ['signed', 'active', 'extended', 'completed']

    AUDIT_STATUS_FIELD = 'status'

    reservation = models.OneToOneField(
        Reservation,
        on_delete=models.PROTECT,
        related_name='contract'
    )
    contract_number = models.CharField(_('contract number'), max_length=20, unique=True, editable=False)

    sqm = models.DecimalField(_('area (m2)'), **AREA)
    period_type = models.CharField(_('period type'), max_length=10, choices=PERIOD_CHOICES)
    period_count = models.PositiveIntegerField(_('period count'))
    start_date = models.DateField(_('start date'))
    end_date = models.DateField(_('end date'))

    total_amount = models.DecimalField(_('total amount'), **MONEY)
    commission_rate = models.DecimalField(
        _('commission rate'),
        null=True,
        blank=True,
        validators=[validate_percentage],
        help_text=_('Platform commission in effect when both parties signed.'),
        **RATE
    )
    commission_amount = models.DecimalField(_('commission amount'), null=True, blank=True, **MONEY)
    host_payout_amount = models.DecimalField(_('host payout amount'), null=True, blank=True, **MONEY)

    guest_signed = models.BooleanField(_('signed by guest'), default=False)
    guest_signed_at = models.DateTimeField(null=True, blank=True)
    guest_signed_ip = models.GenericIPAddressField(null=True, blank=True)
    host_signed = models.BooleanField(_('signed by host'), default=False)
    host_signed_at = models.DateTimeField(null=True, blank=True)
    host_signed_ip = models.GenericIPAddressField(null=True, blank=True)

    status = models.CharField(_('status'), max_length=20, choices=STATUS_CHOICES, default='draft')

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('contract')
        verbose_name_plural = _('contracts')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='rentals_con_status_2a3b4c_idx'),
            models.Index(fields=['end_date'], name='rentals_con_end_dat_5d6e7f_idx'),
        ]

    def __str__(self):
        return f"{self.contract_number} ({self.status})"

    @property
    def both_signed(self):
        return self.guest_signed and self.host_signed

    def can_transition_to(self, new_status):
        return new_status in self.VALID_TRANSITIONS.get(self.status, [])

    def transition_to(self, new_status):
        if not self.can_transition_to(new_status):
            raise InvalidTransition(
                f'Contract cannot move from {self.status} to {new_status}.',
                current_status=self.status,
            )
        self.status = new_status

    def clean(self):
        super().clean()

        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValidationError({'end_date': _('End date must be after the start date.')})

        if self.status in self.SIGNED_STATUSES and not self.both_signed:
            raise ValidationError({
                'status': _('A contract needs both signatures before it can be signed.')
            })

        if self.pk is not None:
            old_status = Contract.objects.filter(pk=self.pk).values_list('status', flat=True).first()
            if old_status and old_status != self.status:
                if self.status not in self.VALID_TRANSITIONS.get(old_status, []):
                    raise ValidationError({
                        'status': f'Invalid contract status transition from {old_status} to {self.status}.'
                    })

    def save(self, *args, **kwargs):
        if not self.contract_number:
            number = generate_contract_number()
            while Contract.objects.filter(contract_number=number).exists():
                number = generate_contract_number()
            self.contract_number = number
        self.full_clean()
        super().save(*args, **kwargs)


class Payment(models.Model):
    """
    Escrow ledger entry.

    Belongs to exactly one reservation (deposit) or one contract (extension,
    balance). Escrow status is monotonic; the commission split is written
    once, at release.
    """

    PAYMENT_TYPE_CHOICES = [
        ('deposit', 'Deposit'),
        ('extension', 'Extension'),
        ('balance', 'Balance'),
    ]

    METHOD_CHOICES = [
        ('card', 'Card'),
        ('qr', 'QR transfer'),
    ]

    ESCROW_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('held', 'Held'),
        ('released', 'Released'),
        ('refunded', 'Refunded'),
        ('voided', 'Voided'),
    ]

    VALID_TRANSITIONS = {
        'pending': ['held', 'voided'],
        'held': ['released', 'refunded'],
        'released': [],
        'refunded': [],
        'voided': [],
    }

    # Statuses that no longer count towards the owner's total
    RETURNED_STATUSES = ['refunded', 'voided']

    AUDIT_STATUS_FIELD = 'escrow_status'

    reservation = models.ForeignKey(
        Reservation,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='payments'
    )
    contract = models.ForeignKey(
        Contract,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='payments'
    )
    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='payments'
    )

    payment_type = models.CharField(_('payment type'), max_length=20, choices=PAYMENT_TYPE_CHOICES)
    amount = models.DecimalField(
        _('amount'),
        validators=[MinValueValidator(Decimal('0.01'))],
        **MONEY
    )
    method = models.CharField(_('method'), max_length=10, choices=METHOD_CHOICES)
    escrow_status = models.CharField(
        _('escrow status'),
        max_length=20,
        choices=ESCROW_STATUS_CHOICES,
        default='pending'
    )
    idempotency_key = models.CharField(_('idempotency key'), max_length=150, unique=True)

    authorization_reference = models.CharField(max_length=100, blank=True, default='')
    capture_reference = models.CharField(max_length=100, blank=True, default='')
    refund_reference = models.CharField(max_length=100, blank=True, default='')

    commission_rate = models.DecimalField(null=True, blank=True, validators=[validate_percentage], **RATE)
    commission_amount = models.DecimalField(null=True, blank=True, **MONEY)
    host_payout_amount = models.DecimalField(null=True, blank=True, **MONEY)

    attempts = models.PositiveIntegerField(_('capture attempts'), default=0)
    last_error = models.TextField(_('last error'), blank=True, default='')

    held_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('payment')
        verbose_name_plural = _('payments')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['escrow_status'], name='rentals_pay_escrow__8a9b0c_idx'),
            models.Index(fields=['payer'], name='rentals_pay_payer_i_1d2e3f_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(reservation__isnull=False, contract__isnull=True)
                    | Q(reservation__isnull=True, contract__isnull=False)
                ),
                name='payment_has_exactly_one_owner'
            ),
        ]

    def __str__(self):
        return f"{self.payment_type} payment #{self.pk} - {self.amount} ({self.escrow_status})"

    @property
    def owner(self):
        return self.reservation if self.reservation_id else self.contract

    def can_transition_to(self, new_status):
        return new_status in self.VALID_TRANSITIONS.get(self.escrow_status, [])

    def clean(self):
        """
        Validate ownership, the owner's total and escrow transitions.

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if bool(self.reservation_id) == bool(self.contract_id):
            raise ValidationError(_('A payment belongs to exactly one reservation or contract.'))

        if self.amount is not None and self.escrow_status not in self.RETURNED_STATUSES:
            owner = self.owner
            committed = (
                owner.payments
                .exclude(pk=self.pk)
                .exclude(escrow_status__in=self.RETURNED_STATUSES)
                .aggregate(total=Sum('amount'))['total']
            ) or Decimal('0')
            if committed + self.amount > owner.total_amount:
                raise ValidationError({
                    'amount': _('Payments cannot exceed the total amount.')
                })

        if self.pk is not None:
            old_status = Payment.objects.filter(pk=self.pk).values_list('escrow_status', flat=True).first()
            if old_status and old_status != self.escrow_status:
                if self.escrow_status not in self.VALID_TRANSITIONS.get(old_status, []):
                    raise ValidationError({
                        'escrow_status': f'Invalid escrow status transition from {old_status} to {self.escrow_status}.'
                    })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class ContractExtension(models.Model):
    """Extension of a contract's period, paid through its own escrow payment."""

    contract = models.ForeignKey(Contract, on_delete=models.PROTECT, related_name='extensions')
    payment = models.OneToOneField(Payment, on_delete=models.PROTECT, related_name='extension')
    period_type = models.CharField(_('period type'), max_length=10, choices=PERIOD_CHOICES)
    period_count = models.PositiveIntegerField(_('period count'), validators=[MinValueValidator(1)])
    price_per_sqm_applied = models.DecimalField(**MONEY)
    amount = models.DecimalField(**MONEY)
    commission_amount = models.DecimalField(**MONEY)
    host_payout_amount = models.DecimalField(**MONEY)
    original_end_date = models.DateField()
    new_end_date = models.DateField()
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('contract extension')
        verbose_name_plural = _('contract extensions')
        ordering = ['created_at']

    def __str__(self):
        return f"Extension of {self.contract_id} to {self.new_end_date}"


class Appointment(models.Model):
    """
    Visit to the space before signing.

    Transitions are role gated: TRANSITIONS maps (from, to) to the party
    allowed to make the move. At most one open appointment per reservation.
    """

    STATUS_CHOICES = [
        ('solicitada', 'Requested'),
        ('aceptada', 'Accepted'),
        ('rechazada', 'Rejected'),
        ('reprogramada', 'Reschedule proposed'),
        ('realizada', 'Completed'),
        ('no_asistida', 'No show'),
    ]

    TRANSITIONS = {
        ('solicitada', 'aceptada'): 'host',
        ('solicitada', 'rechazada'): 'host',
        ('solicitada', 'reprogramada'): 'host',
        ('reprogramada', 'aceptada'): 'guest',
        ('aceptada', 'realizada'): 'host',
        ('aceptada', 'no_asistida'): 'host',
    }

    OPEN_STATUSES = ['solicitada', 'reprogramada', 'aceptada']

    AUDIT_STATUS_FIELD = 'status'

    reservation = models.ForeignKey(Reservation, on_delete=models.PROTECT, related_name='appointments')
    scheduled_date = models.DateField(_('scheduled date'))
    scheduled_time = models.TimeField(_('scheduled time'))
    status = models.CharField(_('status'), max_length=20, choices=STATUS_CHOICES, default='solicitada')

    reschedule_date = models.DateField(null=True, blank=True)
    reschedule_time = models.TimeField(null=True, blank=True)
    reschedule_reason = models.TextField(blank=True, default='')

    guest_accepted_anti_bypass = models.BooleanField(
        _('guest accepted anti-bypass'),
        default=False,
        help_text=_('Asked again for every appointment.')
    )
    guest_accepted_anti_bypass_at = models.DateTimeField(null=True, blank=True)
    guest_accepted_anti_bypass_ip = models.GenericIPAddressField(null=True, blank=True)
    guest_anti_bypass_legal_version = models.CharField(max_length=50, blank=True, default='')

    notes = models.TextField(_('notes'), blank=True, default='')

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('appointment')
        verbose_name_plural = _('appointments')
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['reservation'],
                condition=Q(status__in=['solicitada', 'reprogramada', 'aceptada']),
                name='one_open_appointment_per_reservation'
            ),
        ]

    def __str__(self):
        return f"Appointment #{self.pk} on {self.scheduled_date} {self.scheduled_time} ({self.status})"

    def party_role(self, user):
        """Return 'guest' or 'host' for the parties of the reservation, else None."""
        if user.pk == self.reservation.guest_id:
            return 'guest'
        if user.pk == self.reservation.host_id:
            return 'host'
        return None

    def transition_to(self, new_status, role):
        """
        Raises:
            InvalidTransition: If the edge does not exist or belongs to the other party
        """
        allowed_role = self.TRANSITIONS.get((self.status, new_status))
        if allowed_role is None or allowed_role != role:
            raise InvalidTransition(
                f'The {role} cannot move an appointment from {self.status} to {new_status}.',
                current_status=self.status,
            )
        self.status = new_status

    def clean(self):
        super().clean()
        if self.status == 'reprogramada' and (self.reschedule_date is None or self.reschedule_time is None):
            raise ValidationError({'reschedule_date': _('A reschedule proposal needs a date and a time.')})

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class AuditLog(models.Model):
    """Append-only record of lifecycle changes."""

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_entries'
    )
    action = models.CharField(_('action'), max_length=50)
    entity_type = models.CharField(_('entity type'), max_length=50)
    entity_id = models.CharField(_('entity id'), max_length=50)
    old_data = models.JSONField(null=True, blank=True)
    new_data = models.JSONField(null=True, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('audit log entry')
        verbose_name_plural = _('audit log')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id'], name='rentals_aud_entity__4a5b6c_idx'),
            models.Index(fields=['created_at'], name='rentals_aud_created_7d8e9f_idx'),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_type}#{self.entity_id}"
