"""
Serializers for accounts, quotes, reservations, appointments, contracts,
payments and platform administration.

Lifecycle fields are read-only everywhere: clients change state only
through the action endpoints, which call the service modules.
"""

import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.hashers import make_password
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .models import (
    AuditLog,
    Appointment,
    Contract,
    ContractExtension,
    Payment,
    Reservation,
    Space,
)
from .pricing import PERIOD_CHOICES

User = get_user_model()

AREA_FIELD = {'max_digits': 10, 'decimal_places': 2}
MONEY_FIELD = {'max_digits': 12, 'decimal_places': 2}


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Obtain a JWT pair with email and password.
    """
    username_field = 'email'


class UserRegistrationSerializer(serializers.ModelSerializer):
    """
    Serializer for account registration.

    Fields:
    - email: Required, unique (case-insensitive)
    - password / confirm_password: Required, validated by Django's validators
    - phone_number: Optional
    - role: 'guest' or 'host' (administrators are never self-registered)
    """

    password = serializers.CharField(write_only=True, style={'input_type': 'password'})
    confirm_password = serializers.CharField(write_only=True, style={'input_type': 'password'})
    role = serializers.ChoiceField(choices=[('guest', 'Guest'), ('host', 'Host')])

    class Meta:
        model = User
        fields = ['id', 'email', 'password', 'confirm_password', 'phone_number', 'role', 'created_at']
        read_only_fields = ['id', 'created_at']
        extra_kwargs = {
            'email': {'required': True},
        }

    def validate_email(self, value):
        value = value.strip().lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("A user with that email already exists.")
        return value

    def validate_password(self, value):
        try:
            validate_password(value)
        except DjangoValidationError as e:
            raise serializers.ValidationError(list(e.messages))
        return value

    def validate(self, attrs):
        if attrs.get('password') != attrs.get('confirm_password'):
            raise serializers.ValidationError({
                'confirm_password': 'Password confirmation does not match.'
            })
        return attrs

    def create(self, validated_data):
        validated_data.pop('confirm_password', None)
        validated_data['password'] = make_password(validated_data.pop('password'))
        # AbstractUser requires a unique username; email is unique already
        validated_data['username'] = validated_data['email'][:150]

        with transaction.atomic():
            return User.objects.create(**validated_data)


class UserProfileSerializer(serializers.ModelSerializer):
    """Read-only profile of the authenticated user, including compliance state."""

    class Meta:
        model = User
        fields = [
            'id',
            'email',
            'phone_number',
            'role',
            'anti_bypass_accepted',
            'anti_bypass_accepted_at',
            'anti_bypass_legal_version',
            'created_at',
        ]
        read_only_fields = fields


class UserProfileUpdateSerializer(serializers.ModelSerializer):
    """Only contact details are editable. Role and compliance flags are not."""

    class Meta:
        model = User
        fields = ['phone_number']


class QuoteRequestSerializer(serializers.Serializer):
    area = serializers.DecimalField(min_value=Decimal('0.01'), **AREA_FIELD)
    period_type = serializers.ChoiceField(choices=PERIOD_CHOICES)
    period_count = serializers.IntegerField(min_value=1, max_value=120)


class QuoteSerializer(serializers.Serializer):
    """Price breakdown returned by the quote endpoint."""
    period_type = serializers.CharField()
    period_count = serializers.IntegerField()
    area = serializers.DecimalField(**AREA_FIELD)
    price_per_sqm = serializers.DecimalField(**MONEY_FIELD)
    total_amount = serializers.DecimalField(**MONEY_FIELD)
    deposit_percentage = serializers.DecimalField(max_digits=5, decimal_places=2)
    deposit_amount = serializers.DecimalField(**MONEY_FIELD)
    remaining_amount = serializers.DecimalField(**MONEY_FIELD)


class ReservationCreateSerializer(serializers.Serializer):
    """
    Input for creating a reservation.

    total_amount and deposit_amount are the figures the guest was quoted;
    they are compared with a fresh quote before anything is charged.
    """
    space = serializers.PrimaryKeyRelatedField(queryset=Space.objects.all())
    area = serializers.DecimalField(min_value=Decimal('0.01'), **AREA_FIELD)
    period_type = serializers.ChoiceField(choices=PERIOD_CHOICES)
    period_count = serializers.IntegerField(min_value=1, max_value=120)
    total_amount = serializers.DecimalField(min_value=Decimal('0.01'), **MONEY_FIELD)
    deposit_amount = serializers.DecimalField(min_value=0, **MONEY_FIELD)
    payment_method = serializers.ChoiceField(choices=Payment.METHOD_CHOICES)
    idempotency_key = serializers.CharField(max_length=100)


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            'id',
            'reservation',
            'contract',
            'payment_type',
            'amount',
            'method',
            'escrow_status',
            'commission_rate',
            'commission_amount',
            'host_payout_amount',
            'last_error',
            'held_at',
            'released_at',
            'refunded_at',
            'created_at',
        ]
        read_only_fields = fields


class AppointmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Appointment
        fields = [
            'id',
            'reservation',
            'scheduled_date',
            'scheduled_time',
            'status',
            'reschedule_date',
            'reschedule_time',
            'reschedule_reason',
            'guest_accepted_anti_bypass',
            'guest_accepted_anti_bypass_at',
            'notes',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class ReservationSerializer(serializers.ModelSerializer):
    """
    Read projection of a reservation with its escrow payments.
    """
    space_title = serializers.CharField(source='space.title', read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    contract_id = serializers.SerializerMethodField()

    class Meta:
        model = Reservation
        fields = [
            'id',
            'space',
            'space_title',
            'guest',
            'host',
            'requested_sqm',
            'period_type',
            'period_count',
            'price_per_sqm_applied',
            'total_amount',
            'deposit_percentage',
            'deposit_amount',
            'remaining_amount',
            'status',
            'payments',
            'contract_id',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_contract_id(self, obj):
        contract = Contract.objects.filter(reservation=obj).only('pk').first()
        return contract.pk if contract else None


def _validate_future_slot(date, time):
    scheduled = timezone.make_aware(datetime.datetime.combine(date, time))
    if scheduled <= timezone.now():
        raise serializers.ValidationError('Visits must be scheduled in the future.')


class AppointmentRequestSerializer(serializers.Serializer):
    scheduled_date = serializers.DateField()
    scheduled_time = serializers.TimeField()

    def validate(self, attrs):
        _validate_future_slot(attrs['scheduled_date'], attrs['scheduled_time'])
        return attrs


class RescheduleProposalSerializer(serializers.Serializer):
    """Host's counter-proposal for a requested visit."""
    new_date = serializers.DateField()
    new_time = serializers.TimeField()
    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')

    def validate(self, attrs):
        _validate_future_slot(attrs['new_date'], attrs['new_time'])
        return attrs


class AppointmentRejectSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')


class ContractExtensionSerializer(serializers.ModelSerializer):
    class Meta:
        model = ContractExtension
        fields = [
            'id',
            'period_type',
            'period_count',
            'price_per_sqm_applied',
            'amount',
            'commission_amount',
            'host_payout_amount',
            'original_end_date',
            'new_end_date',
            'payment',
            'created_at',
        ]
        read_only_fields = fields


class ContractSerializer(serializers.ModelSerializer):
    extensions = ContractExtensionSerializer(many=True, read_only=True)

    class Meta:
        model = Contract
        fields = [
            'id',
            'contract_number',
            'reservation',
            'sqm',
            'period_type',
            'period_count',
            'start_date',
            'end_date',
            'total_amount',
            'commission_rate',
            'commission_amount',
            'host_payout_amount',
            'guest_signed',
            'guest_signed_at',
            'host_signed',
            'host_signed_at',
            'status',
            'extensions',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class SignContractSerializer(serializers.Serializer):
    otp = serializers.RegexField(
        r'^\d{6}$',
        error_messages={'invalid': 'The code must be 6 digits.'}
    )


class ExtendContractSerializer(serializers.Serializer):
    period_type = serializers.ChoiceField(choices=PERIOD_CHOICES)
    period_count = serializers.IntegerField(min_value=1, max_value=120)
    payment_method = serializers.ChoiceField(choices=Payment.METHOD_CHOICES)
    idempotency_key = serializers.CharField(max_length=100)


class BalancePaymentSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=Payment.METHOD_CHOICES)
    idempotency_key = serializers.CharField(max_length=100)


class PlatformConfigUpdateSerializer(serializers.Serializer):
    """PUT body for the admin configuration endpoint. Omitted keys stay unchanged."""
    deposit_percentage = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False
    )
    commission_percentage = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False
    )

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('Provide deposit_percentage or commission_percentage.')
        return attrs


class AuditLogSerializer(serializers.ModelSerializer):
    actor_email = serializers.EmailField(source='actor.email', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            'id',
            'actor',
            'actor_email',
            'action',
            'entity_type',
            'entity_id',
            'old_data',
            'new_data',
            'ip_address',
            'created_at',
        ]
        read_only_fields = fields
