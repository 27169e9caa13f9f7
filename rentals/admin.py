"""
Django admin configuration.

Lifecycle fields are read-only: state changes go through the services so
escrow, audit and locking rules always apply.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import (
    Appointment,
    AuditLog,
    Contract,
    ContractExtension,
    Payment,
    PlatformSetting,
    Reservation,
    Space,
    User,
)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['email', 'username', 'role', 'anti_bypass_accepted', 'is_staff', 'is_active', 'created_at']
    list_filter = ['role', 'anti_bypass_accepted', 'is_staff', 'is_active']
    search_fields = ['email', 'username', 'first_name', 'last_name']
    ordering = ['-created_at']

    fieldsets = (
        (None, {'fields': ('username', 'password')}),
        (_('Personal Info'), {'fields': ('first_name', 'last_name', 'email', 'phone_number')}),
        (_('Role & Compliance'), {
            'fields': ('role', 'anti_bypass_accepted', 'anti_bypass_accepted_at', 'anti_bypass_legal_version')
        }),
        (_('Permissions'), {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
            'classes': ('collapse',),
        }),
        (_('Important Dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )
    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('username', 'email', 'password1', 'password2', 'role'),
        }),
    )
    readonly_fields = [
        'anti_bypass_accepted_at',
        'anti_bypass_legal_version',
        'created_at',
        'updated_at',
        'last_login',
        'date_joined',
    ]


@admin.register(Space)
class SpaceAdmin(admin.ModelAdmin):
    list_display = ['title', 'host', 'city', 'space_type', 'total_sqm', 'available_sqm', 'status']
    list_filter = ['status', 'space_type', 'city']
    search_fields = ['title', 'address', 'city', 'host__email']
    raw_id_fields = ['host']


class PaymentInline(admin.TabularInline):
    model = Payment
    fk_name = 'reservation'
    extra = 0
    can_delete = False
    fields = ['payment_type', 'amount', 'method', 'escrow_status', 'held_at', 'released_at', 'refunded_at']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class AppointmentInline(admin.TabularInline):
    model = Appointment
    extra = 0
    can_delete = False
    fields = ['scheduled_date', 'scheduled_time', 'status', 'guest_accepted_anti_bypass']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Reservation)
class ReservationAdmin(admin.ModelAdmin):
    list_display = ['id', 'space', 'guest', 'host', 'requested_sqm', 'period_type', 'period_count',
                    'total_amount', 'status', 'created_at']
    list_filter = ['status', 'period_type']
    search_fields = ['guest__email', 'host__email', 'space__title']
    readonly_fields = [
        'status',
        'price_per_sqm_applied',
        'total_amount',
        'deposit_percentage',
        'deposit_amount',
        'remaining_amount',
        'frozen_pricing',
        'idempotency_key',
        'created_at',
        'updated_at',
    ]
    inlines = [PaymentInline, AppointmentInline]
    date_hierarchy = 'created_at'

    def has_delete_permission(self, request, obj=None):
        return False


class ContractExtensionInline(admin.TabularInline):
    model = ContractExtension
    extra = 0
    can_delete = False
    readonly_fields = ['period_type', 'period_count', 'amount', 'original_end_date', 'new_end_date']
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Contract)
class ContractAdmin(admin.ModelAdmin):
    list_display = ['contract_number', 'reservation', 'start_date', 'end_date', 'total_amount',
                    'guest_signed', 'host_signed', 'status']
    list_filter = ['status', 'guest_signed', 'host_signed']
    search_fields = ['contract_number', 'reservation__guest__email', 'reservation__host__email']
    readonly_fields = [
        'contract_number',
        'status',
        'total_amount',
        'commission_rate',
        'commission_amount',
        'host_payout_amount',
        'guest_signed',
        'guest_signed_at',
        'guest_signed_ip',
        'host_signed',
        'host_signed_at',
        'host_signed_ip',
    ]
    inlines = [ContractExtensionInline]

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['id', 'payment_type', 'amount', 'method', 'escrow_status', 'reservation', 'contract',
                    'attempts', 'created_at']
    list_filter = ['escrow_status', 'payment_type', 'method']
    search_fields = ['idempotency_key', 'capture_reference', 'payer__email']
    readonly_fields = [field.name for field in Payment._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ['id', 'reservation', 'scheduled_date', 'scheduled_time', 'status',
                    'guest_accepted_anti_bypass']
    list_filter = ['status', 'guest_accepted_anti_bypass']
    readonly_fields = ['status', 'guest_accepted_anti_bypass', 'guest_accepted_anti_bypass_at',
                       'guest_accepted_anti_bypass_ip', 'guest_anti_bypass_legal_version']


@admin.register(PlatformSetting)
class PlatformSettingAdmin(admin.ModelAdmin):
    list_display = ['key', 'value', 'updated_by', 'updated_at']
    readonly_fields = ['updated_by', 'updated_at']

    def save_model(self, request, obj, form, change):
        obj.updated_by = request.user
        obj._audit_actor = request.user
        super().save_model(request, obj, form, change)


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['created_at', 'action', 'entity_type', 'entity_id', 'actor', 'ip_address']
    list_filter = ['action', 'entity_type']
    search_fields = ['entity_id', 'actor__email']
    readonly_fields = [field.name for field in AuditLog._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
