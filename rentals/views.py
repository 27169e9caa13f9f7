"""
API views for the storage space rental marketplace.

Views stay thin: they validate input with serializers, call the service
modules (reservations, appointments, contracts, compliance) and serialize
the result. Domain errors raised by the services are rendered by
rentals.exceptions.lifecycle_exception_handler.
"""

import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.generics import ListAPIView, RetrieveAPIView
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from . import appointments, audit, compliance, contracts, reservations
from .models import Appointment, AuditLog, Contract, Payment, PlatformSetting, Reservation, Space
from .permissions import IsGuest, IsHost, IsPlatformAdmin, IsRentalParty
from .serializers import (
    AppointmentRejectSerializer,
    AppointmentRequestSerializer,
    AppointmentSerializer,
    AuditLogSerializer,
    BalancePaymentSerializer,
    ContractExtensionSerializer,
    ContractSerializer,
    EmailTokenObtainPairSerializer,
    ExtendContractSerializer,
    PaymentSerializer,
    PlatformConfigUpdateSerializer,
    QuoteRequestSerializer,
    QuoteSerializer,
    RescheduleProposalSerializer,
    ReservationCreateSerializer,
    ReservationSerializer,
    SignContractSerializer,
    UserProfileSerializer,
    UserProfileUpdateSerializer,
    UserRegistrationSerializer,
)


User = get_user_model()
logger = logging.getLogger(__name__)


def get_client_ip(request):
    """
    Get client IP address from request.
    Handles proxy headers for accurate IP detection.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def is_platform_admin(user):
    return user.is_staff or getattr(user, 'role', None) == 'admin'


def rental_scope(user, prefix=''):
    """Q filter matching rentals where user is the guest or the host."""
    return Q(**{f'{prefix}guest': user}) | Q(**{f'{prefix}host': user})


# ============================================================================
# Accounts
# ============================================================================

class EmailTokenObtainPairView(TokenObtainPairView):
    """
    Obtain a JWT access/refresh pair with email and password.

    Rate limited with the 'login' throttle scope.
    """
    serializer_class = EmailTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'login'


class UserRegistrationView(generics.CreateAPIView):
    """
    API endpoint for account registration.

    POST /api/auth/register/
    Request body: {
        "email": "guest@example.com",
        "password": "...",
        "confirm_password": "...",
        "role": "guest"
    }

    Error responses:
    - 400: Invalid data or duplicate email (including concurrent duplicates)
    """
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            self.perform_create(serializer)
        except IntegrityError:
            # Concurrent registration with the same email
            return Response(
                {'email': ['A user with that email already exists.']},
                status=status.HTTP_400_BAD_REQUEST
            )

        logger.info(
            f"User registered. ID: {serializer.instance.pk}, role: {serializer.instance.role}, "
            f"IP: {get_client_ip(request)}"
        )
        return Response(serializer.data, status=status.HTTP_201_CREATED)


class UserProfileView(APIView):
    """
    Retrieve or update the authenticated user's profile.

    GET /api/auth/profile/
    PATCH /api/auth/profile/  body: {"phone_number": "+56 9 1234 5678"}
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        return Response(UserProfileSerializer(request.user).data)

    def patch(self, request, *args, **kwargs):
        serializer = UserProfileUpdateSerializer(request.user, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(UserProfileSerializer(request.user).data)


class AcceptHostAntiBypassView(APIView):
    """
    Host accepts the account-level anti-bypass clause.

    Required before publishing spaces and before signing contracts.

    POST /api/auth/accept-anti-bypass/
    """
    permission_classes = [IsAuthenticated, IsHost]

    def post(self, request, *args, **kwargs):
        with transaction.atomic():
            user = User.objects.select_for_update().get(pk=request.user.pk)
            compliance.accept_host_clause(user, client_ip=get_client_ip(request))
        return Response(UserProfileSerializer(user).data)


# ============================================================================
# Quotes and reservations
# ============================================================================

class SpaceQuoteView(APIView):
    """
    Price breakdown for renting part of a published space. No side effects.

    POST /api/spaces/<pk>/quote/
    Request body: {"area": "10.00", "period_type": "month", "period_count": 2}

    Success response (200):
    {
        "period_type": "month",
        "period_count": 2,
        "area": "10.00",
        "price_per_sqm": "50.00",
        "total_amount": "1000.00",
        "deposit_percentage": "20.00",
        "deposit_amount": "200.00",
        "remaining_amount": "800.00"
    }

    Error responses:
    - 400: Invalid input, space not published, or period not offered
    - 404: Space not found
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        space = get_object_or_404(Space, pk=pk)
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        quote = reservations.quote_for_space(
            space,
            serializer.validated_data['area'],
            serializer.validated_data['period_type'],
            serializer.validated_data['period_count'],
        )
        return Response(QuoteSerializer(quote.as_dict()).data)


class ReservationListCreateView(generics.ListAPIView):
    """
    List the caller's reservations, or create one (guests only).

    GET /api/reservations/?status=deposit_held

    POST /api/reservations/
    Request body: {
        "space": 1,
        "area": "10.00",
        "period_type": "month",
        "period_count": 2,
        "total_amount": "1000.00",
        "deposit_amount": "200.00",
        "payment_method": "card",
        "idempotency_key": "9b1c..."
    }

    Success responses:
    - 201: Reservation created and deposit held in escrow
    - 200: Same idempotency key submitted again; existing reservation returned

    Error responses:
    - 400: Invalid input or period not offered
    - 403: Caller is not a guest
    - 409: Capacity exceeded or price changed since the quote
    - 503: Payment provider unavailable; retry with the same idempotency key
    """
    serializer_class = ReservationSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = PageNumberPagination

    def get_queryset(self):
        user = self.request.user
        queryset = Reservation.objects.select_related('space').prefetch_related('payments')
        if not is_platform_admin(user):
            queryset = queryset.filter(rental_scope(user))

        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset

    def post(self, request, *args, **kwargs):
        if not IsGuest().has_permission(request, self):
            return Response({'detail': IsGuest.message}, status=status.HTTP_403_FORBIDDEN)

        serializer = ReservationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        replay = Reservation.objects.filter(
            guest=request.user, idempotency_key=data['idempotency_key']
        ).exists()

        reservation = reservations.create_reservation(
            guest=request.user,
            space_id=data['space'].pk,
            area=data['area'],
            period_type=data['period_type'],
            period_count=data['period_count'],
            quoted={'total_amount': data['total_amount'], 'deposit_amount': data['deposit_amount']},
            method=data['payment_method'],
            idempotency_key=data['idempotency_key'],
            client_ip=get_client_ip(request),
        )
        reservation.refresh_from_db()

        return Response(
            ReservationSerializer(reservation).data,
            status=status.HTTP_200_OK if replay else status.HTTP_201_CREATED
        )


class ReservationDetailView(RetrieveAPIView):
    serializer_class = ReservationSerializer
    permission_classes = [IsRentalParty]
    queryset = Reservation.objects.select_related('space').prefetch_related('payments')


class ReservationCancelView(APIView):
    """
    Guest cancels a reservation before a contract exists.

    POST /api/reservations/<pk>/cancel/

    Before payment the reservation is cancelled; with the deposit held it is
    refunded in full.

    Error responses:
    - 403: Caller is not the reservation's guest
    - 409: A contract was already initiated, or the reservation is closed
    - 503: Refund failed at the payment provider; nothing changed
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        reservation = reservations.cancel_reservation(pk, request.user, client_ip=get_client_ip(request))
        return Response(ReservationSerializer(reservation).data)


class ReservationAppointmentView(APIView):
    """
    Guest requests a site visit.

    POST /api/reservations/<pk>/appointments/
    Request body: {"scheduled_date": "2026-11-03", "scheduled_time": "10:30"}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        serializer = AppointmentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        appointment = appointments.request_visit(
            pk,
            request.user,
            serializer.validated_data['scheduled_date'],
            serializer.validated_data['scheduled_time'],
            client_ip=get_client_ip(request),
        )
        return Response(AppointmentSerializer(appointment).data, status=status.HTTP_201_CREATED)


class ReservationContractView(APIView):
    """
    Guest or host initiates the contract of a reservation.

    POST /api/reservations/<pk>/contract/

    Error responses:
    - 403: Caller is not a party
    - 409: Reservation not ready, contract exists, price changed or capacity exceeded
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        contract = contracts.initiate_contract(pk, request.user, client_ip=get_client_ip(request))
        return Response(ContractSerializer(contract).data, status=status.HTTP_201_CREATED)


# ============================================================================
# Appointments
# ============================================================================

class AppointmentListView(ListAPIView):
    serializer_class = AppointmentSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = PageNumberPagination

    def get_queryset(self):
        user = self.request.user
        queryset = Appointment.objects.select_related('reservation')
        if not is_platform_admin(user):
            queryset = queryset.filter(rental_scope(user, prefix='reservation__'))

        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset


class AppointmentDetailView(RetrieveAPIView):
    serializer_class = AppointmentSerializer
    permission_classes = [IsRentalParty]
    queryset = Appointment.objects.select_related('reservation')


class AppointmentTransitionView(APIView):
    """
    Role-gated appointment actions.

    POST /api/appointments/<pk>/accept/             host
    POST /api/appointments/<pk>/reject/             host, body: {"reason": "..."}
    POST /api/appointments/<pk>/reschedule/         host, body: {"new_date", "new_time", "reason"}
    POST /api/appointments/<pk>/accept-reschedule/  guest
    POST /api/appointments/<pk>/complete/           host
    POST /api/appointments/<pk>/no-show/            host

    Error responses:
    - 403: Not a party, or the guest has not accepted the anti-bypass clause
      for this visit (body carries "clause": "anti_bypass_guest")
    - 409: Transition not allowed from the current state or for the caller's role
    """
    permission_classes = [IsAuthenticated]
    transition = None

    def post(self, request, pk, *args, **kwargs):
        client_ip = get_client_ip(request)

        if self.transition == 'reject':
            serializer = AppointmentRejectSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            appointment = appointments.reject(
                pk, request.user, reason=serializer.validated_data['reason'], client_ip=client_ip
            )
        elif self.transition == 'reschedule':
            serializer = RescheduleProposalSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            appointment = appointments.propose_reschedule(
                pk,
                request.user,
                serializer.validated_data['new_date'],
                serializer.validated_data['new_time'],
                reason=serializer.validated_data['reason'],
                client_ip=client_ip,
            )
        else:
            handlers = {
                'accept': appointments.accept,
                'accept-reschedule': appointments.accept_reschedule,
                'complete': appointments.mark_completed,
                'no-show': appointments.mark_no_show,
            }
            appointment = handlers[self.transition](pk, request.user, client_ip=client_ip)

        return Response(AppointmentSerializer(appointment).data)


class AppointmentAntiBypassView(APIView):
    """
    Guest accepts the anti-bypass clause for one visit.

    POST /api/appointments/<pk>/accept-anti-bypass/
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        appointment = compliance.accept_guest_visit_clause(
            pk, request.user, client_ip=get_client_ip(request)
        )
        return Response(AppointmentSerializer(appointment).data)


# ============================================================================
# Contracts
# ============================================================================

class ContractListView(ListAPIView):
    serializer_class = ContractSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = PageNumberPagination

    def get_queryset(self):
        user = self.request.user
        queryset = Contract.objects.select_related('reservation').prefetch_related('extensions')
        if not is_platform_admin(user):
            queryset = queryset.filter(rental_scope(user, prefix='reservation__'))
        return queryset


class ContractDetailView(RetrieveAPIView):
    serializer_class = ContractSerializer
    permission_classes = [IsRentalParty]
    queryset = Contract.objects.select_related('reservation').prefetch_related('extensions')


class ContractOTPView(APIView):
    """
    Send a one-time signature code to the calling party by e-mail.

    POST /api/contracts/<pk>/otp/

    Success response (200): {"detail": "...", "expires_in": 600}

    Error responses:
    - 409: Contract already signed, or caller already signed
    - 503: The code could not be delivered
    """
    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'otp'

    def post(self, request, pk, *args, **kwargs):
        expires_in = contracts.request_signature_code(pk, request.user, client_ip=get_client_ip(request))
        return Response({
            'detail': 'A signature code was sent to your email address.',
            'expires_in': expires_in,
        })


class ContractSignView(APIView):
    """
    Sign a contract with the one-time code.

    POST /api/contracts/<pk>/sign/
    Request body: {"otp": "123456"}

    Error responses:
    - 400: Code invalid, expired or already used (request a new one)
    - 403: Host has not accepted the anti-bypass clause
      (body carries "clause": "anti_bypass_host")
    - 409: Caller already signed, or no code was requested yet
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        serializer = SignContractSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        contract = contracts.sign_contract(
            pk, request.user, serializer.validated_data['otp'], client_ip=get_client_ip(request)
        )
        return Response(ContractSerializer(contract).data)


class ContractExtendView(APIView):
    """
    Guest extends a signed contract.

    POST /api/contracts/<pk>/extend/
    Request body: {
        "period_type": "month",
        "period_count": 1,
        "payment_method": "card",
        "idempotency_key": "..."
    }
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        serializer = ExtendContractSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        extension = contracts.extend_contract(
            pk,
            request.user,
            data['period_type'],
            data['period_count'],
            data['payment_method'],
            data['idempotency_key'],
            client_ip=get_client_ip(request),
        )
        return Response(ContractExtensionSerializer(extension).data, status=status.HTTP_201_CREATED)


class ContractBalanceView(APIView):
    """
    Guest pays the remaining amount of the reservation into escrow.

    POST /api/contracts/<pk>/balance/
    Request body: {"payment_method": "qr", "idempotency_key": "..."}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        serializer = BalancePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = contracts.pay_balance(
            pk,
            request.user,
            serializer.validated_data['payment_method'],
            serializer.validated_data['idempotency_key'],
            client_ip=get_client_ip(request),
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class ContractCloseView(APIView):
    """
    Administrator closes a contract, releasing its held payments.

    POST /api/contracts/<pk>/close/
    """
    permission_classes = [IsAuthenticated, IsPlatformAdmin]

    def post(self, request, pk, *args, **kwargs):
        contract = contracts.complete_contract(pk, actor=request.user, client_ip=get_client_ip(request))
        logger.info(f"Contract {contract.contract_number} closed by admin {request.user.pk}")
        return Response(ContractSerializer(contract).data)


# ============================================================================
# Payments
# ============================================================================

class PaymentListView(ListAPIView):
    serializer_class = PaymentSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = PageNumberPagination

    def get_queryset(self):
        user = self.request.user
        queryset = Payment.objects.all()
        if not is_platform_admin(user):
            queryset = queryset.filter(
                rental_scope(user, prefix='reservation__')
                | rental_scope(user, prefix='contract__reservation__')
            )

        escrow_status = self.request.query_params.get('escrow_status')
        if escrow_status:
            queryset = queryset.filter(escrow_status=escrow_status)
        return queryset


class PaymentDetailView(RetrieveAPIView):
    serializer_class = PaymentSerializer
    permission_classes = [IsRentalParty]
    queryset = Payment.objects.select_related('reservation', 'contract__reservation')


# ============================================================================
# Administration
# ============================================================================

class PlatformConfigView(APIView):
    """
    Read or change platform ratios.

    GET /api/admin/config/
    Success response (200): {"deposit_percentage": "10.00", "commission_percentage": "10.00"}

    PUT /api/admin/config/
    Request body: {"deposit_percentage": "20.00"}

    New values apply to future quotes (deposit) and future signatures
    (commission). Existing reservations and contracts keep their snapshots.
    """
    permission_classes = [IsAuthenticated, IsPlatformAdmin]

    def _current(self):
        return {key: PlatformSetting.current_value(key) for key, _label in PlatformSetting.KEY_CHOICES}

    def get(self, request, *args, **kwargs):
        return Response({key: str(value) for key, value in self._current().items()})

    def put(self, request, *args, **kwargs):
        serializer = PlatformConfigUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            for key, value in serializer.validated_data.items():
                setting = PlatformSetting.objects.select_for_update().filter(key=key).first()
                if setting is None:
                    setting = PlatformSetting(key=key)
                setting.value = value
                setting.updated_by = request.user
                audit.attribute(setting, request.user, get_client_ip(request))
                setting.save()
                logger.info(f"Platform setting {key} set to {value} by admin {request.user.pk}")

        return Response({key: str(value) for key, value in self._current().items()})


class AuditLogListView(ListAPIView):
    """
    GET /api/admin/audit-log/?entity_type=reservation&entity_id=12
    """
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, IsPlatformAdmin]
    pagination_class = PageNumberPagination

    def get_queryset(self):
        queryset = AuditLog.objects.select_related('actor')
        entity_type = self.request.query_params.get('entity_type')
        entity_id = self.request.query_params.get('entity_id')
        if entity_type:
            queryset = queryset.filter(entity_type=entity_type)
        if entity_id:
            queryset = queryset.filter(entity_id=entity_id)
        return queryset

