"""
URL configuration for storage_marketplace project.
"""
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import (
    TokenBlacklistView,
    TokenRefreshView,
    TokenVerifyView,
)

from rentals.views import (
    AcceptHostAntiBypassView,
    AppointmentAntiBypassView,
    AppointmentDetailView,
    AppointmentListView,
    AppointmentTransitionView,
    AuditLogListView,
    ContractBalanceView,
    ContractCloseView,
    ContractDetailView,
    ContractExtendView,
    ContractListView,
    ContractOTPView,
    ContractSignView,
    EmailTokenObtainPairView,
    PaymentDetailView,
    PaymentListView,
    PlatformConfigView,
    ReservationAppointmentView,
    ReservationCancelView,
    ReservationContractView,
    ReservationDetailView,
    ReservationListCreateView,
    SpaceQuoteView,
    UserProfileView,
    UserRegistrationView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # Authentication endpoints
    path('api/auth/register/', UserRegistrationView.as_view(), name='user_register'),
    path('api/auth/logout/', TokenBlacklistView.as_view(), name='user_logout'),
    path('api/auth/profile/', UserProfileView.as_view(), name='user_profile'),
    path('api/auth/accept-anti-bypass/', AcceptHostAntiBypassView.as_view(), name='accept_host_anti_bypass'),

    # JWT Authentication endpoints
    path('api/token/', EmailTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/token/verify/', TokenVerifyView.as_view(), name='token_verify'),
    path('api/token/blacklist/', TokenBlacklistView.as_view(), name='token_blacklist'),

    # Quotes
    path('api/spaces/<int:pk>/quote/', SpaceQuoteView.as_view(), name='space_quote'),

    # Reservation endpoints
    path('api/reservations/', ReservationListCreateView.as_view(), name='reservation_list'),
    path('api/reservations/<int:pk>/', ReservationDetailView.as_view(), name='reservation_detail'),
    path('api/reservations/<int:pk>/cancel/', ReservationCancelView.as_view(), name='reservation_cancel'),
    path('api/reservations/<int:pk>/appointments/', ReservationAppointmentView.as_view(),
         name='reservation_request_visit'),
    path('api/reservations/<int:pk>/contract/', ReservationContractView.as_view(),
         name='reservation_initiate_contract'),

    # Appointment endpoints
    path('api/appointments/', AppointmentListView.as_view(), name='appointment_list'),
    path('api/appointments/<int:pk>/', AppointmentDetailView.as_view(), name='appointment_detail'),
    path('api/appointments/<int:pk>/accept/', AppointmentTransitionView.as_view(transition='accept'),
         name='appointment_accept'),
    path('api/appointments/<int:pk>/reject/', AppointmentTransitionView.as_view(transition='reject'),
         name='appointment_reject'),
    path('api/appointments/<int:pk>/reschedule/', AppointmentTransitionView.as_view(transition='reschedule'),
         name='appointment_reschedule'),
    path('api/appointments/<int:pk>/accept-reschedule/',
         AppointmentTransitionView.as_view(transition='accept-reschedule'),
         name='appointment_accept_reschedule'),
    path('api/appointments/<int:pk>/complete/', AppointmentTransitionView.as_view(transition='complete'),
         name='appointment_complete'),
    path('api/appointments/<int:pk>/no-show/', AppointmentTransitionView.as_view(transition='no-show'),
         name='appointment_no_show'),
    path('api/appointments/<int:pk>/accept-anti-bypass/', AppointmentAntiBypassView.as_view(),
         name='appointment_accept_anti_bypass'),

    # Contract endpoints
    path('api/contracts/', ContractListView.as_view(), name='contract_list'),
    path('api/contracts/<int:pk>/', ContractDetailView.as_view(), name='contract_detail'),
    path('api/contracts/<int:pk>/otp/', ContractOTPView.as_view(), name='contract_otp'),
    path('api/contracts/<int:pk>/sign/', ContractSignView.as_view(), name='contract_sign'),
    path('api/contracts/<int:pk>/extend/', ContractExtendView.as_view(), name='contract_extend'),
    path('api/contracts/<int:pk>/balance/', ContractBalanceView.as_view(), name='contract_balance'),
    path('api/contracts/<int:pk>/close/', ContractCloseView.as_view(), name='contract_close'),

    # Payment endpoints
    path('api/payments/', PaymentListView.as_view(), name='payment_list'),
    path('api/payments/<int:pk>/', PaymentDetailView.as_view(), name='payment_detail'),

    # Administration endpoints
    path('api/admin/config/', PlatformConfigView.as_view(), name='platform_config'),
    path('api/admin/audit-log/', AuditLogListView.as_view(), name='audit_log'),
]
