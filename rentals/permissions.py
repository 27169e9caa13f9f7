"""
Permission classes for the rental API.
"""

from rest_framework import permissions

from .models import Reservation


class IsGuest(permissions.BasePermission):
    """
    Allows only guests (accounts that rent space).

    Usage:
        class MyView(APIView):
            permission_classes = [IsAuthenticated, IsGuest]
    """

    message = 'Only guests can perform this action.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return getattr(request.user, 'role', None) == 'guest'


class IsHost(permissions.BasePermission):
    """Allows only hosts (accounts that publish space)."""

    message = 'Only hosts can perform this action.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return getattr(request.user, 'role', None) == 'host'


class IsPlatformAdmin(permissions.BasePermission):
    """
    Allows platform administrators: role 'admin' or Django staff.

    Returns 403 Forbidden for guests and hosts.
    """

    message = 'You do not have permission to perform this action. Administrator privileges required.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_staff or getattr(request.user, 'role', None) == 'admin'


class IsRentalParty(permissions.BasePermission):
    """
    Object-level access to a reservation, contract, appointment or payment.

    Allowed for the guest and host of the underlying reservation, and for
    platform administrators (read-only projections).
    """

    message = 'You do not have permission to access this rental.'

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated)

    def has_object_permission(self, request, view, obj):
        user = request.user
        if user.is_staff or getattr(user, 'role', None) == 'admin':
            return True

        if isinstance(obj, Reservation):
            reservation = obj
        elif getattr(obj, 'reservation_id', None):
            reservation = obj.reservation
        else:
            reservation = obj.contract.reservation

        return user.pk in (reservation.guest_id, reservation.host_id)
