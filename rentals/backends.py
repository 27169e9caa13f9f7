"""
Authentication backend that logs users in with their e-mail address.
"""

from django.contrib.auth import get_user_model
from django.contrib.auth.backends import ModelBackend

User = get_user_model()


class EmailBackend(ModelBackend):
    """
    Authenticate guests, hosts and admins by e-mail (case-insensitive).

    simplejwt passes the credential under the serializer's username field,
    so both ``username`` and ``email`` keyword arguments are accepted.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        email = kwargs.get('email') or username
        if not email or password is None:
            return None

        try:
            user = User.objects.get(email__iexact=email.strip())
        except User.DoesNotExist:
            # Hash once anyway so unknown e-mails take as long as wrong passwords
            User().set_password(password)
            return None

        if user.check_password(password) and self.user_can_authenticate(user):
            return user
        return None
