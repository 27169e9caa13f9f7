from django.apps import AppConfig


class RentalsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'rentals'
    verbose_name = 'Storage rentals'

    def ready(self):
        from . import signals  # noqa: F401
