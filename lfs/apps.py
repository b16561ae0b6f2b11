from django.apps import AppConfig


class LfsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'lfs'

    def ready(self):
        from . import checks  # noqa: F401
