from django.apps import AppConfig


class LfsInternalsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'lfs_internals'
