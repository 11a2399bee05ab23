from django.apps import AppConfig

class BloodConfig(AppConfig):
    name = "blood"
    verbose_name = "Emergency blood requests"

    def ready(self):
        import blood.signals  # noqa
