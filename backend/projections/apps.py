from django.apps import AppConfig


class ProjectionsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "projections"
    verbose_name = "Contract Read Models"

    def ready(self):
        from projections import issuer  # noqa: F401
        from projections import lender  # noqa: F401
