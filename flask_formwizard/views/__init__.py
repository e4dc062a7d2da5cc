from .wizard import wizard_bp  # noqa: F401
