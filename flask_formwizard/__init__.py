__version__ = "0.1.0"

import logging
from typing import Optional

from .config.wizard import config_from_flask, WizardEngineConfig
from .exceptions import ConfigurationError
from .forms.persistence import MemoryProgressStore, SQLAProgressStore
from .forms.providers import (
    MemoryEntityStore,
    StaticConfigurationProvider,
    StaticMetadataProvider,
)
from .forms.wizard import WizardCollaborators, WizardSession, WizardSessionManager  # noqa: F401
from .models.sqla import db
from .views.wizard import wizard_bp

log = logging.getLogger(__name__)


class FormWizard:
    """
    Flask extension exposing wizard sessions over a JSON API.

    Collaborators default to static providers loaded from
    ``FORMWIZARD_DEFINITIONS_FILE``, an in-memory entity store and the progress
    store selected by ``FORMWIZARD_STORAGE_BACKEND`` ("memory" or "database").

    Usage::

        app = Flask(__name__)
        wizard = FormWizard(app, collaborators=WizardCollaborators(...))
    """

    def __init__(
        self,
        app=None,
        collaborators: Optional[WizardCollaborators] = None,
        config: Optional[WizardEngineConfig] = None,
    ):
        self.collaborators = collaborators
        self.config = config
        self.manager: Optional[WizardSessionManager] = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        config = self.config or config_from_flask(app.config)
        errors = config.validate_config()
        if errors:
            raise ConfigurationError(
                f"Invalid form wizard configuration: {'; '.join(errors)}", {"errors": errors}
            )
        self.config = config
        if self.collaborators is None:
            self.collaborators = self._default_collaborators(app, config)
        self.manager = WizardSessionManager(self.collaborators, config)
        app.extensions["formwizard"] = self
        app.register_blueprint(wizard_bp, url_prefix=config.url_prefix)
        log.info(
            f"Form wizard registered at {config.url_prefix} "
            f"(storage: {config.persistence.storage_backend})"
        )

    @staticmethod
    def _default_collaborators(app, config: WizardEngineConfig) -> WizardCollaborators:
        definitions = app.config.get("FORMWIZARD_DEFINITIONS_FILE")
        if definitions:
            configuration_provider = StaticConfigurationProvider.from_json_file(definitions)
            metadata_provider = StaticMetadataProvider.from_json_file(definitions)
        else:
            configuration_provider = StaticConfigurationProvider()
            metadata_provider = StaticMetadataProvider()

        if config.persistence.storage_backend == "database":
            if "sqlalchemy" not in app.extensions:
                db.init_app(app)
            progress_store = SQLAProgressStore()
        else:
            progress_store = MemoryProgressStore()

        entity_store = MemoryEntityStore()
        return WizardCollaborators(
            configuration_provider=configuration_provider,
            metadata_provider=metadata_provider,
            progress_store=progress_store,
            entity_source=entity_store,
            entity_browser=entity_store,
        )
