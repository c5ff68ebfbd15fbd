import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class FilesConfig(AppConfig):
    name = 'apps.files'
    label = 'files'
    verbose_name = 'Wallet files'

    token_store = None
    token_sweeper = None

    def ready(self):
        """
        Checks the CID encryption key and sets up the in-memory access token table.

        A missing or malformed key raises ImproperlyConfigured here, so the
        process never starts serving without it.
        """
        from .services.encryption_service import load_key
        from .services.token_service import AccessTokenStore, TokenSweeper

        load_key(getattr(settings, "CID_ENCRYPTION_KEY", None))

        self.token_store = AccessTokenStore()
        self.token_sweeper = TokenSweeper(self.token_store)

        if getattr(settings, "ACCESS_TOKEN_SWEEPER_ENABLED", True):
            self.token_sweeper.start()
            logger.info(f"Access token sweeper running every {self.token_sweeper.interval}s")
