from django.core.management.base import BaseCommand

from apps.files.services.encryption_service import EncryptionService, load_key


class Command(BaseCommand):
    help = 'Prints a new random key for ENCRYPTION_KEY (64 hex characters)'

    def handle(self, *args, **options):
        key_hex = EncryptionService.generate_key().hex()
        # Same parsing the service applies at startup
        load_key(key_hex)
        self.stdout.write(key_hex)
        self.stderr.write(
            'Store this as ENCRYPTION_KEY. Changing it makes every stored CID unreadable.'
        )
