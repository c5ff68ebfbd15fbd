from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from apps.storage_providers.providers import PLATFORM_PINATA
from apps.storage_providers.providers.pinata.pinata_validator import PinataConfigValidator

VALIDATORS = {
    PLATFORM_PINATA: PinataConfigValidator,
}


class Command(BaseCommand):
    help = 'Validates the configured storage provider, including a live credentials check'

    def add_arguments(self, parser):
        parser.add_argument(
            '--skip-api-check',
            action='store_true',
            help='Only validate the configuration, do not contact the provider',
        )

    def handle(self, *args, **options):
        provider_settings = getattr(settings, 'STORAGE_PROVIDER', None)
        if not provider_settings:
            raise CommandError('STORAGE_PROVIDER is not configured.')

        platform = provider_settings.get('platform')
        validator_class = VALIDATORS.get(platform)
        if not validator_class:
            raise CommandError(f'No validator for storage provider platform: {platform}')

        validator = validator_class(provider_settings.get('config', {}))
        is_valid = validator.validate(skip_api_check=options['skip_api_check'])

        self.stdout.write(validator.get_validation_report())
        if not is_valid:
            raise CommandError(f'{platform} storage provider configuration is invalid.')
        if validator.get_warnings():
            self.stdout.write(self.style.WARNING(f'{platform} storage provider is usable, with warnings.'))
        else:
            self.stdout.write(self.style.SUCCESS(f'{platform} storage provider is ready.'))
