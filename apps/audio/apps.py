from django.apps import AppConfig


class AudioConfig(AppConfig):
    name = 'apps.audio'
    label = 'audio'
    verbose_name = 'Audio summaries'
