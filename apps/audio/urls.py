from django.urls import path
from . import views

app_name = 'audio'

urlpatterns = [
    path('GenerateAudio', views.generate_audio, name='generate'),

    # e.g., /audio/serve/0xabc..._file_1718000000000_9f3a12bc_notes_audio_1718000000500.mp3
    path('serve/<str:filename>', views.serve_audio, name='serve'),
    path('download/<str:filename>', views.download_audio, name='download'),
    path('my-files', views.my_files, name='my_files'),

    path('debug/info', views.debug_info, name='debug_info'),
    path('debug/test-api-key', views.debug_test_api_key, name='debug_test_api_key'),
]
