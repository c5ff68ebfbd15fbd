from django.urls import path, include

urlpatterns = [
    # Audio summaries live under /audio/, everything else at the root
    path('audio/', include('apps.audio.urls')),
    path('', include('apps.files.urls')),
]

handler404 = 'apps.files.views.not_found'
