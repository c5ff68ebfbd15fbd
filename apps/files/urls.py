from django.urls import path
from . import views

# Route names are namespaced, e.g. reverse('files:upload')
app_name = 'files'

urlpatterns = [
    # File lifecycle, every route signed by the calling wallet
    path('Upload', views.upload, name='upload'),
    path('StreamUpload', views.stream_upload, name='stream_upload'),
    path('List', views.list_files, name='list'),
    path('ListDeleted', views.list_deleted, name='list_deleted'),
    path('Delete', views.delete_file, name='delete'),
    path('Restore', views.restore_file, name='restore'),
    path('empty_recycle_bin', views.empty_recycle_bin, name='empty_recycle_bin'),
    path('Analyze', views.analyze, name='analyze'),
    path('ExportSummary', views.export_summary, name='export_summary'),
    path('Download', views.download, name='download'),
    path('Debug', views.debug, name='debug'),

    # Access tokens
    # e.g., /secure-file/file_1718000000000_9f3a12bc
    path('secure-file/<str:file_id>', views.secure_file, name='secure_file'),
    path('stream-file/<str:access_token>', views.stream_file, name='stream_file'),
    path('stream-file-simple/<str:access_token>', views.stream_file_simple, name='stream_file_simple'),

    path('health', views.health, name='health'),
]
