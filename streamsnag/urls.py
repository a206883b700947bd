from django.urls import path
from extraction import views

urlpatterns = [
    # Healthcheck (no auth)
    path("healthz", views.healthz, name="healthz"),

    # API
    path("fetch-video-data", views.fetch_video_data, name="fetch_video_data"),
    path("download-video", views.download_video, name="download_video"),

    # Paths the first mobile client shipped with
    path("fetch-fb-video-data", views.fetch_video_data),
    path("download-fb-video", views.download_video),

    # Merged outputs
    path("temp/<str:name>", views.serve_temp, name="serve_temp"),
]
