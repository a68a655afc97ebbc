from django.urls import path

from sync.views import SyncPullView

urlpatterns = [
    path("pull", SyncPullView.as_view(), name="sync-pull"),
]
