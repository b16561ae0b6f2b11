from django.urls import path
from .views import BatchAPIView, ProxyTransferAPIView, VerifyAPIView

urlpatterns = [
    path('objects/batch', BatchAPIView.as_view(), name='lfs-batch'),
    path('objects/verify', VerifyAPIView.as_view(), name='lfs-verify'),
    path('objects/<str:oid>', ProxyTransferAPIView.as_view(), name='lfs-object'),
]
