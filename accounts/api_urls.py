from django.urls import path
from .views import GitHubCallbackAPIView, GitHubLoginAPIView

urlpatterns = [
    path('login', GitHubLoginAPIView.as_view(), name='github-login'),
    path('callback', GitHubCallbackAPIView.as_view(), name='github-callback'),
]
