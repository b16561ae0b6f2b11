from django.urls import path, include

from . import views

urlpatterns = [
    path('healthz', views.healthz, name='healthz'),
    path('readyz', views.readyz, name='readyz'),
    path('auth/github/', include('accounts.api_urls')),
    path('<str:owner>/<str:name>/info/lfs/', include('lfs.api_urls')),
]
