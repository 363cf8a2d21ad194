from django.urls import include, path

from core.views import home

urlpatterns = [
    path('', home, name='home'),
    path('', include('facilitator.urls')),
]
