from django.urls import path

from facilitator.views import VerificationLookupView, VerifyView, health

app_name = 'facilitator'

urlpatterns = [
    path('verify', VerifyView.as_view(), name='verify'),
    path('verifications/<str:token>', VerificationLookupView.as_view(), name='verification'),
    path('health', health, name='health'),
]
