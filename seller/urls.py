from django.urls import path

from seller.views import InferenceView, health

app_name = 'seller'

urlpatterns = [
    path('inference', InferenceView.as_view(), name='inference'),
    path('health', health, name='health'),
]
