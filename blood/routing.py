from django.urls import path
from . import consumers

websocket_urlpatterns = [
    path("requests/", consumers.RequestFeedConsumer.as_asgi()),
    path("donor/", consumers.DonorAlertConsumer.as_asgi()),
]
