from django.urls import path
from . import views

urlpatterns = [
    path('api/requests/', views.request_list_api, name='emergency_request_list'),
    path('api/requests/create/', views.request_create_api, name='emergency_request_create'),
    path('api/requests/<str:request_id>/update/', views.request_update_api, name='emergency_request_update'),
    path('api/requests/<str:request_id>/cancel/', views.request_cancel_api, name='emergency_request_cancel'),
    path('api/requests/<str:request_id>/fulfill/', views.request_fulfill_api, name='emergency_request_fulfill'),
    path('api/requests/<str:request_id>/matches/', views.request_matches_api, name='emergency_request_matches'),
]
