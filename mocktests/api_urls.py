from django.urls import path
from . import api_views

app_name = 'mocktests'

urlpatterns = [
    path('mocktests/<int:pk>/start/', api_views.start_attempt, name='attempt_start'),
    path('mocktests/<int:pk>/leaderboard/', api_views.mock_test_leaderboard, name='leaderboard'),
    path('attempts/', api_views.attempt_list, name='attempt_list'),
    path('attempts/<int:attempt_id>/', api_views.attempt_detail, name='attempt_detail'),
    path('attempts/<int:attempt_id>/autosave/', api_views.attempt_autosave, name='attempt_autosave'),
    path('attempts/<int:attempt_id>/submit/', api_views.attempt_submit, name='attempt_submit'),
    path('attempts/<int:attempt_id>/result/', api_views.attempt_result, name='attempt_result'),
]
