# mocktests/api_views.py
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .serializers import AnswersSerializer, LeaderboardEntrySerializer, MockTestSerializer
from .services.leaderboard import LeaderboardProjector, NotReady
from .services.lifecycle import AttemptLifecycleEngine

engine = AttemptLifecycleEngine()
leaderboard = LeaderboardProjector()


def _answers(request):
    serializer = AnswersSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data.get('answers') or []


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def start_attempt(request, pk):
    started = engine.start(request.user, pk)
    attempt = started.attempt
    return Response(
        {
            'attempt_id': attempt.id,
            'mock_test': MockTestSerializer(attempt.mock_test).data,
            'started_at': attempt.started_at,
            'ends_at': attempt.ends_at,
            'resumed': started.resumed,
            'questions': started.questions,
        },
        status=status.HTTP_200_OK if started.resumed else status.HTTP_201_CREATED,
    )


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def attempt_list(request):
    return Response(engine.history(request.user))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def attempt_detail(request, attempt_id):
    view = engine.get_attempt(attempt_id, request.user)
    ue = view.attempt
    return Response({
        'attempt_id': ue.id,
        'mock_test_id': ue.mock_test_id,
        'status': ue.status,
        'started_at': ue.started_at,
        'ends_at': ue.ends_at,
        'time_remaining': view.time_remaining,
        'questions': view.questions,
        'existing_answers': view.existing_answers,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def attempt_autosave(request, attempt_id):
    drafts = engine.autosave(attempt_id, request.user, _answers(request))
    return Response({'status': 'ok', 'saved': len(drafts)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def attempt_submit(request, attempt_id):
    summary = engine.submit(attempt_id, _answers(request), user=request.user)
    return Response({
        'score': summary.score,
        'correct_count': summary.correct_count,
        'total': summary.total,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def attempt_result(request, attempt_id):
    return Response(engine.result(attempt_id, request.user))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def mock_test_leaderboard(request, pk):
    ranking = leaderboard.rank(pk)
    if isinstance(ranking, NotReady):
        return Response({
            'ready': False,
            'available_at': ranking.available_at,
            'entries': [],
        })
    return Response({
        'ready': True,
        'entries': LeaderboardEntrySerializer(ranking, many=True).data,
    })
