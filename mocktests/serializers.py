from rest_framework import serializers

from .models import MockTest


class MockTestSerializer(serializers.ModelSerializer):
    class Meta:
        model = MockTest
        fields = ('id', 'title', 'duration_minutes', 'price', 'is_grand_test', 'scheduled_for')


class AnswersSerializer(serializers.Serializer):
    """
    Accepts ``answers`` as a list of {question_id, selected_answer}
    or a {question_id: value} mapping. Per-entry validation happens
    in the engine so a bad entry is skipped, not rejected.
    """
    answers = serializers.JSONField(required=False, default=list)

    def validate_answers(self, value):
        if value is None:
            return []
        if not isinstance(value, (list, dict)):
            raise serializers.ValidationError("Expected a list or an object.")
        return value


class LeaderboardEntrySerializer(serializers.Serializer):
    rank = serializers.IntegerField()
    name = serializers.CharField()
    score = serializers.FloatField()
