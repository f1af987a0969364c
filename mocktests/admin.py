# mocktests/admin.py
import csv

from django.contrib import admin
from django.http import HttpResponse

from .models import Attempt, MockTest, MockTestQuestion, Order, Question, SubjectQuota


# ----------------------------
# Question admin
# ----------------------------
@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ('id', 'short_text', 'question_type', 'difficulty', 'subject', 'marks', 'negative_marks', 'is_active')
    list_filter = ('question_type', 'difficulty', 'subject', 'is_active')
    search_fields = ('text', 'subject')
    raw_id_fields = ('parent',)

    fieldsets = (
        (None, {
            'fields': ('question_type', 'subject', 'difficulty', 'text', 'image_url', 'parent')
        }),
        ('Answer', {
            'fields': ('options', 'correct', 'correct_text'),
        }),
        ('Marking', {
            'fields': ('marks', 'negative_marks', 'is_active'),
        }),
        ('Explanation', {
            'fields': ('explanation',),
            'classes': ('collapse',)
        }),
    )

    def short_text(self, obj):
        return obj.text[:60] + ('...' if len(obj.text) > 60 else '') if obj.text else ''

    short_text.short_description = "Question"


# ----------------------------
# MockTest inlines
# ----------------------------
class MockTestQuestionInline(admin.TabularInline):
    model = MockTestQuestion
    extra = 1
    fields = ('position', 'question')
    raw_id_fields = ('question',)


class SubjectQuotaInline(admin.TabularInline):
    model = SubjectQuota
    extra = 1
    fields = ('subject', 'easy', 'medium', 'hard')


@admin.register(MockTest)
class MockTestAdmin(admin.ModelAdmin):
    list_display = (
        'title', 'duration_minutes', 'price',
        'is_grand_test', 'scheduled_for', 'is_published'
    )
    list_filter = ('is_published', 'is_grand_test')
    search_fields = ('title',)
    inlines = [MockTestQuestionInline, SubjectQuotaInline]


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'amount', 'status', 'created_at')
    list_filter = ('status',)
    search_fields = ('user__username', 'payment_reference')
    filter_horizontal = ('items',)


# ----------------------------
# CSV export for Attempt
# ----------------------------
def export_attempts_csv(modeladmin, request, queryset):
    fieldnames = ['id', 'user', 'mock_test', 'status', 'score', 'correct_count', 'started_at', 'submitted_at']
    response = HttpResponse(content_type='text/csv')
    response['Content-Disposition'] = 'attachment; filename="attempts.csv"'
    writer = csv.writer(response)
    writer.writerow(fieldnames)
    for a in queryset.select_related('user', 'mock_test'):
        writer.writerow([
            a.id, a.user.get_username(), a.mock_test.title, a.status,
            a.score, a.correct_count, a.started_at, a.submitted_at,
        ])
    return response


export_attempts_csv.short_description = "Export selected attempts to CSV"


@admin.register(Attempt)
class AttemptAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'mock_test', 'status', 'score', 'started_at', 'ends_at', 'submitted_at')
    list_filter = ('status',)
    search_fields = ('user__username', 'mock_test__title')
    actions = [export_attempts_csv]

    # Attempts are written by the lifecycle engine only
    readonly_fields = (
        'user', 'mock_test', 'questions', 'draft_answers', 'answers',
        'started_at', 'ends_at', 'submitted_at',
        'score', 'correct_count', 'status'
    )

    list_per_page = 50

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related('user', 'mock_test')

    def has_add_permission(self, request):
        return False
