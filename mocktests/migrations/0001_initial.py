import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Question",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("question_type", models.CharField(choices=[("mcq", "Multiple choice"), ("manual", "Manual / free text"), ("passage", "Passage (context only)")], default="mcq", max_length=10)),
                ("text", models.TextField()),
                ("image_url", models.CharField(blank=True, max_length=500, null=True)),
                ("options", models.JSONField(blank=True, default=list)),
                ("correct", models.JSONField(blank=True, default=list)),
                ("correct_text", models.TextField(blank=True, default="", help_text="Canonical answer for manual questions")),
                ("marks", models.FloatField(default=1.0)),
                ("negative_marks", models.FloatField(default=0.0, help_text="Magnitude deducted for an incorrect answer")),
                ("difficulty", models.CharField(choices=[("easy", "Easy"), ("medium", "Medium"), ("hard", "Hard")], db_index=True, default="easy", max_length=10)),
                ("subject", models.CharField(db_index=True, max_length=200)),
                ("explanation", models.TextField(blank=True, default="", help_text="Shown on the result page only.")),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("parent", models.ForeignKey(blank=True, help_text="Passage this question belongs to", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="children", to="mocktests.question")),
            ],
            options={
                "indexes": [models.Index(fields=["subject", "difficulty"], name="question_subj_diff_idx")],
            },
        ),
        migrations.CreateModel(
            name="MockTest",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("duration_minutes", models.PositiveIntegerField(default=60)),
                ("price", models.DecimalField(decimal_places=2, default=0, max_digits=8)),
                ("is_grand_test", models.BooleanField(default=False)),
                ("scheduled_for", models.DateTimeField(blank=True, help_text="Global start instant for grand tests", null=True)),
                ("is_published", models.BooleanField(db_index=True, default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name="MockTestQuestion",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("position", models.PositiveIntegerField(default=0)),
                ("mock_test", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="curated_entries", to="mocktests.mocktest")),
                ("question", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to="mocktests.question")),
            ],
            options={
                "ordering": ["position", "id"],
            },
        ),
        migrations.AddField(
            model_name="mocktest",
            name="questions",
            field=models.ManyToManyField(blank=True, related_name="mock_tests", through="mocktests.MockTestQuestion", to="mocktests.question"),
        ),
        migrations.CreateModel(
            name="SubjectQuota",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("subject", models.CharField(max_length=200)),
                ("easy", models.PositiveIntegerField(default=0)),
                ("medium", models.PositiveIntegerField(default=0)),
                ("hard", models.PositiveIntegerField(default=0)),
                ("mock_test", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="quotas", to="mocktests.mocktest")),
            ],
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("amount", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("payment_reference", models.CharField(blank=True, default="", max_length=100)),
                ("status", models.CharField(choices=[("created", "Created"), ("successful", "Successful"), ("failed", "Failed")], db_index=True, default="created", max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("items", models.ManyToManyField(related_name="orders", to="mocktests.mocktest")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="mocktest_orders", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="Attempt",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("questions", models.JSONField(default=list)),
                ("draft_answers", models.JSONField(blank=True, default=dict, help_text="Autosaved answers keyed by question id; not graded")),
                ("answers", models.JSONField(blank=True, default=list, help_text="Finalized answer records written on submission")),
                ("started_at", models.DateTimeField()),
                ("ends_at", models.DateTimeField()),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("score", models.FloatField(blank=True, null=True)),
                ("correct_count", models.PositiveIntegerField(blank=True, null=True)),
                ("status", models.CharField(choices=[("in-progress", "In progress"), ("completed", "Completed")], db_index=True, default="in-progress", max_length=20)),
                ("mock_test", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="attempts", to="mocktests.mocktest")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="mocktest_attempts", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["user", "mock_test"], name="attempt_user_test_idx"),
                    models.Index(fields=["mock_test", "status"], name="attempt_test_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            models.Q(
                                ("correct_count__isnull", True),
                                ("score__isnull", True),
                                ("status", "in-progress"),
                                ("submitted_at__isnull", True),
                            )
                            | models.Q(
                                ("correct_count__isnull", False),
                                ("score__isnull", False),
                                ("status", "completed"),
                                ("submitted_at__isnull", False),
                            )
                        ),
                        name="attempt_state_consistent",
                    ),
                ],
            },
        ),
    ]
