from django.conf import settings

DEFAULTS = {
    "LEADERBOARD_SIZE": 3,
    # None accepts late submissions; seconds past ends_at otherwise
    "LATE_SUBMISSION_GRACE_SECONDS": None,
}


def app_setting(name):
    overrides = getattr(settings, "MOCKTESTS", None) or {}
    return overrides.get(name, DEFAULTS[name])
