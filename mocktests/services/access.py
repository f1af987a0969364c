from django.utils import timezone

from mocktests.models import Order


def has_purchased(user, mock_test):
    return Order.objects.filter(
        user=user,
        items=mock_test,
        status=Order.STATUS_SUCCESSFUL,
    ).exists()


def can_access_mock_test(user, mock_test):
    """
    Returns:
        (True, None) if access allowed
        (False, reason_string) if denied
    """
    if mock_test.is_free:
        return True, None

    if not has_purchased(user, mock_test):
        return False, "Not purchased"

    return True, None


def check_schedule(mock_test, now):
    """
    Grand tests are only startable inside their global window.

    Returns:
        (True, None) if the window is open or the test is not scheduled
        (False, reason_string) otherwise
    """
    window = mock_test.window()
    if window is None:
        return True, None

    start, end = window
    if now < start:
        local_start = timezone.localtime(start)
        return False, f"Test starts at {local_start.isoformat()}"
    if now > end:
        return False, "Test window closed"

    return True, None
