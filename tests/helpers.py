from datetime import datetime, timedelta, timezone

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)
