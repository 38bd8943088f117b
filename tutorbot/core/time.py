from datetime import datetime, timezone, timedelta


EAT = timezone(timedelta(hours=3))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fmt_date(dt: datetime | None) -> str:
    if not dt:
        return "N/A"
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(EAT).strftime("%d.%m.%Y")


def fmt_dt_eat(dt: datetime | None) -> str:
    if not dt:
        return "N/A"
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(EAT).strftime("%d.%m.%Y %H:%M EAT")
