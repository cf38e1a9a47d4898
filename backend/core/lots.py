from datetime import date, datetime
from typing import Optional, Union

from core.enums import ExpirationStatus

DateLike = Union[date, datetime, None]


def _as_date(x: DateLike) -> Optional[date]:
    if x is None:
        return None
    if isinstance(x, datetime):
        return x.date()
    return x


def expiration_status(now: DateLike, expiration_date: DateLike, alert_date: DateLike) -> ExpirationStatus:
    """Derive a lot's status; never stored.

    Expired once `now` is past the expiration date, alert once past the alert date,
    valid otherwise (including lots with no dates at all).
    """
    today = _as_date(now) or date.today()
    exp = _as_date(expiration_date)
    alert = _as_date(alert_date)
    if exp is not None and today > exp:
        return ExpirationStatus.EXPIRED
    if alert is not None and today > alert:
        return ExpirationStatus.ALERT
    return ExpirationStatus.VALID
