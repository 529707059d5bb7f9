"""
Period Resolution
Turns whatever the caller supplied as a period (``"2025-03"``, ``"2025-03-15"``,
a date, an ISO timestamp, nothing at all) into one calendar-month key and its
half-open date range ``[start, end)``.

All arithmetic is done on the calendar date *as written*: timestamps are never
converted to UTC first, so ``"2025-03-31T23:30:00-05:00"`` belongs to March.
The current month comes from an injectable clock rather than the wall clock so
callers (and tests) can pin "today".
"""
import re
from collections import namedtuple
from datetime import date, datetime, timedelta

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from services.errors import InvalidPeriod

MONTH_KEY_RE = re.compile(r'^(\d{4})-(\d{2})$')
DATE_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')


class ResolvedPeriod(namedtuple('ResolvedPeriod', ['key', 'start', 'end'])):
    """A canonical month: ``key`` is ``YYYY-MM``, ``end`` is exclusive."""
    __slots__ = ()

    @classmethod
    def for_month(cls, year, month):
        try:
            start = date(year, month, 1)
            end = start + relativedelta(months=1)
        except ValueError:
            raise InvalidPeriod(f'Invalid period: {year:04d}-{month:02d}') from None
        return cls(start.strftime('%Y-%m'), start, end)

    @property
    def last_day(self):
        """Inclusive last day of the month (what BudgetPeriod.end_date stores)."""
        return self.end - timedelta(days=1)

    def contains(self, day):
        return self.start <= day < self.end


class PeriodResolver:
    """Canonicalises period tokens against an injected clock.

    ``clock`` is a zero-argument callable returning a ``datetime`` or ``date``
    in local time; it defaults to ``datetime.now``.
    """

    def __init__(self, clock=None):
        self._clock = clock or datetime.now

    def today(self):
        now = self._clock()
        return now.date() if isinstance(now, datetime) else now

    def for_date(self, day):
        return ResolvedPeriod.for_month(day.year, day.month)

    def resolve(self, token=None):
        """Return the ResolvedPeriod for *token*; raise InvalidPeriod if it cannot be read."""
        if token is None:
            return self.for_date(self.today())
        # datetime is a subclass of date, so test it first
        if isinstance(token, datetime):
            return self.for_date(token.date())
        if isinstance(token, date):
            return self.for_date(token)
        if not isinstance(token, str):
            raise InvalidPeriod(f'Invalid period: {token!r}')

        text = token.strip()
        if not text:
            return self.for_date(self.today())

        match = MONTH_KEY_RE.match(text)
        if match:
            return ResolvedPeriod.for_month(int(match.group(1)), int(match.group(2)))

        match = DATE_RE.match(text)
        if match:
            try:
                day = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            except ValueError:
                raise InvalidPeriod(f'Invalid period: {text}') from None
            return self.for_date(day)

        # Anything else dateutil understands (ISO timestamps, "March 2025", ...).
        # Missing fields default to the first of the current month.
        default = datetime.combine(self.today().replace(day=1), datetime.min.time())
        try:
            parsed = date_parser.parse(text, default=default)
        except (ValueError, OverflowError):
            raise InvalidPeriod(f'Invalid period: {text}') from None
        return self.for_date(parsed.date())


default_resolver = PeriodResolver()


def resolve_period(token=None):
    """Resolve *token* with the module-level resolver."""
    return default_resolver.resolve(token)
