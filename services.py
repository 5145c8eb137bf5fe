from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from aggregation import ReportSnapshot, aggregate
from amounts import to_cents
from config import Settings, get_settings
from models import Cost, Log, Report, User
from periods import is_past_period, local_now, month_bounds
from schemas import CostIn, UserIn

logger = logging.getLogger(__name__)


class MissingParameters(ValueError):
    code = 100


class InvalidSum(ValueError):
    code = 101


class InvalidCategory(ValueError):
    code = 102


class PastDateNotAllowed(ValueError):
    code = 103


class InvalidMonth(ValueError):
    code = 104


class InvalidBirthday(ValueError):
    code = 105


class UserNotFound(LookupError):
    code = 404

    def __init__(self, user_id: int) -> None:
        super().__init__("User not found")
        self.user_id = user_id


class UserAlreadyExists(ValueError):
    code = 409


class StorageUnavailable(RuntimeError):
    code = 500


class ReportAlreadyExists(Exception):
    """A snapshot for the (user, year, month) key is already stored."""


class UserService:
    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    def list_all(self) -> list[User]:
        return self.session.scalars(select(User).order_by(User.id)).all()

    def _lookup(self, user_id: int) -> Optional[User]:
        try:
            return self.session.get(User, user_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailable("User store unavailable") from exc

    def exists(self, user_id: int) -> bool:
        return self._lookup(user_id) is not None

    def get(self, user_id: int) -> User:
        user = self._lookup(user_id)
        if not user:
            raise UserNotFound(user_id)
        return user

    def create(self, data: UserIn, *, today: Optional[date] = None) -> User:
        today = today or local_now(self.settings.timezone).date()
        if data.birthday > today:
            raise InvalidBirthday("Birthday date can't be in the future")
        if self.exists(data.id):
            raise UserAlreadyExists("User already exists")

        user = User(
            id=data.id,
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            birthday=data.birthday,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise UserAlreadyExists("User already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_created: user_id={user.id}")
        return user


class CostService:
    def __init__(self, session: Session, settings: Optional[Settings] = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    def create(self, data: CostIn, *, now: Optional[datetime] = None) -> Cost:
        if data.sum < 0:
            raise InvalidSum("Sum can't be negative number")
        if data.category not in self.settings.categories:
            raise InvalidCategory(self._unknown_category_message(data.category))

        now = now or local_now(self.settings.timezone)
        if data.date is not None:
            occurred_at = self._to_local(data.date)
            # past months are frozen once their report may have been cached
            if is_past_period(occurred_at.year, occurred_at.month, now):
                raise PastDateNotAllowed("Can't add cost with a past date")
        else:
            occurred_at = now

        if not UserService(self.session, self.settings).exists(data.userid):
            raise UserNotFound(data.userid)

        cost = Cost(
            user_id=data.userid,
            category=data.category,
            amount_cents=to_cents(data.sum),
            description=data.description.strip(),
            occurred_at=occurred_at,
        )
        self.session.add(cost)
        self.session.commit()
        self.session.refresh(cost)
        logger.info(
            f"cost_created: user_id={cost.user_id} category={cost.category} "
            f"amount_cents={cost.amount_cents} occurred_at={cost.occurred_at.isoformat()}"
        )
        return cost

    def query_by_user_and_date_range(
        self, user_id: int, start: datetime, end: datetime
    ) -> list[Cost]:
        stmt = (
            select(Cost)
            .where(Cost.user_id == user_id, Cost.occurred_at.between(start, end))
            .order_by(Cost.id)
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise StorageUnavailable("Expense store unavailable") from exc

    def total_for_user(self, user_id: int) -> int:
        stmt = select(func.coalesce(func.sum(Cost.amount_cents), 0)).where(
            Cost.user_id == user_id
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def _to_local(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value
        return value.astimezone(ZoneInfo(self.settings.timezone)).replace(tzinfo=None)

    def _unknown_category_message(self, category: str) -> str:
        message = f"{category} category invalid"
        best: Optional[str] = None
        best_distance: Optional[int] = None
        for name in self.settings.categories:
            dist = int(Levenshtein.distance(category, name))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = name
        if best is not None and best_distance is not None and best_distance <= 2:
            message += f"; did you mean '{best}'?"
        return message


class ReportCache:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _select(self, user_id: int, year: int, month: int):
        return select(Report).where(
            Report.user_id == user_id,
            Report.year == year,
            Report.month == month,
        )

    def find(self, user_id: int, year: int, month: int) -> Optional[ReportSnapshot]:
        try:
            report = self.session.scalar(self._select(user_id, year, month))
        except SQLAlchemyError as exc:
            raise StorageUnavailable("Report cache unavailable") from exc
        if report is None:
            return None
        return ReportSnapshot(
            user_id=report.user_id,
            year=report.year,
            month=report.month,
            costs=report.costs,
        )

    def create(self, snapshot: ReportSnapshot) -> None:
        report = Report(
            user_id=snapshot.user_id,
            year=snapshot.year,
            month=snapshot.month,
            costs=snapshot.costs,
        )
        self.session.add(report)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ReportAlreadyExists(
                f"Report for user {snapshot.user_id} "
                f"{snapshot.year}-{snapshot.month:02d} already exists"
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageUnavailable("Report cache unavailable") from exc

    def count(self, user_id: int, year: int, month: int) -> int:
        stmt = select(func.count(Report.id)).where(
            Report.user_id == user_id,
            Report.year == year,
            Report.month == month,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)


class ReportService:
    """Answers monthly report requests.

    Past months are served from the report cache and computed at most once per
    key; the database unique constraint decides which of two concurrent writers
    wins, and the loser returns the stored snapshot. The current month and
    future months are always computed and never stored.
    """

    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        *,
        cache: Optional[ReportCache] = None,
        costs: Optional[CostService] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.cache = cache or ReportCache(session)
        self.costs = costs or CostService(session, self.settings)

    def get_report(
        self, user_id: int, year: int, month: int, reference_now: datetime
    ) -> ReportSnapshot:
        if not 1 <= month <= 12:
            raise InvalidMonth("Month must be between 1 and 12")

        if not is_past_period(year, month, reference_now):
            return self._compute(user_id, year, month)

        cached = self.cache.find(user_id, year, month)
        if cached is not None:
            logger.info(
                f"report_cache_hit: user_id={user_id} year={year} month={month}"
            )
            return cached

        snapshot = self._compute(user_id, year, month)
        try:
            self.cache.create(snapshot)
        except ReportAlreadyExists:
            logger.info(
                f"report_cache_race_lost: user_id={user_id} year={year} month={month}"
            )
            return self._stored_or(snapshot)
        except StorageUnavailable:
            logger.warning(
                f"report_cache_write_failed: user_id={user_id} year={year} month={month}",
                exc_info=True,
            )
            return snapshot

        logger.info(f"report_cached: user_id={user_id} year={year} month={month}")
        return snapshot

    def _compute(self, user_id: int, year: int, month: int) -> ReportSnapshot:
        period = month_bounds(year, month)
        entries = self.costs.query_by_user_and_date_range(
            user_id, period.start, period.end
        )
        return aggregate(user_id, year, month, entries)

    def _stored_or(self, snapshot: ReportSnapshot) -> ReportSnapshot:
        try:
            stored = self.cache.find(snapshot.user_id, snapshot.year, snapshot.month)
        except StorageUnavailable:
            logger.warning(
                f"report_cache_reread_failed: user_id={snapshot.user_id} "
                f"year={snapshot.year} month={snapshot.month}",
                exc_info=True,
            )
            return snapshot
        return stored if stored is not None else snapshot


class LogService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record(
        self, user_id: int, action: str, details: Optional[dict[str, object]] = None
    ) -> Log:
        entry = Log(
            user_id=user_id or 0,
            action=action,
            timestamp=datetime.utcnow(),
            details=json.dumps(details or {}),
        )
        self.session.add(entry)
        self.session.commit()
        return entry

    def list_all(self) -> list[Log]:
        return self.session.scalars(select(Log).order_by(Log.id)).all()
