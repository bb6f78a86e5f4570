"""
SQL Store

Storage engine on SQLAlchemy. Works with any SQLAlchemy URL; SQLite is the
default for single-host ladders.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    and_,
    case,
    create_engine,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, aliased, mapped_column
from sqlalchemy.pool import StaticPool

from ..core.errors import PersistenceError
from ..core.models import DEFAULT_RATING, Bot, GameEvent, GameResult, Race, Rank
from ..core.units import UnitEventType, UnitType
from .base import BotRaceVsRace, BotStat, BotVsBotWonGames, MapStat, RankingUpdate

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class BotRow(Base):
    """Registered bots. Rows are disabled, never deleted."""

    __tablename__ = "bots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("bots.id"), nullable=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    race: Mapped[str] = mapped_column(String, nullable=False)
    binary_path: Mapped[str] = mapped_column(String, nullable=False)
    rank: Mapped[str] = mapped_column(String, nullable=False, default=Rank.UNRANKED.value)
    rating: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_RATING)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_played: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    stats_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    in_flight: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class GameResultRow(Base):
    """One row per completed game, never updated. `seq` is the save order."""

    __tablename__ = "game_results"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    game_realtime: Mapped[float] = mapped_column(Float, nullable=False)
    realtime_timeout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frame_timeout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    map: Mapped[str] = mapped_column(String, nullable=False)
    bot_a_id: Mapped[int] = mapped_column(ForeignKey("bots.id"), nullable=False)
    race_a: Mapped[str] = mapped_column(String, nullable=False)
    bot_b_id: Mapped[int] = mapped_column(ForeignKey("bots.id"), nullable=False)
    race_b: Mapped[str] = mapped_column(String, nullable=False)
    winner_id: Mapped[int | None] = mapped_column(ForeignKey("bots.id"), nullable=True)
    loser_id: Mapped[int | None] = mapped_column(ForeignKey("bots.id"), nullable=True)
    bot_a_crashed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    bot_b_crashed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    game_hash: Mapped[str] = mapped_column(String, nullable=False)
    frame_count: Mapped[int | None] = mapped_column(Integer, nullable=True)


class GameEventRow(Base):
    """Unit event counts of a game; `seq` keeps the executor's order."""

    __tablename__ = "game_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[str] = mapped_column(ForeignKey("game_results.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    unit: Mapped[int] = mapped_column(Integer, nullable=False)
    event: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)


def _to_db(ts: datetime | None) -> datetime | None:
    """Store timestamps as naive UTC."""
    if ts is None:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def _from_db(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None
    return ts.replace(tzinfo=timezone.utc)


def _bot_from_row(row: BotRow) -> Bot:
    return Bot(
        id=row.id,
        enabled=row.enabled,
        parent_id=row.parent_id,
        name=row.name,
        race=Race.parse(row.race),
        binary_path=row.binary_path,
        rank=Rank.parse(row.rank),
        rating=row.rating,
        last_updated=_from_db(row.last_updated),
        last_played=_from_db(row.last_played),
        stats_sequence=row.stats_sequence,
    )


class SqlStore:
    """
    Storage engine persisting to a relational database through SQLAlchemy.

    Each call runs in its own transaction. Calls are serialized through a
    process-wide lock because SQLite connections must not be shared between
    threads mid-transaction.
    """

    def __init__(
        self,
        url: str = "sqlite:///ladder.db",
        echo: bool = False,
        release_stale: bool = True,
    ):
        """
        Initialize the store and create missing tables.

        Args:
            url: SQLAlchemy database URL
            echo: Log every SQL statement
            release_stale: Clear in-flight reservations left behind by a
                process that did not shut down cleanly. Turn off when several
                ladder processes share one database.
        """
        self.url = url
        kwargs = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise each session gets an empty database
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, echo=echo, **kwargs)
        self._lock = threading.RLock()
        Base.metadata.create_all(self.engine)
        logger.info(f"Opened ladder database at {url}")
        if release_stale:
            self.release_stale_reservations()

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _write(self, action: str, fn):
        """Run fn(session) in a transaction, mapping driver errors to PersistenceError."""
        with self._lock:
            try:
                with self._session() as session, session.begin():
                    return fn(session)
            except SQLAlchemyError as e:
                raise PersistenceError(f"{action} failed: {e}") from e

    def _read(self, fn):
        with self._lock, self._session() as session:
            return fn(session)

    # Bots

    def add_bot(self, bot: Bot) -> Bot:
        def add(session: Session) -> Bot:
            row = BotRow(
                enabled=bot.enabled,
                parent_id=bot.parent_id,
                name=bot.name,
                race=bot.race.value,
                binary_path=bot.binary_path,
                rank=bot.rank.value,
                rating=bot.rating,
                last_updated=_to_db(bot.last_updated),
                last_played=_to_db(bot.last_played),
                stats_sequence=bot.stats_sequence,
            )
            session.add(row)
            session.flush()
            return _bot_from_row(row)

        return self._write(f"Registering bot {bot.name}", add)

    def get_bot(self, bot_id: int) -> Bot | None:
        def get(session: Session) -> Bot | None:
            row = session.get(BotRow, bot_id)
            return _bot_from_row(row) if row else None

        return self._read(get)

    def find_bot(self, name: str) -> Bot | None:
        def find(session: Session) -> Bot | None:
            row = session.scalars(select(BotRow).where(BotRow.name == name)).first()
            return _bot_from_row(row) if row else None

        return self._read(find)

    def list_enabled_bots(self) -> list[Bot]:
        def enabled(session: Session) -> list[Bot]:
            rows = session.scalars(
                select(BotRow).where(BotRow.enabled.is_(True)).order_by(BotRow.id)
            )
            return [_bot_from_row(row) for row in rows]

        return self._read(enabled)

    def set_enabled(self, bot_id: int, enabled: bool) -> None:
        def toggle(session: Session) -> None:
            result = session.execute(
                update(BotRow).where(BotRow.id == bot_id).values(enabled=enabled)
            )
            if result.rowcount != 1:
                raise PersistenceError(f"Unknown bot id {bot_id}")

        self._write(f"Setting enabled={enabled} on bot {bot_id}", toggle)

    # In-flight reservations

    def mark_in_flight(self, bot_ids: Iterable[int]) -> bool:
        ids = sorted(set(bot_ids))

        def reserve(session: Session) -> bool:
            result = session.execute(
                update(BotRow)
                .where(BotRow.id.in_(ids), BotRow.in_flight.is_(False))
                .values(in_flight=True)
            )
            if result.rowcount != len(ids):
                session.rollback()
                return False
            return True

        with self._lock:
            try:
                with self._session() as session:
                    reserved = reserve(session)
                    if reserved:
                        session.commit()
                    return reserved
            except SQLAlchemyError as e:
                raise PersistenceError(f"Reserving bots {ids} failed: {e}") from e

    def clear_in_flight(self, bot_ids: Iterable[int]) -> None:
        ids = sorted(set(bot_ids))
        self._write(
            f"Releasing bots {ids}",
            lambda session: session.execute(
                update(BotRow).where(BotRow.id.in_(ids)).values(in_flight=False)
            ),
        )

    def in_flight(self) -> frozenset[int]:
        return self._read(
            lambda session: frozenset(
                session.scalars(select(BotRow.id).where(BotRow.in_flight.is_(True)))
            )
        )

    def release_stale_reservations(self) -> list[str]:
        """Clear every in-flight reservation and return the names of the bots freed."""

        def release(session: Session) -> list[str]:
            stale = list(session.scalars(select(BotRow.name).where(BotRow.in_flight.is_(True))))
            if stale:
                session.execute(
                    update(BotRow).where(BotRow.in_flight.is_(True)).values(in_flight=False)
                )
            return stale

        stale = self._write("Releasing stale reservations", release)
        if stale:
            logger.warning(f"Released stale in-flight reservations of {', '.join(stale)}")
        return stale

    # Game results

    def save(self, result: GameResult, events: list[GameEvent]) -> None:
        def insert(session: Session) -> None:
            session.add(
                GameResultRow(
                    id=result.id,
                    time=_to_db(result.time),
                    game_realtime=result.game_realtime,
                    realtime_timeout=result.realtime_timeout,
                    frame_timeout=result.frame_timeout,
                    map=result.map,
                    bot_a_id=result.bot_a.id,
                    race_a=result.race_a.value,
                    bot_b_id=result.bot_b.id,
                    race_b=result.race_b.value,
                    winner_id=result.winner.id if result.winner else None,
                    loser_id=result.loser.id if result.loser else None,
                    bot_a_crashed=result.bot_a_crashed,
                    bot_b_crashed=result.bot_b_crashed,
                    game_hash=result.game_hash,
                    frame_count=result.frame_count,
                )
            )
            # Results must exist before their events reference them
            session.flush()
            session.add_all(
                GameEventRow(
                    game_id=result.id,
                    seq=seq,
                    unit=int(event.unit),
                    event=int(event.event),
                    amount=event.amount,
                )
                for seq, event in enumerate(events)
            )
            played = _to_db(result.time)
            session.execute(
                update(BotRow)
                .where(
                    BotRow.id.in_([result.bot_a.id, result.bot_b.id]),
                    or_(BotRow.last_played.is_(None), BotRow.last_played < played),
                )
                .values(last_played=played)
            )

        self._write(f"Saving game {result.id}", insert)

    def _results(self, session: Session, rows: Iterable[GameResultRow]) -> list[GameResult]:
        bots: dict[int, Bot] = {
            row.id: _bot_from_row(row) for row in session.scalars(select(BotRow))
        }

        def bot(bot_id: int | None) -> Bot | None:
            return bots[bot_id] if bot_id is not None else None

        return [
            GameResult(
                id=row.id,
                time=_from_db(row.time),
                game_realtime=row.game_realtime,
                realtime_timeout=row.realtime_timeout,
                frame_timeout=row.frame_timeout,
                map=row.map,
                bot_a=bots[row.bot_a_id],
                race_a=Race.parse(row.race_a),
                bot_b=bots[row.bot_b_id],
                race_b=Race.parse(row.race_b),
                winner=bot(row.winner_id),
                loser=bot(row.loser_id),
                bot_a_crashed=row.bot_a_crashed,
                bot_b_crashed=row.bot_b_crashed,
                game_hash=row.game_hash,
                frame_count=row.frame_count,
            )
            for row in rows
        ]

    def game_results_since(self, timestamp: datetime | None) -> list[GameResult]:
        def since(session: Session) -> list[GameResult]:
            query = select(GameResultRow).order_by(GameResultRow.time, GameResultRow.id)
            if timestamp is not None:
                query = query.where(GameResultRow.time > _to_db(timestamp))
            return self._results(session, session.scalars(query).all())

        return self._read(since)

    @staticmethod
    def _won_lost(bot_id_column):
        return (
            func.sum(case((GameResultRow.winner_id == bot_id_column, 1), else_=0)),
            func.sum(case((GameResultRow.loser_id == bot_id_column, 1), else_=0)),
        )

    def last_sequence(self) -> int:
        return self._read(
            lambda session: session.scalar(select(func.coalesce(func.max(GameResultRow.seq), 0)))
        )

    def games_since_bot_watermark(self, up_to: int | None = None) -> list[BotStat]:
        def since_watermark(session: Session) -> list[BotStat]:
            won, lost = self._won_lost(BotRow.id)
            query = (
                select(BotRow, won, lost)
                .join(
                    GameResultRow,
                    or_(GameResultRow.winner_id == BotRow.id, GameResultRow.loser_id == BotRow.id),
                )
                .where(
                    BotRow.enabled.is_(True),
                    GameResultRow.seq > BotRow.stats_sequence,
                )
                .group_by(BotRow.id)
                .order_by(BotRow.id)
            )
            if up_to is not None:
                query = query.where(GameResultRow.seq <= up_to)
            rows = session.execute(query).all()
            return [
                BotStat(bot=_bot_from_row(row), won=int(w), lost=int(l)) for row, w, l in rows
            ]

        return self._read(since_watermark)

    def map_stats(self, bot: Bot) -> list[MapStat]:
        def per_map(session: Session) -> list[MapStat]:
            won, lost = self._won_lost(bot.id)
            rows = session.execute(
                select(GameResultRow.map, won, lost)
                .where(or_(GameResultRow.winner_id == bot.id, GameResultRow.loser_id == bot.id))
                .group_by(GameResultRow.map)
                .order_by(GameResultRow.map)
            ).all()
            return [MapStat(map=m, won=int(w), lost=int(l)) for m, w, l in rows]

        return self._read(per_map)

    def race_vs_race_stats(self) -> list[BotRaceVsRace]:
        def race_vs_race(session: Session) -> list[BotRaceVsRace]:
            own_race = case(
                (GameResultRow.bot_a_id == BotRow.id, GameResultRow.race_a),
                else_=GameResultRow.race_b,
            )
            enemy_race = case(
                (GameResultRow.bot_a_id == BotRow.id, GameResultRow.race_b),
                else_=GameResultRow.race_a,
            )
            won, lost = self._won_lost(BotRow.id)
            rows = session.execute(
                select(BotRow, own_race, enemy_race, won, lost)
                .join(
                    GameResultRow,
                    or_(GameResultRow.bot_a_id == BotRow.id, GameResultRow.bot_b_id == BotRow.id),
                )
                .where(BotRow.enabled.is_(True))
                .group_by(BotRow.id, own_race, enemy_race)
                .order_by(BotRow.id, own_race, enemy_race)
            ).all()
            return [
                BotRaceVsRace(
                    bot=_bot_from_row(row),
                    race=Race.parse(race),
                    enemy_race=Race.parse(enemy),
                    won=int(w),
                    lost=int(l),
                )
                for row, race, enemy, w, l in rows
            ]

        return self._read(race_vs_race)

    def aggregate_events_with_threshold(
        self, min_count: int, since: datetime | None = None
    ) -> list[GameEvent]:
        def aggregate(session: Session) -> list[GameEvent]:
            amount = func.sum(GameEventRow.amount)
            first_seq = func.min(GameEventRow.seq)
            query = (
                select(GameEventRow.game_id, GameEventRow.unit, GameEventRow.event, amount)
                .join(GameResultRow, GameResultRow.id == GameEventRow.game_id)
                .group_by(
                    GameEventRow.game_id,
                    GameResultRow.time,
                    GameEventRow.unit,
                    GameEventRow.event,
                )
                .having(amount >= min_count)
                .order_by(GameResultRow.time, GameEventRow.game_id, first_seq)
            )
            if since is not None:
                query = query.where(GameResultRow.time > _to_db(since))
            return [
                GameEvent(
                    game_id=game_id,
                    unit=UnitType.parse(unit),
                    event=UnitEventType(event),
                    amount=int(total),
                )
                for game_id, unit, event, total in session.execute(query).all()
            ]

        return self._read(aggregate)

    def update_rankings(
        self, updates: list[RankingUpdate], watermark: datetime, sequence: int
    ) -> None:
        def write(session: Session) -> None:
            for u in updates:
                result = session.execute(
                    update(BotRow)
                    .where(BotRow.id == u.bot_id)
                    .values(
                        rating=u.new_rating,
                        rank=u.rank.value,
                        last_updated=_to_db(watermark),
                        stats_sequence=sequence,
                    )
                )
                if result.rowcount != 1:
                    raise PersistenceError(f"Unknown bot id {u.bot_id}")

        self._write(f"Updating {len(updates)} rankings", write)

    # Ladder-wide figures

    def count_crashes(self) -> int:
        return self._read(
            lambda session: session.scalar(
                select(func.count())
                .select_from(GameResultRow)
                .where(
                    or_(
                        GameResultRow.bot_a_crashed.is_(True),
                        GameResultRow.bot_b_crashed.is_(True),
                    )
                )
            )
        )

    def average_game_realtime(self) -> float | None:
        return self._read(
            lambda session: session.scalar(
                select(func.avg(GameResultRow.game_realtime)).where(
                    GameResultRow.winner_id.is_not(None)
                )
            )
        )

    def bot_vs_bot_wins(self, after: datetime | None = None) -> list[BotVsBotWonGames]:
        def head_to_head(session: Session) -> list[BotVsBotWonGames]:
            winner = aliased(BotRow)
            loser = aliased(BotRow)
            query = (
                select(winner, loser, func.count())
                .select_from(GameResultRow)
                .join(winner, winner.id == GameResultRow.winner_id)
                .join(loser, loser.id == GameResultRow.loser_id)
                .group_by(winner.id, loser.id)
                .order_by(winner.id, loser.id)
            )
            if after is not None:
                query = query.where(GameResultRow.time >= _to_db(after))
            return [
                BotVsBotWonGames(bot_a=_bot_from_row(a), bot_b=_bot_from_row(b), won=int(n))
                for a, b, n in session.execute(query).all()
            ]

        return self._read(head_to_head)

    def count_wins_by_race(self, winner_race: Race, loser_race: Race) -> int:
        a_won = and_(
            GameResultRow.winner_id == GameResultRow.bot_a_id,
            GameResultRow.race_a == winner_race.value,
            GameResultRow.race_b == loser_race.value,
        )
        b_won = and_(
            GameResultRow.winner_id == GameResultRow.bot_b_id,
            GameResultRow.race_b == winner_race.value,
            GameResultRow.race_a == loser_race.value,
        )
        return self._read(
            lambda session: session.scalar(
                select(func.count()).select_from(GameResultRow).where(or_(a_won, b_won))
            )
        )
