import time
from contextlib import asynccontextmanager
from itertools import chain, islice, repeat
from typing import Iterator, Optional

from sqlalchemy import BigInteger, delete, func, literal, literal_column, select, union_all, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from referral_waitlist.features.users.models.user import User
from referral_waitlist.features.waitlist.exceptions import (
    AlreadyEnrolled,
    AlreadyPromoted,
    EntryNotFound,
    InvalidReferralCode,
    NoAdjacentEntries,
    PartialBatchFailure,
    ReferralAlreadyUsed,
    SelfReferral,
    StoreUnavailable,
    UniquenessFailure,
    WaitlistError,
)
from referral_waitlist.features.waitlist.models.waitlist import CodeType, OffWaitlistEntry, WaitlistEntry
from referral_waitlist.features.waitlist.schemas.waitlist import (
    ActiveReferralMatch,
    PromotedReferralMatch,
    PromotionResult,
    RankOut,
    ReferralCodeMatch,
    WaitlistSummary,
)
from referral_waitlist.features.waitlist.utils.ordering import chunked, has_room_between, midpoint
from referral_waitlist.features.waitlist.utils.referral_code_generator import generate_referral_code
from referral_waitlist.platform.alerts import report_incident
from referral_waitlist.platform.config import settings
from referral_waitlist.platform.logger import get_logger

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class WaitlistService:
    """
    Queue operations over one session.

    The true order of the queue is ascending ``timestamp`` (ties broken by id).
    ``position`` is a cache of that order, rewritten by ``recompute_positions``;
    reads report it as-is.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        max_code_attempts: Optional[int] = None,
        referral_jump: Optional[int] = None,
        batch_size: Optional[int] = None,
        timestamp_spacing: Optional[int] = None,
    ):
        self.db = db
        self.max_code_attempts = max_code_attempts or settings.WAITLIST_MAX_CODE_ATTEMPTS
        self.referral_jump = referral_jump or settings.WAITLIST_REFERRAL_JUMP
        self.batch_size = batch_size or settings.WAITLIST_PROMOTION_BATCH_SIZE
        self.timestamp_spacing = timestamp_spacing or settings.WAITLIST_TIMESTAMP_SPACING

    @asynccontextmanager
    async def _store_errors(self, operation: str):
        try:
            yield
        except WaitlistError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error in {operation}: {e}")
            raise StoreUnavailable(f"Error in {operation}: {e}") from e

    # ── Enrollment ───────────────────────────────

    def _candidate_codes(self, first_six: str, last_six: str) -> Iterator[tuple[str, CodeType]]:
        randoms = ((generate_referral_code(), CodeType.RANDOM) for _ in repeat(None))
        candidates = chain([(first_six, CodeType.FIRST_SIX), (last_six, CodeType.LAST_SIX)], randoms)
        return islice(candidates, self.max_code_attempts)

    async def _code_held_by_promoted(self, code: str) -> bool:
        stmt = select(OffWaitlistEntry.id).where(OffWaitlistEntry.referral_code == code).limit(1)
        return (await self.db.scalar(stmt)) is not None

    async def _is_promoted(self, user_id: str) -> bool:
        stmt = select(OffWaitlistEntry.id).where(OffWaitlistEntry.users_user_id == user_id).limit(1)
        return (await self.db.scalar(stmt)) is not None

    async def _insert_entry(self, user_id: str, code: str, code_type: CodeType) -> WaitlistEntry:
        now = now_ms()
        # Evaluated inside the INSERT so concurrent signups each see the count at write time.
        back_of_queue = select(func.count(WaitlistEntry.id) + 1).scalar_subquery()
        entry = WaitlistEntry(
            users_user_id=user_id,
            position=back_of_queue,
            timestamp=now,
            creation_date=now,
            referral_code=code,
            code_type=code_type,
            referrals=0,
            used_referral_code=False,
        )
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(entry)
        return entry

    async def enroll(self, user_id: str, first_six: str, last_six: str) -> WaitlistEntry:
        """
        Put ``user_id`` at the back of the queue with a referral code no other
        active entry holds.

        Codes are tried in order: ``first_six``, ``last_six``, then random
        codes, one INSERT per attempt, ``max_code_attempts`` attempts in all.
        A unique violation rolls the attempt back and moves to the next code.

        Raises:
            AlreadyEnrolled: the user already has an active entry.
            AlreadyPromoted: the user was already moved off the waitlist.
            UniquenessFailure: every attempt was rejected. An incident is
                reported before raising.
            StoreUnavailable: any other database failure.
        """
        async with self._store_errors("enroll"):
            if await self.get_entry_by_user_id(user_id) is not None:
                raise AlreadyEnrolled(f"User {user_id} is already on the waitlist")
            if await self._is_promoted(user_id):
                raise AlreadyPromoted(f"User {user_id} has already been promoted off the waitlist")

            attempts = 0
            for code, code_type in self._candidate_codes(first_six, last_six):
                attempts += 1
                if not code:
                    logger.warning(f"No {code_type.value} code available for user {user_id}")
                    continue
                if await self._code_held_by_promoted(code):
                    logger.info(f"Referral code {code} still belongs to a promoted user, trying next")
                    continue

                try:
                    entry = await self._insert_entry(user_id, code, code_type)
                    await self.db.commit()
                except IntegrityError as e:
                    await self.db.rollback()
                    logger.warning(
                        f"Insert into waitlist rejected for user {user_id} with "
                        f"{code_type.value} code {code}: {e.orig}"
                    )
                    if await self.get_entry_by_user_id(user_id) is not None:
                        raise AlreadyEnrolled(f"User {user_id} is already on the waitlist") from e
                    continue

                logger.info(
                    f"Enrolled user {user_id} at position {entry.position} "
                    f"with {code_type.value} code after {attempts} attempt(s)"
                )
                return entry

        await report_incident(
            "Waitlist enrollment failed",
            f"No unique referral code could be assigned after {attempts} attempts.",
            {"user_id": user_id},
        )
        raise UniquenessFailure(
            f"Could not enroll user {user_id}: no unique referral code after {attempts} attempts",
            attempts=attempts,
        )

    async def attach_referral_link(self, user_id: str, referral_code: str) -> bool:
        """Store the shareable link on the user row. False when there is no such user."""
        link = f"{settings.WAITLIST_REFERRAL_LINK_BASE}?code={referral_code}"
        async with self._store_errors("attach_referral_link"):
            result = await self.db.execute(
                update(User)
                .where(User.id == user_id)
                .values(waitlist_referral_link=link)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        return bool(result.rowcount)

    # ── Reads ────────────────────────────────────

    async def get_entry_by_user_id(self, user_id: str) -> Optional[WaitlistEntry]:
        result = await self.db.execute(select(WaitlistEntry).where(WaitlistEntry.users_user_id == user_id))
        return result.scalar_one_or_none()

    async def get_first_entries(self, amount: int) -> list[WaitlistEntry]:
        stmt = (
            select(WaitlistEntry)
            .order_by(WaitlistEntry.timestamp.asc(), WaitlistEntry.id.asc())
            .limit(amount)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_rank(self, user_id: str) -> Optional[RankOut]:
        """Cached position of the user's entry, or None when not on the waitlist."""
        async with self._store_errors("get_rank"):
            entry = await self.get_entry_by_user_id(user_id)
        if entry is None:
            return None
        return RankOut.model_validate(entry)

    async def get_summary(self, user_id: str) -> Optional[WaitlistSummary]:
        async with self._store_errors("get_summary"):
            stmt = (
                select(WaitlistEntry, User.waitlist_referral_link)
                .outerjoin(User, User.id == WaitlistEntry.users_user_id)
                .where(WaitlistEntry.users_user_id == user_id)
            )
            row = (await self.db.execute(stmt)).first()
            if row is None:
                return None

            stats = await self.db.execute(
                select(func.max(WaitlistEntry.position), func.count(WaitlistEntry.id))
            )
            stored_max, active_count = stats.one()

        entry, referral_link = row
        return WaitlistSummary(
            position=entry.position,
            referral_code=entry.referral_code,
            code_type=entry.code_type,
            used_referral_code=entry.used_referral_code,
            # A stale position can exceed the population, and the count can outrun stale maxima.
            max_position=max(stored_max or 0, active_count),
            waitlist_referral_link=referral_link,
        )

    async def lookup_referral_code(self, code: str, excluding_user_id: Optional[str]) -> ReferralCodeMatch:
        """
        Find who owns ``code``, in the active queue and among promoted users.
        Rows belonging to ``excluding_user_id`` are ignored so a user can never
        resolve their own code.
        """
        async with self._store_errors("lookup_referral_code"):
            active_stmt = select(
                WaitlistEntry.id, WaitlistEntry.users_user_id, WaitlistEntry.position
            ).where(WaitlistEntry.referral_code == code)
            promoted_stmt = select(OffWaitlistEntry.id, OffWaitlistEntry.users_user_id).where(
                OffWaitlistEntry.referral_code == code
            )
            if excluding_user_id is not None:
                active_stmt = active_stmt.where(WaitlistEntry.users_user_id != excluding_user_id)
                promoted_stmt = promoted_stmt.where(OffWaitlistEntry.users_user_id != excluding_user_id)

            active_row = (await self.db.execute(active_stmt.limit(1))).first()
            promoted_row = (await self.db.execute(promoted_stmt.limit(1))).first()

        return ReferralCodeMatch(
            active=ActiveReferralMatch(id=active_row.id, user_id=active_row.users_user_id, position=active_row.position)
            if active_row
            else None,
            promoted=PromotedReferralMatch(id=promoted_row.id, user_id=promoted_row.users_user_id)
            if promoted_row
            else None,
        )

    # ── Referrals ────────────────────────────────

    async def _adjacent_entries(self, position: int, position_above: int, exclude_id: str):
        below = (
            select(
                WaitlistEntry.id, WaitlistEntry.timestamp, WaitlistEntry.position, literal_column("'below'").label("side")
            )
            .where(WaitlistEntry.position <= position, WaitlistEntry.id != exclude_id)
            .order_by(WaitlistEntry.position.desc(), WaitlistEntry.timestamp.desc())
            .limit(1)
            .subquery()
        )
        above = (
            select(
                WaitlistEntry.id, WaitlistEntry.timestamp, WaitlistEntry.position, literal_column("'above'").label("side")
            )
            .where(WaitlistEntry.position >= position_above, WaitlistEntry.id != exclude_id)
            .order_by(WaitlistEntry.position.asc(), WaitlistEntry.timestamp.asc())
            .limit(1)
            .subquery()
        )
        rows = (await self.db.execute(union_all(select(below), select(above)))).all()
        by_side = {row.side: row for row in rows}
        return by_side.get("below"), by_side.get("above")

    async def _relocate(self, entry: WaitlistEntry) -> None:
        """
        Move ``entry`` up by ``referral_jump`` places: it lands right after the
        entry ``referral_jump + 1`` places ahead of it, at the midpoint of that
        entry and its successor, never ahead of the first entry. Rebalances once
        if the neighbours have no integer left between them.
        """
        for rebalanced in (False, True):
            position = max(1, entry.position - self.referral_jump - 1)
            position_above = position + 1
            lower, upper = await self._adjacent_entries(position, position_above, entry.id)
            if lower is None or upper is None:
                raise NoAdjacentEntries(
                    f"No entries around position {position} to move entry {entry.id} between"
                )

            if has_room_between(lower.timestamp, upper.timestamp):
                entry.timestamp = midpoint(lower.timestamp, upper.timestamp)
                entry.position = position_above
                await self.db.flush()
                return

            if rebalanced:
                break
            logger.info(
                f"Timestamps {lower.timestamp} and {upper.timestamp} around position {position} "
                f"have converged, rebalancing the queue"
            )
            await self._rebalance()
            await self.db.refresh(entry)

        raise NoAdjacentEntries(f"No room to move entry {entry.id} even after rebalancing")

    async def _credit_active_referrer(self, entry_id: str) -> None:
        await self.db.execute(
            update(WaitlistEntry)
            .where(WaitlistEntry.id == entry_id)
            .values(referrals=WaitlistEntry.referrals + 1)
            .execution_options(synchronize_session=False)
        )
        referrer = await self._load_entry(entry_id)
        try:
            await self._relocate(referrer)
        except NoAdjacentEntries:
            logger.info(f"Referrer entry {entry_id} has nowhere to move, credited without a bump")

    async def _credit_promoted_referrer(self, user_id: str) -> None:
        result = await self.db.execute(
            update(OffWaitlistEntry)
            .where(OffWaitlistEntry.users_user_id == user_id)
            .values(referrals=OffWaitlistEntry.referrals + 1)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise EntryNotFound(f"No off waitlist row for user {user_id}")

    async def _load_entry(self, entry_id: str) -> Optional[WaitlistEntry]:
        stmt = (
            select(WaitlistEntry)
            .where(WaitlistEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def redeem_referral(
        self, redeemer_entry_id: str, referral_code: str, referrer_user_id: Optional[str] = None
    ) -> bool:
        """
        Redeem ``referral_code`` for the redeemer's entry, in one transaction:
        the redeemer moves up the queue and is marked as having used a code,
        and the code's owner gets a referral (and a bump, while still waiting).

        Raises:
            EntryNotFound, ReferralAlreadyUsed, SelfReferral, InvalidReferralCode,
            NoAdjacentEntries, StoreUnavailable. Nothing is written on failure.
        """
        async with self._store_errors("redeem_referral"):
            redeemer = await self._load_entry(redeemer_entry_id)
            if redeemer is None:
                raise EntryNotFound(f"Waitlist entry {redeemer_entry_id} not found")
            if redeemer.used_referral_code:
                raise ReferralAlreadyUsed(f"Waitlist entry {redeemer_entry_id} already redeemed a referral code")
            if referrer_user_id == redeemer.users_user_id or referral_code == redeemer.referral_code:
                raise SelfReferral(f"User {redeemer.users_user_id} cannot redeem their own referral code")

            match = await self.lookup_referral_code(referral_code, redeemer.users_user_id)
            if not match.found:
                raise InvalidReferralCode(f"Referral code {referral_code} does not exist")
            if referrer_user_id is not None and match.owner_user_id != referrer_user_id:
                raise InvalidReferralCode(f"Referral code {referral_code} does not belong to user {referrer_user_id}")

            await self._relocate(redeemer)
            redeemer.used_referral_code = True
            await self.db.flush()

            if match.active is not None:
                await self._credit_active_referrer(match.active.id)
            else:
                await self._credit_promoted_referrer(match.promoted.user_id)

            await self.db.commit()

        logger.info(
            f"Entry {redeemer_entry_id} redeemed code {referral_code} of user {match.owner_user_id}, "
            f"now at position {redeemer.position}"
        )
        return True

    # ── Queue maintenance ────────────────────────

    def _ranked(self):
        return select(
            WaitlistEntry.id.label("entry_id"),
            func.row_number()
            .over(order_by=(WaitlistEntry.timestamp.asc(), WaitlistEntry.id.asc()))
            .label("rank"),
            func.count().over().label("total"),
        ).subquery()

    async def _rebalance(self) -> int:
        await self.db.flush()
        anchor = await self.db.scalar(select(func.max(WaitlistEntry.timestamp)))
        if anchor is None:
            return 0
        ranked = self._ranked()
        stmt = (
            update(WaitlistEntry)
            .where(WaitlistEntry.id == ranked.c.entry_id)
            .values(
                timestamp=literal(anchor, BigInteger) - (ranked.c.total - ranked.c.rank) * self.timestamp_spacing,
                position=ranked.c.rank,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        logger.info(f"Rebalanced {result.rowcount} waitlist timestamps, spacing {self.timestamp_spacing}ms")
        return result.rowcount

    async def rebalance_timestamps(self) -> int:
        """
        Re-space every timestamp ``timestamp_spacing`` apart, keeping the order
        and the newest entry's timestamp, and refresh positions on the way.
        """
        async with self._store_errors("rebalance_timestamps"):
            touched = await self._rebalance()
            await self.db.commit()
        return touched

    async def recompute_positions(self) -> int:
        """
        Rewrite cached positions from timestamp order in a single statement.
        Only rows whose position changed are touched, so running it twice is
        a no-op the second time.
        """
        async with self._store_errors("recompute_positions"):
            ranked = self._ranked()
            stmt = (
                update(WaitlistEntry)
                .where(WaitlistEntry.id == ranked.c.entry_id)
                .where(WaitlistEntry.position != ranked.c.rank)
                .values(position=ranked.c.rank)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            await self.db.commit()

        logger.info(f"Recomputed positions, {result.rowcount} entries moved")
        return result.rowcount

    async def promote_front(self, amount: int) -> PromotionResult:
        """
        Move the ``amount`` entries with the smallest timestamps to
        ``off_waitlist``.

        Copies are inserted batch by batch, then the originals are deleted
        batch by batch, and everything commits together. A failing insert
        batch, or a delete batch that removes fewer rows than it should,
        rolls the whole promotion back with ``PartialBatchFailure``.
        """
        if amount <= 0:
            return PromotionResult(requested=amount, promoted=0, batches=0)

        async with self._store_errors("promote_front"):
            entries = await self.get_first_entries(amount)
            if not entries:
                logger.info("Waitlist is empty, nothing to promote")
                return PromotionResult(requested=amount, promoted=0, batches=0)

            promoted_at = now_ms()
            user_ids = [entry.users_user_id for entry in entries]
            batches = 0

            for batch_index, batch in chunked(entries, self.batch_size):
                self.db.add_all(
                    [
                        OffWaitlistEntry(
                            users_user_id=entry.users_user_id,
                            referrals=entry.referrals,
                            referral_code=entry.referral_code,
                            code_type=entry.code_type,
                            used_referral_code=entry.used_referral_code,
                            creation_date=entry.creation_date,
                            joined_waitlist_date=promoted_at,
                        )
                        for entry in batch
                    ]
                )
                try:
                    await self.db.flush()
                except SQLAlchemyError as e:
                    raise PartialBatchFailure(
                        f"Inserting promotion batch {batch_index} failed: {e}",
                        stage="insert",
                        batch_index=batch_index,
                        cause=e,
                    ) from e
                batches += 1

            for batch_index, batch in chunked(entries, self.batch_size):
                ids = [entry.id for entry in batch]
                result = await self.db.execute(
                    delete(WaitlistEntry)
                    .where(WaitlistEntry.id.in_(ids))
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != len(ids):
                    raise PartialBatchFailure(
                        f"Deleting promotion batch {batch_index} removed {result.rowcount} of {len(ids)} rows",
                        stage="delete",
                        batch_index=batch_index,
                    )
                for entry in batch:
                    self.db.expunge(entry)

            await self.db.commit()

        logger.info(f"Promoted {len(entries)} of {amount} requested waitlist entries in {batches} batch(es)")
        return PromotionResult(requested=amount, promoted=len(entries), batches=batches, user_ids=user_ids)
