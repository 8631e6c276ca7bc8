"""FAQ lookup service."""
import logging
import re
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from app.db.models import FaqResponse

logger = logging.getLogger(__name__)

MIN_KEYWORD_LENGTH = 4


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so caller text matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class FaqPersistenceService:
    """Service for matching caller questions against stored FAQ answers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _active_faqs(self) -> List[FaqResponse]:
        result = await self.db.execute(
            select(FaqResponse)
            .where(FaqResponse.is_active.is_(True))
            .order_by(FaqResponse.priority.desc(), FaqResponse.id)
        )
        return list(result.scalars().all())

    async def find_match(self, question: str) -> Optional[FaqResponse]:
        """
        Find the best FAQ answer for a question.

        Tries, in order: the question pattern, the stored variations, then
        keyword matching on words longer than three characters. Within each
        step the highest priority entry wins. A match increments its usage
        counter.
        """
        normalized = question.lower().strip()
        if not normalized:
            return None

        pattern_result = await self.db.execute(
            select(FaqResponse)
            .where(
                FaqResponse.is_active.is_(True),
                func.lower(FaqResponse.question_pattern).like(f"%{escape_like(normalized)}%", escape="\\"),
            )
            .order_by(FaqResponse.priority.desc(), FaqResponse.id)
            .limit(1)
        )
        match = pattern_result.scalar_one_or_none()

        if match is None:
            faqs = await self._active_faqs()
            match = next(
                (
                    faq for faq in faqs
                    if faq.question_pattern.lower() in normalized
                    or any(
                        normalized in variation.lower() or variation.lower() in normalized
                        for variation in (faq.question_variations or [])
                    )
                ),
                None,
            )

            if match is None:
                keywords = [
                    word for word in re.sub(r"[^\w\s]", "", normalized).split()
                    if len(word) >= MIN_KEYWORD_LENGTH
                ]
                if keywords:
                    match = next(
                        (
                            faq for faq in faqs
                            if all(k in faq.question_pattern.lower() for k in keywords)
                            or all(k in faq.answer.lower() for k in keywords)
                        ),
                        None,
                    )

        if match is not None:
            match.times_used = (match.times_used or 0) + 1
            await self.db.commit()
            logger.info(f"[FAQ] Matched FAQ {match.id} ({match.category})")
        return match
