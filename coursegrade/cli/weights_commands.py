"""
Weight CLI Commands

Weight operations: recalc, verify, show
"""
import asyncio
import json
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegrade.database import DATABASE_URL, build_engine
from coursegrade.exceptions import CourseGradeException
from coursegrade.services.course_content_service import get_course_weights
from coursegrade.services.weight_engine_service import WeightEngine


class WeightsCommand:
    """Weight CLI command handler."""

    def __init__(self, dry_run: bool = False, database_url: Optional[str] = None):
        self.dry_run = dry_run
        self.database_url = database_url or DATABASE_URL

    def execute(self, args) -> int:
        """Execute weight command."""
        actions = {
            "recalc": self._recalc,
            "verify": self._verify,
            "show": self._show,
        }
        action = actions.get(args.weights_action)
        if action is None:
            print("Error: Unknown weights action")
            return 1

        try:
            return asyncio.run(self._with_session(action, args.course_id))
        except CourseGradeException as e:
            print(f"Error: {e.message}")
            return 1

    async def _with_session(self, action, course_id: int) -> int:
        engine = build_engine(self.database_url)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            async with session_factory() as db:
                return await action(db, course_id)
        finally:
            await engine.dispose()

    async def _recalc(self, db: AsyncSession, course_id: int) -> int:
        """Run the full cascade for a course."""
        print(f"=== Recalculate Course {course_id} ===")

        try:
            plan = await WeightEngine(db).recalculate_course(course_id)
            if self.dry_run:
                await db.rollback()
                print(f"[DRY RUN] Would apply: {plan}")
                return 0
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        print(f"✓ Applied: {plan}")
        return 0

    async def _verify(self, db: AsyncSession, course_id: int) -> int:
        """Print topic weights and whether they add up."""
        print(f"=== Verify Course {course_id} ===")

        weights = await get_course_weights(db, course_id)
        report = await WeightEngine(db).check_course(course_id)

        for topic in weights.topics:
            print(f"  topic {topic.id} ({topic.name}): {topic.weight}")
        print(f"  total: {report['total']} (allocated {report['expected_total']})")

        if not report["consistent"]:
            print("✗ Topic weights do not match the allocation; run `weights recalc`")
            return 1
        if not report["balanced"]:
            print("✗ Topic weights do not add up to 100")
            return 1

        print("✓ Balanced")
        return 0

    async def _show(self, db: AsyncSession, course_id: int) -> int:
        """Dump the persisted weight tree as JSON."""
        weights = await get_course_weights(db, course_id)
        print(json.dumps(weights.model_dump(mode="json"), indent=2))
        return 0
