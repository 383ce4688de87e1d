"""
Maintenance CLI Tests

Parser wiring plus end-to-end runs against a temporary SQLite file.
"""
import asyncio
import json
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegrade.cli import create_parser, main
from coursegrade.cli.db_commands import DbCommand
from coursegrade.cli.weights_commands import WeightsCommand
from coursegrade.config.weight_settings import WeightSettings
from coursegrade.database import build_engine, init_db
from coursegrade.orm.topic import Topic
from coursegrade.services import course_content_service as content


async def _seed(database_url: str) -> int:
    """One topic: a lecture and an exam, split 50/50."""
    engine = build_engine(database_url)
    await init_db(bind=engine)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    settings = WeightSettings()
    try:
        async with session_factory() as db:
            course = await content.create_course(db, "Algebra", lecture_weight=50, settings=settings)
            topic = await content.create_topic(db, course.id, "Groups", settings=settings)
            await content.add_lecture(db, topic.id, "Axioms", duration=60, settings=settings)
            await content.add_exam(db, topic.id, marks=10, settings=settings)
            return course.id
    finally:
        await engine.dispose()


async def _tamper_topic_weights(database_url: str, weight: Decimal) -> None:
    engine = build_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.execute(update(Topic).values(weight=weight))
    finally:
        await engine.dispose()


# =============================================================================
# CLI Parser Tests
# =============================================================================

class TestCLIParser:
    """Test CLI argument parsing."""

    def test_db_init_parsing(self):
        args = create_parser().parse_args(["db", "init"])

        assert args.command == "db"
        assert args.db_action == "init"
        assert args.dry_run is False

    def test_weights_recalc_parsing(self):
        args = create_parser().parse_args(["--dry-run", "weights", "recalc", "--course-id", "42"])

        assert args.command == "weights"
        assert args.weights_action == "recalc"
        assert args.course_id == 42
        assert args.dry_run is True

    def test_short_course_flag(self):
        args = create_parser().parse_args(["weights", "show", "-c", "3"])

        assert args.course_id == 3

    def test_course_id_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["weights", "verify"])

    def test_log_level_choices(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--log-level", "TRACE", "db", "init"])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out


# =============================================================================
# Command Handler Tests
# =============================================================================

class TestCommands:

    def test_db_init_dry_run(self, capsys):
        args = create_parser().parse_args(["db", "init"])

        assert DbCommand(dry_run=True).execute(args) == 0
        assert "[DRY RUN]" in capsys.readouterr().out

    def test_unknown_course_is_an_error(self, database_url, capsys):
        assert main(["--database-url", database_url, "db", "init"]) == 0
        capsys.readouterr()

        assert main(["--database-url", database_url, "weights", "show", "--course-id", "1"]) == 1
        assert "Course 1 not found" in capsys.readouterr().out

    def test_show_prints_weight_tree(self, database_url, capsys):
        course_id = asyncio.run(_seed(database_url))

        assert main(["--database-url", database_url, "weights", "show", "--course-id", str(course_id)]) == 0

        tree = json.loads(capsys.readouterr().out)
        assert tree["id"] == course_id
        assert tree["balanced"] is True
        assert Decimal(tree["total"]) == Decimal("100")
        assert Decimal(tree["topics"][0]["lectures"][0]["weight"]) == Decimal("50")

    def test_verify_then_repair(self, database_url, capsys):
        course_id = asyncio.run(_seed(database_url))
        base = ["--database-url", database_url, "weights"]
        course = ["--course-id", str(course_id)]

        assert main(base + ["verify"] + course) == 0
        assert "✓ Balanced" in capsys.readouterr().out

        asyncio.run(_tamper_topic_weights(database_url, Decimal("90")))
        assert main(base + ["verify"] + course) == 1

        assert main(["--dry-run"] + base + ["recalc"] + course) == 0
        assert "[DRY RUN]" in capsys.readouterr().out
        assert main(base + ["verify"] + course) == 1

        assert main(base + ["recalc"] + course) == 0
        assert main(base + ["verify"] + course) == 0

    def test_unknown_weights_action(self, capsys):
        args = create_parser().parse_args(["weights"])

        assert WeightsCommand().execute(args) == 1
        assert "Unknown weights action" in capsys.readouterr().out
