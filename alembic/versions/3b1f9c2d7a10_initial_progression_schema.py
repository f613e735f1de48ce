"""initial progression schema

Revision ID: 3b1f9c2d7a10
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1f9c2d7a10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID = postgresql.UUID(as_uuid=True)
_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    # --- Catalog ---
    op.create_table(
        "courses",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column(
            "sequential_unlock", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "access_type", sa.String(length=16), nullable=False, server_default="free"
        ),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
    )
    op.create_table(
        "modules",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "course_id",
            _UUID,
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_modules_course_id", "modules", ["course_id"])
    op.create_table(
        "lessons",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "module_id",
            _UUID,
            sa.ForeignKey("modules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("is_preview", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completions_count", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("module_id", "order"),
    )
    op.create_index("ix_lessons_module_id", "lessons", ["module_id"])
    op.create_table(
        "tests",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
    )
    op.create_table(
        "course_test",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "course_id",
            _UUID,
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "test_id",
            _UUID,
            sa.ForeignKey("tests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scope", sa.String(length=16), nullable=False, server_default="course"),
        sa.Column("scope_id", _UUID, nullable=True),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("passing_score", sa.Integer(), nullable=False, server_default="70"),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "unlock_after_previous",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("unlock_after_test_id", _UUID, nullable=True),
        sa.UniqueConstraint(
            "course_id", "test_id", "scope", "scope_id", name="course_test_scope_unique"
        ),
    )
    op.create_index("ix_course_test_test_id", "course_test", ["test_id"])
    op.create_index(
        "ix_course_test_scope", "course_test", ["course_id", "scope", "scope_id"]
    )
    op.create_table(
        "progression_rules",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "course_id",
            _UUID,
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("target_type", sa.String(length=16), nullable=True),
        sa.Column("target_id", _UUID, nullable=True),
        sa.Column("condition_type", sa.String(length=16), nullable=True),
        sa.Column("condition_id", _UUID, nullable=True),
        sa.Column("condition_value", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=16), nullable=False, server_default="lock"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", _TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_progression_rules_target",
        "progression_rules",
        ["course_id", "target_type", "target_id"],
    )

    # --- Learner facts ---
    op.create_table(
        "lesson_progress",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("user_id", sa.String(length=320), nullable=False),
        sa.Column(
            "lesson_id",
            _UUID,
            sa.ForeignKey("lessons.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", _TS, nullable=True),
        sa.Column(
            "progress_percentage", sa.Float(), nullable=False, server_default="0"
        ),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", _TS, nullable=True),
        sa.UniqueConstraint("user_id", "lesson_id"),
    )
    op.create_index("ix_lesson_progress_lesson_id", "lesson_progress", ["lesson_id"])
    op.create_table(
        "test_results",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("user_id", sa.String(length=320), nullable=False),
        sa.Column(
            "test_id",
            _UUID,
            sa.ForeignKey("tests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("percentage", sa.Float(), nullable=False),
        sa.Column("passed", sa.Boolean(), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
    )
    op.create_index(
        "ix_test_results_user_test", "test_results", ["user_id", "test_id"]
    )
    op.create_table(
        "course_user",
        sa.Column("user_id", sa.String(length=320), primary_key=True),
        sa.Column(
            "course_id",
            _UUID,
            sa.ForeignKey("courses.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("enrolled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "progress_percentage", sa.Float(), nullable=False, server_default="0"
        ),
        sa.Column("enrolled_at", _TS, nullable=True),
        sa.Column("completed_at", _TS, nullable=True),
    )


def downgrade() -> None:
    op.drop_table("course_user")
    op.drop_index("ix_test_results_user_test", table_name="test_results")
    op.drop_table("test_results")
    op.drop_index("ix_lesson_progress_lesson_id", table_name="lesson_progress")
    op.drop_table("lesson_progress")
    op.drop_index("ix_progression_rules_target", table_name="progression_rules")
    op.drop_table("progression_rules")
    op.drop_index("ix_course_test_scope", table_name="course_test")
    op.drop_index("ix_course_test_test_id", table_name="course_test")
    op.drop_table("course_test")
    op.drop_table("tests")
    op.drop_index("ix_lessons_module_id", table_name="lessons")
    op.drop_table("lessons")
    op.drop_index("ix_modules_course_id", table_name="modules")
    op.drop_table("modules")
    op.drop_table("courses")
