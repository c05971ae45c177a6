"""create scheduling tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    room_type = sa.Enum("lecture", "laboratory", "hybrid", name="room_type")
    day_group = sa.Enum("MW", "TTH", "FRI", "SAT", "SUN", name="day_group")
    day_off_time = sa.Enum("morning", "afternoon", "wholeday", name="day_off_time")
    time_period = sa.Enum("morning", "afternoon", name="time_period")
    schedule_status = sa.Enum("draft", "published", name="schedule_status")

    op.create_table(
        "courses",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_courses_code", "courses", ["code"], unique=True)

    op.create_table(
        "subjects",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("units", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("lecture_hours", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("lab_hours", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("course_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_subjects_code", "subjects", ["code"], unique=True)
    op.create_index("ix_subjects_course_id", "subjects", ["course_id"])

    op.create_table(
        "rooms",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("building_id", sa.String(length=36), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="40"),
        sa.Column("room_type", room_type, nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_rooms_name", "rooms", ["name"], unique=True)

    op.create_table(
        "time_slots",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("day_group", day_group, nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_time_slots_day_group", "time_slots", ["day_group"])

    op.create_table(
        "academic_setups",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("academic_year", sa.String(length=20), nullable=False),
        sa.Column("semester", sa.String(length=20), nullable=False, server_default="1st"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "academic_setup_subjects",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("academic_setup_id", sa.String(length=36), nullable=False),
        sa.Column("subject_id", sa.String(length=36), nullable=False),
        sa.Column("course_ids", sa.JSON(), nullable=False),
        sa.Column("course_key", sa.String(length=400), nullable=False, server_default=""),
        sa.Column("year_level", sa.Integer(), nullable=True),
        sa.Column("block_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("expected_students", sa.Integer(), nullable=False, server_default="40"),
        sa.Column("needs_lab", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("preferred_lecture_room_id", sa.String(length=36), nullable=True),
        sa.Column("preferred_lab_room_id", sa.String(length=36), nullable=True),
        sa.Column("parallel_subject_ids", sa.JSON(), nullable=False),
        sa.Column("assigned_faculty_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "academic_setup_id",
            "subject_id",
            "year_level",
            "block_number",
            "course_key",
            name="uq_academic_setup_subjects_block",
        ),
    )
    op.create_index("ix_academic_setup_subjects_academic_setup_id", "academic_setup_subjects", ["academic_setup_id"])
    op.create_index("ix_academic_setup_subjects_subject_id", "academic_setup_subjects", ["subject_id"])

    op.create_table(
        "academic_setup_faculty",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("academic_setup_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column("max_units", sa.Integer(), nullable=False, server_default="24"),
        sa.Column("preferred_day_off", sa.String(length=20), nullable=True),
        sa.Column("preferred_day_off_time", day_off_time, nullable=False, server_default="wholeday"),
        sa.Column("preferred_time_period", time_period, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("academic_setup_id", "user_id", name="uq_academic_setup_faculty_user"),
    )
    op.create_index("ix_academic_setup_faculty_academic_setup_id", "academic_setup_faculty", ["academic_setup_id"])
    op.create_index("ix_academic_setup_faculty_user_id", "academic_setup_faculty", ["user_id"])

    op.create_table(
        "schedules",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("academic_setup_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("status", schedule_status, nullable=False, server_default="draft"),
        sa.Column("fitness_score", sa.Float(), nullable=True),
        sa.Column("generation", sa.Integer(), nullable=True),
        sa.Column("generations_run", sa.Integer(), nullable=True),
        sa.Column("generation_metadata", sa.JSON(), nullable=False),
        sa.Column("created_by_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_schedules_academic_setup_id", "schedules", ["academic_setup_id"])
    op.create_index("ix_schedules_status", "schedules", ["status"])

    op.create_table(
        "schedule_entries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("schedule_id", sa.String(length=36), nullable=False),
        sa.Column("academic_setup_subject_id", sa.String(length=36), nullable=False),
        sa.Column("day", sa.String(length=20), nullable=False),
        sa.Column("time_slot_id", sa.String(length=36), nullable=False),
        sa.Column("room_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("is_lab_session", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("session_group_id", sa.String(length=36), nullable=False),
        sa.Column("slots_span", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("custom_start_time", sa.String(length=5), nullable=True),
        sa.Column("custom_end_time", sa.String(length=5), nullable=True),
        sa.Column("display_code", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("parallel_display_code", sa.String(length=300), nullable=True),
        sa.Column("has_conflict", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("conflict_reason", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_schedule_entries_schedule_id", "schedule_entries", ["schedule_id"])
    op.create_index(
        "ix_schedule_entries_academic_setup_subject_id", "schedule_entries", ["academic_setup_subject_id"]
    )
    op.create_index("ix_schedule_entries_user_id", "schedule_entries", ["user_id"])
    op.create_index("ix_schedule_entries_session_group_id", "schedule_entries", ["session_group_id"])


def downgrade() -> None:
    op.drop_index("ix_schedule_entries_session_group_id", table_name="schedule_entries")
    op.drop_index("ix_schedule_entries_user_id", table_name="schedule_entries")
    op.drop_index("ix_schedule_entries_academic_setup_subject_id", table_name="schedule_entries")
    op.drop_index("ix_schedule_entries_schedule_id", table_name="schedule_entries")
    op.drop_table("schedule_entries")
    op.drop_index("ix_schedules_status", table_name="schedules")
    op.drop_index("ix_schedules_academic_setup_id", table_name="schedules")
    op.drop_table("schedules")
    op.drop_index("ix_academic_setup_faculty_user_id", table_name="academic_setup_faculty")
    op.drop_index("ix_academic_setup_faculty_academic_setup_id", table_name="academic_setup_faculty")
    op.drop_table("academic_setup_faculty")
    op.drop_index("ix_academic_setup_subjects_subject_id", table_name="academic_setup_subjects")
    op.drop_index("ix_academic_setup_subjects_academic_setup_id", table_name="academic_setup_subjects")
    op.drop_table("academic_setup_subjects")
    op.drop_table("academic_setups")
    op.drop_index("ix_time_slots_day_group", table_name="time_slots")
    op.drop_table("time_slots")
    op.drop_index("ix_rooms_name", table_name="rooms")
    op.drop_table("rooms")
    op.drop_index("ix_subjects_course_id", table_name="subjects")
    op.drop_index("ix_subjects_code", table_name="subjects")
    op.drop_table("subjects")
    op.drop_index("ix_courses_code", table_name="courses")
    op.drop_table("courses")

    bind = op.get_bind()
    for enum_name in ("schedule_status", "time_period", "day_off_time", "day_group", "room_type"):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
