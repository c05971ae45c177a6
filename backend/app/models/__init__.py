from app.models.academic_setup import (  # noqa: F401
    AcademicSetup,
    AcademicSetupFaculty,
    AcademicSetupSubject,
    DayOffTime,
    TimePeriod,
)
from app.models.course import Course, Subject  # noqa: F401
from app.models.room import Room, RoomType  # noqa: F401
from app.models.schedule import Schedule, ScheduleEntry, ScheduleStatus  # noqa: F401
from app.models.time_slot import DayGroup, TimeSlot  # noqa: F401
