from __future__ import annotations

import re
from collections.abc import Mapping, Sequence

from app.services.scheduling.domain import SubjectBlock, TimeSlotSpec, minutes_to_time

_DEGREE_PREFIX = re.compile(r"^(BS|BA|B)")


def block_code(block_number: int) -> str:
    return f"{block_number:02d}"


def compact_code(code: str) -> str:
    return code.replace(" ", "")


def course_group_code(course_codes: Sequence[str]) -> str:
    """Short curriculum tag: BSCS -> CS, BSCS + BLIS -> CS+LIS."""
    tags = sorted({_DEGREE_PREFIX.sub("", code.upper()) or code for code in course_codes})
    return "+".join(tags)


def display_code(block: SubjectBlock) -> str:
    base = compact_code(block.subject_code)
    # Separate blocks of a shared subject carry their curriculum tag.
    if block.subject_is_shared and len(block.course_codes) == 1:
        tag = course_group_code(block.course_codes)
        if tag:
            return f"{base}{tag}{block_code(block.block_number)}"
    return f"{base}{block_code(block.block_number)}"


def parallel_display_code(group: Sequence[SubjectBlock], subject_codes: Mapping[str, str]) -> str | None:
    """Joined codes of jointly taught subjects, e.g. ``ITP301/CSC101``."""
    if not group:
        return None
    leader = group[0]
    subject_ids: list[str] = []
    for block in group:
        for subject_id in (block.subject_id, *block.parallel_subject_ids):
            if subject_id not in subject_ids:
                subject_ids.append(subject_id)
    if len(subject_ids) < 2:
        return None
    suffix = block_code(leader.block_number)
    codes = [compact_code(subject_codes[subject_id]) + suffix for subject_id in subject_ids if subject_id in subject_codes]
    return "/".join(codes) if len(codes) > 1 else None


def custom_times(slots: Sequence[TimeSlotSpec], meeting_minutes: int) -> tuple[str | None, str | None]:
    """Explicit meeting window when the meeting does not exactly fill its slots."""
    if not slots:
        return None, None
    start = slots[0].start
    if start + meeting_minutes >= slots[-1].end:
        return None, None
    return minutes_to_time(start), minutes_to_time(start + meeting_minutes)
