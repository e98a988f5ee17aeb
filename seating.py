"""Exam seating numbers and committee (exam room) partitioning."""

import logging
import math

from records import safe_float

logger = logging.getLogger(__name__)

COMMITTEE_LABEL = 'لجنة'


def assign_seats(students, grade, start_number):
    """
    Number the students of one grade sequentially from start_number.

    Students keep their iteration order; earlier seat numbers of that grade are
    overwritten. Students of other grades are returned untouched. Returns a new
    list, the input dicts are not modified.
    """
    current = start_number
    updated = []
    assigned = 0
    for student in students:
        if student.get('grade') == grade:
            student = dict(student, seating_number=current)
            current += 1
            assigned += 1
        updated.append(student)
    logger.debug('Assigned %d seating numbers for %s starting at %s', assigned, grade, start_number)
    return updated


def seat_order(students):
    return sorted(students, key=lambda s: s.get('seating_number') or 0)


def committee_size_of(value):
    """Committee size as an int >= 1; junk, NaN and infinity fall back to 1."""
    size = safe_float(value, 1)
    if not math.isfinite(size):
        return 1
    return max(1, int(size))


def partition_committees(grade_students, committee_size):
    """Split seat-ordered students into consecutive committees of committee_size."""
    size = committee_size_of(committee_size)
    ordered = seat_order(grade_students)
    return [ordered[i:i + size] for i in range(0, len(ordered), size)]


def committee_rosters(grade_students, committee_size):
    """Committees with their number, label and seat range for calling lists and door sheets."""
    rosters = []
    for index, members in enumerate(partition_committees(grade_students, committee_size), 1):
        rosters.append({
            'number': index,
            'label': f'{COMMITTEE_LABEL} {index}',
            'size': len(members),
            'first_seat': members[0].get('seating_number'),
            'last_seat': members[-1].get('seating_number'),
            'students': members,
        })
    logger.debug('Built %d committees of up to %s students', len(rosters), committee_size)
    return rosters
