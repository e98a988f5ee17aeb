"""
Normalization of the storage collaborator's records.

The browser storage keeps students, subjects and grade records as JSON with
camelCase keys (maxContinuous, studentId, seatingNumber...) and grades as their
Arabic labels. The grading core works on snake_case dicts; these helpers accept
either spelling and return the snake_case form. Numbers are converted but never
clamped or validated.
"""

from grading import Grade

RELIGIONS = ('muslim', 'christian')


def safe_int(value, default):
    """Parse integer safely while preserving valid zero values."""
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return int(default)


def safe_float(value, default):
    """Parse float safely while preserving valid zero values."""
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return float(default)


def _pick(raw, snake_key, camel_key, default=None):
    if snake_key in raw:
        return raw[snake_key]
    return raw.get(camel_key, default)


def _number(value, default=0):
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    return safe_float(value, default)


def _optional_id(value):
    return None if value is None else str(value)


def parse_grade(value):
    """Accept a Grade, its label ('الصف الأول') or its member name ('G1')."""
    if isinstance(value, Grade):
        return value
    try:
        return Grade(value)
    except ValueError:
        pass
    if isinstance(value, str) and value.strip() in Grade.__members__:
        return Grade[value.strip()]
    raise ValueError(f"Unknown grade: {value!r}")


def normalize_level_range(raw):
    return {
        'name': raw.get('name', ''),
        'min_percent': _number(_pick(raw, 'min_percent', 'minPercent')),
        'color': raw.get('color'),
    }


def normalize_subject(raw):
    scale = _collection(_pick(raw, 'level_scale', 'levelScale'), 'levelScale')
    pass_percentage = _pick(raw, 'pass_percentage', 'passPercentage')
    return {
        'id': _optional_id(raw.get('id')),
        'name': raw.get('name', ''),
        'grade': parse_grade(raw.get('grade')),
        'max_continuous': _number(_pick(raw, 'max_continuous', 'maxContinuous')),
        'max_exam': _number(_pick(raw, 'max_exam', 'maxExam')),
        'pass_percentage': None if pass_percentage is None else _number(pass_percentage),
        'level_scale': [normalize_level_range(r) for r in scale] if scale else None,
    }


def normalize_student(raw):
    religion = raw.get('religion')
    seating_number = _pick(raw, 'seating_number', 'seatingNumber')
    return {
        'id': _optional_id(raw.get('id')),
        'name': raw.get('name', ''),
        'grade': parse_grade(raw.get('grade')),
        'section': raw.get('section', ''),
        'religion': religion if religion in RELIGIONS else None,
        'seating_number': None if seating_number is None else safe_int(seating_number, 0),
        'photo_url': _pick(raw, 'photo_url', 'photoUrl'),
        'academic_year_id': _pick(raw, 'academic_year_id', 'academicYearId'),
    }


def normalize_grade_record(raw):
    return {
        'student_id': _optional_id(_pick(raw, 'student_id', 'studentId')),
        'subject_id': _optional_id(_pick(raw, 'subject_id', 'subjectId')),
        'term': safe_int(raw.get('term'), 0),
        'continuous': _number(raw.get('continuous')),
        'exam': _number(raw.get('exam')),
        'absent': bool(raw.get('absent')),
        'continuous_absent': bool(_pick(raw, 'continuous_absent', 'continuousAbsent')),
        'exam_absent': bool(_pick(raw, 'exam_absent', 'examAbsent')),
        'academic_year_id': _pick(raw, 'academic_year_id', 'academicYearId'),
    }


def _collection(value, key):
    """A list of record dicts, [] for a missing value."""
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ValueError(f"{key} must be a list of objects")
    return value


def load_snapshot(payload):
    """(students, subjects, grade_records) from a storage snapshot dict."""
    if not isinstance(payload, dict):
        raise ValueError("Snapshot must be an object")
    grade_records = payload.get('grade_records')
    key = 'grade_records'
    if grade_records is None:
        grade_records, key = payload.get('grades'), 'grades'
    return (
        [normalize_student(s) for s in _collection(payload.get('students'), 'students')],
        [normalize_subject(s) for s in _collection(payload.get('subjects'), 'subjects')],
        [normalize_grade_record(g) for g in _collection(grade_records, key)],
    )


def dump_student(student):
    """Back to the storage collaborator's camelCase shape, omitting empty optionals."""
    data = {
        'id': student.get('id'),
        'name': student.get('name'),
        'grade': student['grade'].value if isinstance(student.get('grade'), Grade) else student.get('grade'),
        'section': student.get('section'),
    }
    optional = {
        'religion': student.get('religion'),
        'seatingNumber': student.get('seating_number'),
        'photoUrl': student.get('photo_url'),
        'academicYearId': student.get('academic_year_id'),
    }
    data.update({k: v for k, v in optional.items() if v is not None})
    return data
