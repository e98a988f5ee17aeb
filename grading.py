"""
School Control - grading and result computation.

Evaluates per-term subject scores, combines the two terms into a subject
outcome and compiles a full student report (term percentages, final
percentage, final status and level). Records are plain dicts as produced by
records.py.
"""

import logging
import math
from collections import namedtuple
from enum import Enum

logger = logging.getLogger(__name__)


class Grade(str, Enum):
    G1 = 'الصف الأول'
    G2 = 'الصف الثاني'
    G3 = 'الصف الثالث'
    G4 = 'الصف الرابع'
    G5 = 'الصف الخامس'
    G6 = 'الصف السادس'
    G7 = 'الصف السابع'
    G8 = 'الصف الثامن'
    G9 = 'الصف التاسع'
    G10 = 'الصف العاشر'
    G11 = 'الصف الحادي عشر'
    G12 = 'الصف الثاني عشر'


STATUS_PASS = 'ناجح'
STATUS_RETAKE = 'دور ثاني'

LEVEL_UNDEFINED = '---'
LEVEL_UNSPECIFIED = 'غير محدد'
LEVEL_EXEMPT = 'معفى'

DEFAULT_LEVEL_SCALE = (
    {'name': 'ممتاز', 'min_percent': 90, 'color': 'emerald'},
    {'name': 'جيد جداً', 'min_percent': 80, 'color': 'blue'},
    {'name': 'جيد', 'min_percent': 65, 'color': 'indigo'},
    {'name': 'مقبول', 'min_percent': 50, 'color': 'amber'},
    {'name': 'ضعيف', 'min_percent': 0, 'color': 'red'},
)

ISLAMIC_KEYWORDS = ('إسلامية', 'الدين الإسلامي', 'التربية الإسلامية', 'القرآن')

DEFAULT_PASS_PERCENTAGE = 50

FAILURE_REASONS = {
    'fail_t1': ('فصل أول', 't1'),
    'fail_t2': ('فصل ثاني', 't2'),
    'fail_both': ('الفصلين', 'both'),
    'fail_absent': ('غياب', 'absent'),
}

TERMS = (1, 2)

Absence = namedtuple('Absence', ['whole', 'continuous_only', 'exam_only'])


# ==================== LEVELS ====================

def classify_level(score, max_score, scale=None):
    """Map score/max_score to a named tier of the scale (default 5-tier scale)."""
    if max_score <= 0:
        return {'name': LEVEL_UNDEFINED, 'color': 'gray'}
    percent = (score / max_score) * 100
    active_scale = scale if scale else DEFAULT_LEVEL_SCALE
    for tier in sorted(active_scale, key=lambda t: t['min_percent'], reverse=True):
        if percent >= tier['min_percent']:
            return {'name': tier['name'], 'color': tier.get('color')}
    return {'name': LEVEL_UNSPECIFIED, 'color': 'gray'}


def default_level_names():
    return [tier['name'] for tier in DEFAULT_LEVEL_SCALE]


# ==================== EXEMPTION ====================

def is_islamic_subject(name):
    return any(keyword in (name or '') for keyword in ISLAMIC_KEYWORDS)


def is_exempt(student, subject):
    """Christian students are exempt from Islamic-studies subjects."""
    return student.get('religion') == 'christian' and is_islamic_subject(subject.get('name'))


# ==================== TERM EVALUATION ====================

def empty_grade_record(student_id, subject_id, term):
    return {
        'student_id': student_id,
        'subject_id': subject_id,
        'term': term,
        'continuous': 0,
        'exam': 0,
        'absent': False,
        'continuous_absent': False,
        'exam_absent': False,
    }


def absence_of(record):
    return Absence(
        whole=bool(record.get('absent')),
        continuous_only=bool(record.get('continuous_absent')),
        exam_only=bool(record.get('exam_absent')),
    )


def resolve_term_status(absence, score, pass_threshold):
    """Whole-term absence, then component absence, then the pass threshold."""
    if absence.whole:
        return 'absent'
    if absence.continuous_only or absence.exam_only:
        # Missing either component fails the term whatever the other scored.
        return 'fail'
    return 'pass' if score >= pass_threshold else 'fail'


def subject_max_score(subject):
    return subject.get('max_continuous', 0) + subject.get('max_exam', 0)


def pass_threshold_for(subject):
    pass_percentage = subject.get('pass_percentage')
    if pass_percentage is None:
        pass_percentage = DEFAULT_PASS_PERCENTAGE
    return (subject_max_score(subject) * pass_percentage) / 100


def evaluate_term(student, subject, record=None):
    """Score, status and level of one student in one subject for one term."""
    if is_exempt(student, subject):
        return {
            'subject': subject,
            'score': 0,
            'max_score': 0,
            'status': 'exempt',
            'is_absent': False,
            'percentage': 0,
            'level': LEVEL_EXEMPT,
        }

    if record is None:
        record = empty_grade_record(student.get('id'), subject.get('id'), None)
    absence = absence_of(record)
    score = (0 if absence.continuous_only else record.get('continuous', 0)) + \
        (0 if absence.exam_only else record.get('exam', 0))
    max_score = subject_max_score(subject)

    return {
        'subject': subject,
        'score': score,
        'max_score': max_score,
        'status': resolve_term_status(absence, score, pass_threshold_for(subject)),
        'is_absent': any(absence),
        'percentage': (score / max_score) * 100 if max_score > 0 else 0,
        'level': classify_level(score, max_score, subject.get('level_scale'))['name'],
    }


# ==================== SUBJECT OUTCOME ====================

def aggregate_subject(student, subject, term1_record=None, term2_record=None):
    """Combine both terms into one of pass/fail_t1/fail_t2/fail_both/fail_absent/exempt."""
    t1_analysis = evaluate_term(student, subject, term1_record)
    t2_analysis = evaluate_term(student, subject, term2_record)

    if t1_analysis['status'] == 'exempt':
        return {'status': 'exempt', 'total': 0, 't1_analysis': t1_analysis, 't2_analysis': t2_analysis}

    absences = [absence_of(r) for r in (term1_record, term2_record) if r is not None]
    if any(any(a) for a in absences):
        status = 'fail_absent'
    else:
        t1_fail = t1_analysis['status'] == 'fail'
        t2_fail = t2_analysis['status'] == 'fail'
        if t1_fail and t2_fail:
            status = 'fail_both'
        elif t1_fail:
            status = 'fail_t1'
        elif t2_fail:
            status = 'fail_t2'
        else:
            status = 'pass'

    return {
        'status': status,
        'total': (t1_analysis['score'] + t2_analysis['score']) / 2,
        't1_analysis': t1_analysis,
        't2_analysis': t2_analysis,
    }


# ==================== STUDENT REPORT ====================

def term_percentage(term_results):
    """Aggregate percentage over non-exempt results; exempt subjects do not dilute it."""
    total_score = 0
    total_max = 0
    for result in term_results:
        if result['status'] != 'exempt':
            total_score += result['score']
            total_max += result['max_score']
    return (total_score / total_max) * 100 if total_max > 0 else 0


def index_grade_records(student_id, grade_records):
    """{(subject_id, term): record} for one student, first record wins."""
    index = {}
    for record in grade_records:
        if record.get('student_id') != student_id:
            continue
        index.setdefault((record.get('subject_id'), record.get('term')), record)
    return index


def compile_report(student, subjects, grade_records):
    """Compile the detailed report of one student against the given subjects."""
    records = index_grade_records(student.get('id'), grade_records)
    term1_results = []
    term2_results = []
    subject_outcomes = []

    for subject in subjects:
        t1 = records.get((subject.get('id'), 1)) or empty_grade_record(student.get('id'), subject.get('id'), 1)
        t2 = records.get((subject.get('id'), 2)) or empty_grade_record(student.get('id'), subject.get('id'), 2)
        outcome = aggregate_subject(student, subject, t1, t2)
        term1_results.append(outcome['t1_analysis'])
        term2_results.append(outcome['t2_analysis'])
        subject_outcomes.append({
            'subject': subject,
            't1': t1,
            't2': t2,
            'total': outcome['total'],
            'status': outcome['status'],
        })

    term1_pct = term_percentage(term1_results)
    term2_pct = term_percentage(term2_results)
    final_pct = (term1_pct + term2_pct) / 2
    has_failure = any(s['status'] not in ('pass', 'exempt') for s in subject_outcomes)

    return {
        'student': student,
        'subjects': subject_outcomes,
        'term1_results': term1_results,
        'term2_results': term2_results,
        'term1_percentage': term1_pct,
        'term2_percentage': term2_pct,
        'final_percentage': final_pct,
        'final_status': STATUS_RETAKE if has_failure else STATUS_PASS,
        'final_level': classify_level(final_pct, 100)['name'],
    }


def subjects_for_grade(subjects, grade):
    return [s for s in subjects if s.get('grade') == grade]


def compile_cohort(students, subjects, grade_records, grade=None):
    """Compile reports for a cohort, each student against their own grade's subjects."""
    if grade is not None:
        students = [s for s in students if s.get('grade') == grade]
    subjects_by_grade = {}
    reports = []
    for student in students:
        student_grade = student.get('grade')
        if student_grade not in subjects_by_grade:
            subjects_by_grade[student_grade] = subjects_for_grade(subjects, student_grade)
        reports.append(compile_report(student, subjects_by_grade[student_grade], grade_records))
    logger.debug('Compiled %d reports (grade=%s)', len(reports), grade)
    return reports


# ==================== TERM VIEWS ====================

TERM_VIEWS = TERMS + ('final',)


def check_term(term):
    """Raise ValueError unless term is 1, 2 or 'final'."""
    if isinstance(term, bool) or term not in TERM_VIEWS:
        raise ValueError(f"Unknown term: {term!r}")
    return term


def report_percentage(report, term):
    check_term(term)
    if term == 1:
        return report['term1_percentage']
    if term == 2:
        return report['term2_percentage']
    return report['final_percentage']


def term_status(report, term):
    """Pass/retake as seen from one term, or the final status for 'final'."""
    check_term(term)
    if term in TERMS:
        results = report['term1_results'] if term == 1 else report['term2_results']
        failed = any(r['status'] in ('fail', 'absent') for r in results)
        return STATUS_RETAKE if failed else STATUS_PASS
    return report['final_status']


def failure_details(report):
    details = []
    for outcome in report['subjects']:
        reason = FAILURE_REASONS.get(outcome['status'])
        if reason:
            details.append({'subject': outcome['subject'].get('name'), 'reason': reason[0], 'type': reason[1]})
    return details


def dashboard_summary(students, subjects, grade_records):
    """Headline counters: students per grade and overall pass rate."""
    total = len(students)
    grade_counts = []
    for grade in Grade:
        count = sum(1 for s in students if s.get('grade') == grade)
        if count:
            grade_counts.append({'grade': grade.value, 'count': count})

    reports = compile_cohort(students, subjects, grade_records)
    passed = sum(1 for r in reports if r['final_status'] == STATUS_PASS)
    return {
        'total': total,
        'grade_counts': grade_counts,
        'passed': passed,
        'pass_rate': int(math.floor((passed / total) * 100 + 0.5)) if total > 0 else 0,
    }
