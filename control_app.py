"""
School Control - exam control and results service.

A stateless Flask JSON service over the grading core: student reports, ranked
cohort results, dashboard counters, seating numbers and exam committees. Every
request carries the full snapshot (students, subjects, grades) kept by the
browser storage; nothing is persisted here.

Version: 1.0.0
"""

from flask import Flask, request, jsonify
from flask_wtf import FlaskForm
from flask_wtf.csrf import CSRFProtect, CSRFError
from wtforms import SelectField, IntegerField, validators
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import BadRequest

import os
import logging
from dotenv import load_dotenv

from grading import Grade, compile_cohort, compile_report, dashboard_summary, subjects_for_grade
from ranking import VIEW_MODES, cohort_statistics, filter_results, rank_reports
from records import dump_student, load_snapshot, parse_grade, safe_int
from seating import assign_seats, committee_rosters

load_dotenv()

APP_VERSION = '1.0.0'

app = Flask(__name__)
ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        # Explicitly opt-in fallback for local/dev only.
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None
app.json.ensure_ascii = False

# Initialize CSRF Protection
csrf = CSRFProtect(app)

DEFAULT_START_SEATING = safe_int(os.environ.get('DEFAULT_START_SEATING', 1001), 1001)
DEFAULT_COMMITTEE_SIZE = max(1, safe_int(os.environ.get('DEFAULT_COMMITTEE_SIZE', 20), 20))
TOP_RESULTS_LIMIT = max(1, safe_int(os.environ.get('TOP_RESULTS_LIMIT', 10), 10))

# Set up logging
LOG_FILE = os.environ.get('LOG_FILE', 'app.log').strip()
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').strip().upper() or 'INFO'
logging.basicConfig(filename=LOG_FILE or None, level=getattr(logging, LOG_LEVEL, logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")

GRADE_CHOICES = [(g.name, g.value) for g in Grade]
TERM_CHOICES = [('1', 'الفصل الدراسي الأول'), ('2', 'الفصل الدراسي الثاني'), ('final', 'النتيجة النهائية')]
VIEW_CHOICES = [(v, v) for v in VIEW_MODES]


# ==================== FORMS ====================

class GradeForm(FlaskForm):
    class Meta:
        csrf = False

    grade = SelectField('Grade', choices=GRADE_CHOICES, validators=[validators.InputRequired()])


class CohortReportForm(GradeForm):
    term = SelectField('Term', choices=TERM_CHOICES, default='final')
    view = SelectField('View', choices=VIEW_CHOICES, default='all')


class SeatingForm(GradeForm):
    start_number = IntegerField('Start number', default=DEFAULT_START_SEATING,
                                validators=[validators.Optional()])


class CommitteeForm(GradeForm):
    committee_size = IntegerField('Students per committee', default=DEFAULT_COMMITTEE_SIZE,
                                  validators=[validators.Optional(), validators.NumberRange(min=1)])


# ==================== HELPERS ====================

def read_payload():
    """JSON body of the request as a dict."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise BadRequest('Request body must be a JSON object.')
    return payload


def form_params(payload):
    """Form data out of the payload: grade labels map to choice keys, numbers become strings."""
    params = {}
    for key, value in payload.items():
        if key in ('students', 'subjects', 'grades', 'grade_records') or value is None:
            continue
        if key == 'grade':
            try:
                value = parse_grade(value).name
            except ValueError:
                pass
        params[key] = str(value)
    return params


def bind_form(form_class, payload):
    form = form_class(formdata=MultiDict(form_params(payload)))
    if not form.validate():
        logging.warning("Rejected %s request: %s", request.path, form.errors)
        return form, (jsonify({'error': 'Invalid request parameters.', 'fields': form.errors}), 400)
    return form, None


def selected_term(value):
    return 'final' if value == 'final' else int(value)


def load_request_snapshot(payload):
    try:
        return load_snapshot(payload)
    except (TypeError, ValueError) as exc:
        raise BadRequest(str(exc))


def serialize_report(report):
    """Report dict ready for JSON: grade enum members become their labels."""
    data = dict(report)
    data['student'] = dump_student(report['student'])
    return data


# ==================== ROUTES ====================

@app.route('/')
def home():
    return jsonify({
        'name': 'school-control',
        'version': APP_VERSION,
        'grades': [g.value for g in Grade],
        'defaults': {
            'start_number': DEFAULT_START_SEATING,
            'committee_size': DEFAULT_COMMITTEE_SIZE,
            'top_results_limit': TOP_RESULTS_LIMIT,
        },
    })


@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    return jsonify({'error': 'Form token expired/invalid. Please retry your last action.'}), 400


@app.errorhandler(BadRequest)
def bad_request(error):
    logging.warning("Bad request on %s: %s", request.path, error.description)
    return jsonify({'error': error.description}), 400


@app.route('/api/reports/student', methods=['POST'])
@csrf.exempt
def student_report():
    payload = read_payload()
    students, subjects, grade_records = load_request_snapshot(payload)
    student_id = str(payload.get('student_id') or '').strip()
    student = next((s for s in students if s['id'] == student_id), None)
    if not student:
        return jsonify({'error': 'Student not found.'}), 404

    report = compile_report(student, subjects_for_grade(subjects, student['grade']), grade_records)
    return jsonify(serialize_report(report))


@app.route('/api/reports/cohort', methods=['POST'])
@csrf.exempt
def cohort_report():
    payload = read_payload()
    form, error = bind_form(CohortReportForm, payload)
    if error:
        return error
    students, subjects, grade_records = load_request_snapshot(payload)
    grade = Grade[form.grade.data]
    term = selected_term(form.term.data)

    ranked = rank_reports(compile_cohort(students, subjects, grade_records, grade=grade), term)
    results = filter_results(ranked, form.view.data, limit=TOP_RESULTS_LIMIT)
    return jsonify({
        'grade': grade.value,
        'term': term,
        'view': form.view.data,
        'results': [serialize_report(r) for r in results],
        'statistics': cohort_statistics(ranked, term),
    })


@app.route('/api/dashboard', methods=['POST'])
@csrf.exempt
def dashboard():
    students, subjects, grade_records = load_request_snapshot(read_payload())
    return jsonify(dashboard_summary(students, subjects, grade_records))


@app.route('/api/control/seating', methods=['POST'])
@csrf.exempt
def control_seating():
    payload = read_payload()
    form, error = bind_form(SeatingForm, payload)
    if error:
        return error
    students, _subjects, _grades = load_request_snapshot(payload)
    grade = Grade[form.grade.data]
    start_number = form.start_number.data if form.start_number.data is not None else DEFAULT_START_SEATING

    updated = assign_seats(students, grade, start_number)
    assigned = sum(1 for s in updated if s['grade'] == grade)
    logging.info("Seating numbers generated for %d students of %s from %d", assigned, grade.value, start_number)
    return jsonify({
        'grade': grade.value,
        'assigned': assigned,
        'students': [dump_student(s) for s in updated],
    })


@app.route('/api/control/committees', methods=['POST'])
@csrf.exempt
def control_committees():
    payload = read_payload()
    form, error = bind_form(CommitteeForm, payload)
    if error:
        return error
    students, _subjects, _grades = load_request_snapshot(payload)
    grade = Grade[form.grade.data]
    committee_size = form.committee_size.data or DEFAULT_COMMITTEE_SIZE

    rosters = committee_rosters([s for s in students if s['grade'] == grade], committee_size)
    for roster in rosters:
        roster['students'] = [dump_student(s) for s in roster['students']]
    return jsonify({
        'grade': grade.value,
        'committee_size': committee_size,
        'committee_count': len(rosters),
        'committees': rosters,
    })


# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', '0').strip().lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
