import importlib

import pytest


@pytest.fixture
def app_module(monkeypatch, tmp_path):
    monkeypatch.setenv("SECRET_KEY", "x" * 40)
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "app.log"))
    monkeypatch.setenv("DEFAULT_START_SEATING", "1001")
    monkeypatch.setenv("DEFAULT_COMMITTEE_SIZE", "2")
    monkeypatch.delenv("ALLOW_INSECURE_DEFAULTS", raising=False)

    import control_app

    mod = importlib.reload(control_app)
    mod.app.config["TESTING"] = True
    mod.app.config["WTF_CSRF_ENABLED"] = False
    return mod


@pytest.fixture
def client(app_module):
    return app_module.app.test_client()


@pytest.fixture
def snapshot():
    """Storage snapshot in the browser's camelCase format."""
    return {
        "students": [
            {"id": "1", "name": "أحمد", "grade": "الصف الأول", "section": "أ", "religion": "muslim"},
            {"id": "2", "name": "مينا", "grade": "الصف الأول", "section": "أ", "religion": "christian"},
            {"id": "3", "name": "سارة", "grade": "الصف الأول", "section": "ب", "religion": "muslim"},
            {"id": "4", "name": "علي", "grade": "الصف الثاني", "section": "أ", "seatingNumber": 9},
        ],
        "subjects": [
            {"id": "s1", "name": "الرياضيات", "grade": "الصف الأول", "maxContinuous": 20, "maxExam": 80, "passPercentage": 50},
            {"id": "s2", "name": "التربية الإسلامية", "grade": "الصف الأول", "maxContinuous": 20, "maxExam": 80, "passPercentage": 50},
        ],
        "grades": [
            {"studentId": "1", "subjectId": "s1", "term": 1, "continuous": 18, "exam": 72, "absent": False},
            {"studentId": "1", "subjectId": "s1", "term": 2, "continuous": 18, "exam": 72, "absent": False},
            {"studentId": "1", "subjectId": "s2", "term": 1, "continuous": 18, "exam": 72, "absent": False},
            {"studentId": "1", "subjectId": "s2", "term": 2, "continuous": 18, "exam": 72, "absent": False},
            {"studentId": "2", "subjectId": "s1", "term": 1, "continuous": 18, "exam": 72, "absent": False},
            {"studentId": "2", "subjectId": "s1", "term": 2, "continuous": 18, "exam": 72, "absent": False},
            {"studentId": "3", "subjectId": "s1", "term": 1, "continuous": 10, "exam": 20, "absent": False},
            {"studentId": "3", "subjectId": "s1", "term": 2, "continuous": 20, "exam": 60, "absent": False},
        ],
    }


def test_missing_secret_key_raises(app_module, monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("ALLOW_INSECURE_DEFAULTS", raising=False)
    with pytest.raises(RuntimeError):
        importlib.reload(app_module)


def test_short_secret_key_raises(app_module, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "short")
    monkeypatch.delenv("ALLOW_INSECURE_DEFAULTS", raising=False)
    with pytest.raises(RuntimeError):
        importlib.reload(app_module)


def test_insecure_defaults_allow_missing_secret(app_module, monkeypatch, tmp_path):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.setenv("ALLOW_INSECURE_DEFAULTS", "1")
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "app.log"))
    mod = importlib.reload(app_module)
    assert mod.app.secret_key == "dev-secret-key-change-me"


def test_home_reports_defaults(client, app_module):
    resp = client.get("/")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["name"] == "school-control"
    assert len(data["grades"]) == 12
    assert data["defaults"]["start_number"] == 1001
    assert data["defaults"]["committee_size"] == 2


def test_student_report_route(client, snapshot):
    resp = client.post("/api/reports/student", json=dict(snapshot, student_id="2"))
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["student"]["grade"] == "الصف الأول"
    assert [s["status"] for s in data["subjects"]] == ["pass", "exempt"]
    assert data["term1_percentage"] == 90
    assert data["final_status"] == "ناجح"
    assert data["final_level"] == "ممتاز"


def test_student_report_unknown_student(client, snapshot):
    resp = client.post("/api/reports/student", json=dict(snapshot, student_id="404"))
    assert resp.status_code == 404


def test_student_report_rejects_non_json(client):
    resp = client.post("/api/reports/student", data="not json", content_type="text/plain")
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_student_report_rejects_unknown_grade(client, snapshot):
    snapshot["students"][0]["grade"] = "Grade 13"
    resp = client.post("/api/reports/student", json=dict(snapshot, student_id="1"))
    assert resp.status_code == 400
    assert "Unknown grade" in resp.get_json()["error"]


def test_cohort_report_route_ranks_and_counts(client, snapshot):
    resp = client.post("/api/reports/cohort", json=dict(snapshot, grade="G1", term="final"))
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["grade"] == "الصف الأول"
    assert data["term"] == "final"
    results = {r["student"]["id"]: r for r in data["results"]}
    assert set(results) == {"1", "2", "3"}
    assert results["1"]["rank"] == 1
    assert results["2"]["rank"] == 1
    assert results["3"]["rank"] == 3
    assert results["3"]["rank_label"] == "الثالث"
    assert results["3"]["term_status"] == "دور ثاني"
    assert results["3"]["failure_details"][0]["type"] == "t1"
    assert data["statistics"]["total"] == 3
    assert data["statistics"]["passed"] == 2


def test_cohort_report_failed_view_for_term_two(client, snapshot):
    resp = client.post("/api/reports/cohort", json=dict(snapshot, grade="الصف الأول", term=2, view="failed"))
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["term"] == 2
    assert [r["student"]["id"] for r in data["results"]] == ["3"]


def test_cohort_report_invalid_params(client, snapshot):
    resp = client.post("/api/reports/cohort", json=dict(snapshot, grade="G1", term="3", view="best"))
    assert resp.status_code == 400
    fields = resp.get_json()["fields"]
    assert "term" in fields
    assert "view" in fields


def test_cohort_report_requires_grade(client, snapshot):
    resp = client.post("/api/reports/cohort", json=snapshot)
    assert resp.status_code == 400
    assert "grade" in resp.get_json()["fields"]


def test_dashboard_route(client, snapshot):
    resp = client.post("/api/dashboard", json=snapshot)
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["total"] == 4
    assert data["grade_counts"] == [
        {"grade": "الصف الأول", "count": 3},
        {"grade": "الصف الثاني", "count": 1},
    ]
    assert data["passed"] == 3
    assert data["pass_rate"] == 75


def test_seating_route_assigns_grade_and_returns_storage_format(client, snapshot):
    resp = client.post("/api/control/seating", json=dict(snapshot, grade="G1", start_number=500))
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["assigned"] == 3
    seats = [s.get("seatingNumber") for s in data["students"]]
    assert seats == [500, 501, 502, 9]
    assert data["students"][0]["grade"] == "الصف الأول"


def test_seating_route_uses_default_start(client, snapshot):
    resp = client.post("/api/control/seating", json=dict(snapshot, grade="G1"))
    assert resp.status_code == 200
    assert [s.get("seatingNumber") for s in resp.get_json()["students"]][:3] == [1001, 1002, 1003]


def test_seating_route_rejects_bad_start(client, snapshot):
    resp = client.post("/api/control/seating", json=dict(snapshot, grade="G1", start_number="abc"))
    assert resp.status_code == 400
    assert "start_number" in resp.get_json()["fields"]


def test_committees_route(client, snapshot):
    snapshot["students"][0]["seatingNumber"] = 1003
    snapshot["students"][1]["seatingNumber"] = 1001
    snapshot["students"][2]["seatingNumber"] = 1002
    resp = client.post("/api/control/committees", json=dict(snapshot, grade="G1"))
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["committee_size"] == 2
    assert data["committee_count"] == 2
    assert [s["id"] for s in data["committees"][0]["students"]] == ["2", "3"]
    assert data["committees"][1]["label"] == "لجنة 2"
    assert data["committees"][1]["first_seat"] == 1003


def test_committees_route_rejects_zero_size(client, snapshot):
    resp = client.post("/api/control/committees", json=dict(snapshot, grade="G1", committee_size=0))
    assert resp.status_code == 400
    assert "committee_size" in resp.get_json()["fields"]


def test_api_routes_are_csrf_exempt(app_module):
    app_module.app.config["WTF_CSRF_ENABLED"] = True
    client = app_module.app.test_client()
    resp = client.post("/api/dashboard", json={"students": [], "subjects": [], "grades": []})
    assert resp.status_code == 200


@pytest.mark.parametrize("payload", [
    {"students": [1]},
    {"students": {"a": 1}},
    {"subjects": [{"id": "s1", "name": "x", "grade": "G1", "levelScale": {"x": 1}}]},
])
def test_dashboard_rejects_malformed_snapshot(client, payload):
    resp = client.post("/api/dashboard", json=payload)
    assert resp.status_code == 400
    assert "error" in resp.get_json()
