"""Tests for quiz result overrides and assignment review."""
from datetime import datetime, timedelta

from app.academy.db import session_scope
from app.academy.models import AuditEvent
from app.academy.modules.enrollments.models import Enrollment, LessonProgress
from app.academy.modules.submissions.models import (
    AssignmentSubmission,
    Competency,
    PracticalAssessment,
    QuizAttempt,
    StudentCompetency,
)
from app.academy.utils import month_key


def _admin(client, make_user, login):
    uid = make_user("root@example.com", "admin")
    login(client, "root@example.com")
    return uid


def _quiz_attempt(app, student_id, ids, **fields):
    responses = [
        {"questionId": "q1", "questionText": "2+2?", "studentAnswer": "4", "isCorrect": True, "pointsEarned": 5, "maxPoints": 5},
        {"questionId": "q2", "questionText": "Explain GIL", "studentAnswer": "...", "isCorrect": False, "pointsEarned": 0, "maxPoints": 5},
    ]
    values = {"status": "submitted", **fields}
    with session_scope(app) as s:
        attempt = QuizAttempt(
            quiz_id=ids["lesson_ids"][0],
            student_id=student_id,
            course_id=ids["course_id"],
            total_points=10,
            earned_points=5,
            percentage=50,
            passing_percentage=70,
            is_passing=False,
            responses=responses,
            **values,
        )
        s.add(attempt)
        s.flush()
        return attempt.id


def test_quiz_results_listing(app, client, make_user, login, make_course):
    _admin(client, make_user, login)
    lec = make_user("lec@example.com", "lecturer")
    sid = make_user("stu@example.com", name="Stu Dent")
    ids = make_course(lec, published=True)
    other = make_course(lec, title="Other Course", published=True)
    now = datetime.utcnow()
    older = _quiz_attempt(app, sid, ids, completed_at=now - timedelta(days=1))
    newer = _quiz_attempt(app, sid, ids, completed_at=now)
    open_attempt = _quiz_attempt(app, sid, ids, status="in_progress")
    elsewhere = _quiz_attempt(app, sid, other, completed_at=now)

    r = client.get(f"/api/admin/quiz-results?courseId={ids['course_id']}")
    assert r.status_code == 200
    results = r.json["results"]
    assert [a["id"] for a in results] == [newer, older, open_attempt]
    assert results[0]["student_name"] == "Stu Dent"
    assert results[0]["course_title"] == "Intro to Python"
    assert results[0]["quiz_title"] == "Lesson 1.1"

    r = client.get("/api/admin/quiz-results?status=in_progress")
    assert [a["id"] for a in r.json["results"]] == [open_attempt]
    r = client.get("/api/admin/quiz-results?status=all")
    assert elsewhere in [a["id"] for a in r.json["results"]]
    assert client.get("/api/admin/quiz-results?status=bogus").status_code == 400


def test_override_score_recomputes_totals(app, client, make_user, login, make_course):
    _admin(client, make_user, login)
    lec = make_user("lec@example.com", "lecturer")
    sid = make_user("stu@example.com")
    ids = make_course(lec, published=True)
    attempt_id = _quiz_attempt(app, sid, ids, completed_at=datetime.utcnow())

    r = client.put(
        f"/api/admin/quiz-results/{attempt_id}/override-score",
        json={"questionId": "q2", "newScore": 4, "reason": "Partial credit"},
    )
    assert r.status_code == 200
    assert r.json == {"success": True, "newOverallScore": 9, "newPercentage": 90.0, "isPassing": True}

    with session_scope(app) as s:
        attempt = s.get(QuizAttempt, attempt_id)
        assert attempt.status == "graded"
        q2 = next(x for x in attempt.responses if x["questionId"] == "q2")
        assert q2["pointsEarned"] == 4
        assert q2["overrideReason"] == "Partial credit"


def test_override_score_validation(app, client, make_user, login, make_course):
    _admin(client, make_user, login)
    lec = make_user("lec@example.com", "lecturer")
    sid = make_user("stu@example.com")
    ids = make_course(lec, published=True)
    attempt_id = _quiz_attempt(app, sid, ids)
    url = f"/api/admin/quiz-results/{attempt_id}/override-score"

    assert client.put(url, json={"questionId": "q9", "newScore": 1}).status_code == 404
    assert client.put(url, json={"questionId": "q1", "newScore": 6}).status_code == 400
    assert client.put(url, json={"questionId": "q1", "newScore": "five"}).status_code == 400
    assert client.put(url, json={"newScore": 1}).status_code == 400
    assert client.put("/api/admin/quiz-results/99999/override-score", json={"questionId": "q1", "newScore": 1}).status_code == 404


def _submission(app, student_id, ids, **fields):
    values = {"status": "pending", **fields}
    with session_scope(app) as s:
        sub = AssignmentSubmission(
            student_id=student_id,
            course_id=ids["course_id"],
            assignment_id=ids["lesson_ids"][0],
            submitted_content="My essay",
            **values,
        )
        s.add(sub)
        s.flush()
        return sub.id


def test_submissions_listing_filters(app, client, make_user, login, make_course):
    _admin(client, make_user, login)
    lec = make_user("lec@example.com", "lecturer")
    sid = make_user("stu@example.com")
    ids = make_course(lec, published=True)
    essay = _submission(app, sid, ids, file_name="essay.pdf")
    _submission(app, sid, ids, file_name="slides.pptx", status="approved")

    r = client.get("/api/admin/submissions?status=pending")
    assert [x["id"] for x in r.json["submissions"]] == [essay]
    assert r.json["submissions"][0]["assignment_title"] == "Lesson 1.1"
    r = client.get("/api/admin/submissions?search=slides")
    assert [x["file_name"] for x in r.json["submissions"]] == ["slides.pptx"]
    r = client.get(f"/api/admin/submissions?courseId={ids['course_id']}")
    assert len(r.json["submissions"]) == 2


def test_approve_marks_lesson_complete(app, client, make_user, login, make_course):
    admin_id = _admin(client, make_user, login)
    lec = make_user("lec@example.com", "lecturer")
    sid = make_user("stu@example.com")
    ids = make_course(lec, published=True, layout=(2,))
    with session_scope(app) as s:
        enrollment = Enrollment(student_id=sid, course_id=ids["course_id"], progress_percentage=0)
        s.add(enrollment)
        s.flush()
        eid = enrollment.id
    sub_id = _submission(app, sid, ids)

    r = client.post(f"/api/admin/submissions/{sub_id}/approve", json={"feedback": "Great work", "sendEmail": True})
    assert r.status_code == 200
    assert r.json["submission"]["status"] == "approved"
    assert r.json["submission"]["admin_id"] == admin_id
    with session_scope(app) as s:
        progress = s.query(LessonProgress).filter(LessonProgress.enrollment_id == eid).one()
        assert progress.is_completed is True
        assert s.get(Enrollment, eid).progress_percentage == 50

    r = client.post(f"/api/admin/submissions/{sub_id}/reject", json={"feedback": "Plagiarised"})
    assert r.json["submission"]["status"] == "rejected"
    with session_scope(app) as s:
        assert s.query(LessonProgress).filter(LessonProgress.enrollment_id == eid).one().is_completed is False
        assert s.get(Enrollment, eid).progress_percentage == 0


def test_review_without_enrollment(app, client, make_user, login, make_course):
    _admin(client, make_user, login)
    lec = make_user("lec@example.com", "lecturer")
    sid = make_user("stu@example.com")
    ids = make_course(lec, published=True)
    sub_id = _submission(app, sid, ids)
    r = client.post(f"/api/admin/submissions/{sub_id}/reject", json={})
    assert r.status_code == 200
    assert client.post("/api/admin/submissions/99999/approve", json={}).status_code == 404


def _competency(app, name, *, critical=False):
    with session_scope(app) as s:
        comp = Competency(name=name, category="Operations", is_critical=critical)
        s.add(comp)
        s.flush()
        return comp.id


def _practical(app, student_id, competency_id=None, **fields):
    values = {"competency_name": "Safety Checks", "role": "Technician", **fields}
    with session_scope(app) as s:
        pa = PracticalAssessment(student_id=student_id, competency_id=competency_id, **values)
        s.add(pa)
        s.flush()
        return pa.id


def test_practical_assessments_listing(app, client, make_user, login):
    _admin(client, make_user, login)
    sid = make_user("stu@example.com", name="Stu Dent")
    now = datetime.utcnow()
    older = _practical(app, sid, submitted_at=now - timedelta(days=2))
    newer = _practical(app, sid, role="Manager", submitted_at=now)
    reviewed = _practical(app, sid, status="approved", submitted_at=now - timedelta(days=1))

    r = client.get("/api/admin/practical-assessments")
    assert r.status_code == 200
    rows = r.json["assessments"]
    assert [a["id"] for a in rows] == [newer, reviewed, older]
    assert rows[0]["student_name"] == "Stu Dent"
    assert rows[0]["student_email"] == "stu@example.com"

    r = client.get("/api/admin/practical-assessments?role=Technician&status=pending")
    assert [a["id"] for a in r.json["assessments"]] == [older]
    r = client.get("/api/admin/practical-assessments?role=all&status=all")
    assert len(r.json["assessments"]) == 3
    assert client.get("/api/admin/practical-assessments?status=done").status_code == 400


def test_evaluate_approval_updates_competency(app, client, make_user, login):
    admin_id = _admin(client, make_user, login)
    sid = make_user("stu@example.com")
    comp = _competency(app, "Safety Checks", critical=True)
    with session_scope(app) as s:
        s.add(StudentCompetency(student_id=sid, competency_id=comp, mastery_level=40))
    pa = _practical(app, sid, comp)

    r = client.post(
        f"/api/admin/practical-assessments/{pa}/evaluate",
        json={
            "rubricScores": {"communication": 4, "technical": 5, "safety": 3},
            "feedback": {"strengths": "Calm under pressure", "improvements": "Check the log sheet"},
            "status": "approved",
            "masteryLevel": "proficient",
        },
    )
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["overallScore"] == 4.0
    assessment = r.json["assessment"]
    assert assessment["status"] == "approved"
    assert assessment["mastery_level"] == "proficient"
    assert assessment["reviewed_by"] == admin_id
    assert assessment["reviewed_at"]
    assert assessment["admin_feedback"]["strengths"] == "Calm under pressure"

    with session_scope(app) as s:
        record = s.query(StudentCompetency).one()
        assert record.mastery_level == 80.0
        assert record.achieved_at is not None
        ev = s.query(AuditEvent).filter(AuditEvent.action == "practical_assessment.evaluate").one()
        assert ev.entity_type == "PracticalAssessment"
        assert ev.entity_id == str(pa)


def test_evaluate_revision_leaves_competency_alone(app, client, make_user, login):
    _admin(client, make_user, login)
    sid = make_user("stu@example.com")
    comp = _competency(app, "Safety Checks")
    pa = _practical(app, sid, comp)

    r = client.post(
        f"/api/admin/practical-assessments/{pa}/evaluate",
        json={"rubricScores": {"safety": 1, "service": 2}, "status": "needs_revision", "masteryLevel": None},
    )
    assert r.status_code == 200
    assert r.json["overallScore"] == 1.5
    assert r.json["assessment"]["status"] == "needs_revision"
    with session_scope(app) as s:
        assert s.query(StudentCompetency).count() == 0


def test_evaluate_validation(app, client, make_user, login):
    _admin(client, make_user, login)
    sid = make_user("stu@example.com")
    pa = _practical(app, sid)
    url = f"/api/admin/practical-assessments/{pa}/evaluate"
    ok = {"rubricScores": {"safety": 4}, "status": "approved"}

    bad_bodies = [
        {**ok, "rubricScores": {}},
        {**ok, "rubricScores": {"safety": 6}},
        {**ok, "rubricScores": {"safety": -1}},
        {**ok, "rubricScores": {"safety": True}},
        {**ok, "rubricScores": {"charisma": 3}},
        {**ok, "status": "done"},
        {**ok, "masteryLevel": "expert"},
        {**ok, "feedback": "Nice"},
        {**ok, "feedback": {"praise": "Nice"}},
    ]
    for body in bad_bodies:
        r = client.post(url, json=body)
        assert r.status_code == 400, body
    with session_scope(app) as s:
        assert s.get(PracticalAssessment, pa).status == "pending"

    assert client.post("/api/admin/practical-assessments/99999/evaluate", json=ok).status_code == 404
    # no linked competency: approval still records the score
    r = client.post(url, json=ok)
    assert r.status_code == 200
    assert r.json["overallScore"] == 4.0


def test_practical_assessments_are_admin_only(client, make_user, login):
    make_user("lec@example.com", "lecturer")
    login(client, "lec@example.com")
    assert client.get("/api/admin/practical-assessments").status_code == 403
    assert client.get("/api/admin/analytics/competencies").status_code == 403


def test_competency_analytics(app, client, make_user, login, make_course):
    _admin(client, make_user, login)
    lec = make_user("lec@example.com", "lecturer")
    s1 = make_user("s1@example.com")
    s2 = make_user("s2@example.com")
    s3 = make_user("s3@example.com")
    ids = make_course(lec, published=True)
    safety = _competency(app, "Safety", critical=True)
    service = _competency(app, "Service")
    now = datetime.utcnow()
    with session_scope(app) as s:
        s.add_all(
            [
                Enrollment(student_id=s1, course_id=ids["course_id"]),
                Enrollment(student_id=s2, course_id=ids["course_id"]),
                StudentCompetency(student_id=s1, competency_id=safety, mastery_level=90, days_to_master=10, last_assessed_at=now),
                StudentCompetency(student_id=s2, competency_id=safety, mastery_level=80, last_assessed_at=now),
                StudentCompetency(student_id=s1, competency_id=service, mastery_level=50, last_assessed_at=now),
                StudentCompetency(student_id=s3, competency_id=service, mastery_level=85, days_to_master=20, last_assessed_at=now),
                # outside the default 30 day window
                StudentCompetency(
                    student_id=s2, competency_id=service, mastery_level=100, last_assessed_at=now - timedelta(days=200)
                ),
            ]
        )
    _practical(app, s1, role="Technician", submitted_at=now - timedelta(days=3))
    _practical(app, s1, role="Manager", submitted_at=now - timedelta(days=1))
    _practical(app, s3, role="Technician", submitted_at=now - timedelta(days=1))

    r = client.get("/api/admin/analytics/competencies")
    assert r.status_code == 200
    data = r.json["data"]
    by_name = {c["name"]: c for c in data["competencies"]}
    assert by_name["Safety"]["masteryPercentage"] == 100.0
    assert by_name["Safety"]["colorCode"] == "green"
    assert by_name["Safety"]["averageDaysToMastery"] == 10.0
    assert by_name["Service"]["studentsAttempted"] == 2
    assert by_name["Service"]["studentsMastered"] == 1
    assert by_name["Service"]["colorCode"] == "red"
    assert data["overallMasteryRate"] == 76.25
    assert data["criticalCompetenciesMastered"] == 100.0
    assert data["averageDaysToMastery"] == 15.0
    assert data["heatmapData"] == [
        {"competency": "Safety", "course": "Intro to Python", "masteryRate": 85.0},
        {"competency": "Service", "course": "Intro to Python", "masteryRate": 50.0},
    ]
    assert data["trendData"] == [{"month": month_key(now), "Safety": 85, "Service": 68, "Average Mastery": 76}]
    assert data["roleComparisonData"] == [
        {"competency": "Safety", "Manager": 90},
        {"competency": "Service", "Manager": 50, "Technician": 85},
    ]
    assert data["masteryDistribution"] == [
        {"level": "Mastery", "studentCount": 3, "percentage": 75},
        {"level": "Proficient", "studentCount": 0, "percentage": 0},
        {"level": "Needs Attention", "studentCount": 1, "percentage": 25},
    ]

    r = client.get(f"/api/admin/analytics/competencies?courses={ids['course_id']}")
    data = r.json["data"]
    assert {c["name"]: c["studentsAttempted"] for c in data["competencies"]} == {"Safety": 2, "Service": 1}
    assert data["overallMasteryRate"] == 73.33

    r = client.get("/api/admin/analytics/competencies?dateRange=1y")
    by_name = {c["name"]: c for c in r.json["data"]["competencies"]}
    assert by_name["Service"]["studentsAttempted"] == 3

    assert client.get("/api/admin/analytics/competencies?dateRange=forever").status_code == 400
