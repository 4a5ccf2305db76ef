import pytest

from schoolhub.models import Role

BASE = "/api/master_teacher/coordinator/student-assignments"


@pytest.fixture
def roster(make_student):
	students = [make_student(f"10000000000{i}", grade=3) for i in range(1, 6)]
	make_student("200000000001", grade=4)
	return students


def _loads(body):
	return {g["teacher_id"]: len(g["students"]) for g in body["groups"]}


def test_preview_does_not_persist(client, coordinator_headers, coordinator, teacher, roster):
	req = {"grade": 3, "subject": "English", "teacher_ids": [teacher.user_id, coordinator.user_id], "seed": 7}
	r = client.post(f"{BASE}/preview", json=req, headers=coordinator_headers)
	assert r.status_code == 200, r.text
	body = r.json()
	assert body["assigned"] == 5
	assert _loads(body) == {teacher.user_id: 3, coordinator.user_id: 2}
	types = {g["teacher_id"]: g["teacher_type"] for g in body["groups"]}
	assert types == {teacher.user_id: "regular_teacher", coordinator.user_id: "master_coordinator"}

	r = client.get(BASE, headers=coordinator_headers)
	assert r.json()["total"] == 0


def test_assign_then_incremental_run(client, coordinator_headers, coordinator, teacher, roster, make_student):
	req = {"grade": 3, "subject": "English", "teacher_ids": [teacher.user_id, coordinator.user_id]}
	r = client.post(BASE, json=req, headers=coordinator_headers)
	assert r.status_code == 200
	assert r.json()["assigned"] == 5

	r = client.get(BASE, params={"grade": 3, "subject": "english"}, headers=coordinator_headers)
	assert r.json()["total"] == 5
	assigned_ids = sorted(s["student_id"] for g in r.json()["groups"] for s in g["students"])
	assert assigned_ids == sorted(s.student_id for s in roster)

	# only the newcomer is placed, on the lighter teacher
	make_student("100000000006", grade=3)
	r = client.post(BASE, json=req, headers=coordinator_headers)
	body = r.json()
	assert body["kept"] == 5
	assert body["assigned"] == 1
	assert body["deactivated"] == 0
	assert {g["teacher_id"]: g["total"] for g in body["groups"]} == {teacher.user_id: 3, coordinator.user_id: 3}
	lighter = next(g for g in body["groups"] if g["students"])
	assert lighter["teacher_id"] == coordinator.user_id
	assert lighter["existing_count"] == 2


def test_reassign_all(client, coordinator_headers, coordinator, teacher, roster):
	req = {"grade": 3, "subject": "Math", "teacher_ids": [teacher.user_id, coordinator.user_id]}
	client.post(BASE, json=req, headers=coordinator_headers)
	r = client.post(BASE, json={**req, "reassign_all": True}, headers=coordinator_headers)
	body = r.json()
	assert body["kept"] == 0
	assert body["deactivated"] == 5
	assert body["assigned"] == 5
	assert client.get(BASE, headers=coordinator_headers).json()["total"] == 5


def test_dropping_a_teacher_moves_their_students(client, coordinator_headers, coordinator, teacher, roster):
	req = {"grade": 3, "subject": "Filipino", "teacher_ids": [teacher.user_id, coordinator.user_id]}
	client.post(BASE, json=req, headers=coordinator_headers)
	r = client.post(BASE, json={**req, "teacher_ids": [teacher.user_id]}, headers=coordinator_headers)
	body = r.json()
	assert body["kept"] == 3
	assert body["deactivated"] == 2
	assert body["groups"][0]["total"] == 5

	r = client.get(BASE, headers=coordinator_headers)
	assert [g["teacher_id"] for g in r.json()["groups"]] == [teacher.user_id]


def test_default_teacher_selection(client, coordinator_headers, coordinator, teacher, make_user, roster):
	make_user(Role.TEACHER, grade="3", subjects="Math")
	make_user(Role.REMEDIAL_TEACHER, grade="4")
	r = client.post(f"{BASE}/preview", json={"grade": 3, "subject": "English"}, headers=coordinator_headers)
	assert r.status_code == 200
	assert sorted(g["teacher_id"] for g in r.json()["groups"]) == sorted([teacher.user_id, coordinator.user_id])


def test_assignment_errors(client, coordinator_headers, teacher_headers, admin, roster):
	r = client.post(BASE, json={"grade": 3, "subject": "Science"}, headers=coordinator_headers)
	assert r.status_code == 400
	r = client.post(BASE, json={"grade": 6, "subject": "English"}, headers=coordinator_headers)
	assert r.status_code == 400
	r = client.post(BASE, json={"grade": 3, "subject": "English", "teacher_ids": [admin.user_id]}, headers=coordinator_headers)
	assert r.status_code == 400
	r = client.post(BASE, json={"grade": 3, "subject": "English"}, headers=teacher_headers)
	assert r.status_code == 403
