from io import BytesIO

from openpyxl import Workbook, load_workbook

from conftest import login

from schoolhub.db import engine
from schoolhub.excel import XLSX_MEDIA_TYPE
from schoolhub.models import Role

NEW_TEACHER = {
	"role": "teacher",
	"first_name": "Maria",
	"last_name": "Santos",
	"email": "Maria.Santos@School.local",
	"phone_number": "0917 123 4567",
	"grade": "Grade 3",
	"subjects": ["English", "Math"],
}


def xlsx(rows):
	wb = Workbook()
	ws = wb.active
	for row in rows:
		ws.append(row)
	buf = BytesIO()
	wb.save(buf)
	return buf.getvalue()


def test_create_account(client, admin_headers):
	r = client.post("/api/super_admin/accounts", json=NEW_TEACHER, headers=admin_headers)
	assert r.status_code == 201, r.text
	body = r.json()
	account = body["account"]
	assert account["email"] == "maria.santos@school.local"
	assert account["username"] == "maria.santos"
	assert account["phone_number"] == "09171234567"
	assert account["grade"] == "3"
	assert account["subjects"] == ["English", "Math"]
	assert account["role_label"] == "Teacher"

	# the temporary password works
	login(client, account["username"], body["temporary_password"])


def test_create_account_duplicate_email(client, admin_headers):
	assert client.post("/api/super_admin/accounts", json=NEW_TEACHER, headers=admin_headers).status_code == 201
	r = client.post("/api/super_admin/accounts", json=NEW_TEACHER, headers=admin_headers)
	assert r.status_code == 409
	assert r.json()["detail"] == "Email already exists."


def test_create_account_validation(client, admin_headers):
	r = client.post("/api/super_admin/accounts", json={**NEW_TEACHER, "phone_number": "123"}, headers=admin_headers)
	assert r.status_code == 400
	r = client.post("/api/super_admin/accounts", json={**NEW_TEACHER, "role": "principal"}, headers=admin_headers)
	assert r.status_code == 400
	r = client.post("/api/super_admin/accounts", json={**NEW_TEACHER, "first_name": "M"}, headers=admin_headers)
	assert r.status_code == 400


def test_list_accounts_by_role(client, admin_headers, teacher, coordinator):
	r = client.get("/api/super_admin/accounts", params={"role": "teacher"}, headers=admin_headers)
	assert r.status_code == 200
	assert [a["username"] for a in r.json()["accounts"]] == ["teach"]

	r = client.get("/api/super_admin/accounts", headers=admin_headers)
	assert r.json()["total"] == 3

	r = client.get("/api/super_admin/accounts", params={"role": "janitor"}, headers=admin_headers)
	assert r.status_code == 400


def test_update_account(client, admin_headers, teacher, coordinator):
	url = f"/api/super_admin/accounts/{teacher.user_id}"
	r = client.put(url, json={"section": "Sampaguita", "role": "remedial_teacher"}, headers=admin_headers)
	assert r.status_code == 200
	assert r.json()["section"] == "Sampaguita"
	assert r.json()["role"] == Role.REMEDIAL_TEACHER

	r = client.put(url, json={"email": "coord@school.local"}, headers=admin_headers)
	assert r.status_code == 409
	assert client.put("/api/super_admin/accounts/9999", json={}, headers=admin_headers).status_code == 404


def test_upload_accounts(client, admin_headers, teacher):
	content = xlsx([
		["First Name", "Last Name", "Email", "Phone", "Grade", "Subjects"],
		["Ana", "Reyes", "ana@school.local", "09171111111", "3", "English"],
		["Ben", "Cruz", "ana@school.local", "09172222222", "3", "Math"],
		["Cy", "Lim", "teach@school.local", "09173333333", "4", "Math"],
		["D", "Tan", "d@school.local", "09174444444", "4", "Math"],
		["Eve", "Go", "eve@school.local", "123", "4", "Math"],
	])
	r = client.post(
		"/api/super_admin/accounts/upload",
		params={"role": "teacher"},
		files={"file": ("teachers.xlsx", content, XLSX_MEDIA_TYPE)},
		headers=admin_headers,
	)
	assert r.status_code == 200, r.text
	body = r.json()
	assert [row["email"] for row in body["inserted"]] == ["ana@school.local"]
	assert body["inserted"][0]["temporary_password"]
	errors = {f["row"]: f["error"] for f in body["failures"]}
	assert errors[3] == "Duplicate email in upload."
	assert errors[4] == "Email already exists."
	assert "at least 2" in errors[5]
	assert "Phone number" in errors[6]


def test_upload_failed_row_does_not_block_its_email(client, admin_headers):
	content = xlsx([
		["First Name", "Last Name", "Email", "Phone", "Grade", "Subjects"],
		["Ana", "Reyes", "ana@school.local", "123", "3", "English"],
		["Ana", "Reyes", "ANA@school.local", "09171111111", "3", "English"],
		["Ana", "Copy", "ana@school.local", "09172222222", "3", "English"],
	])
	r = client.post(
		"/api/super_admin/accounts/upload",
		params={"role": "teacher"},
		files={"file": ("teachers.xlsx", content, XLSX_MEDIA_TYPE)},
		headers=admin_headers,
	)
	assert r.status_code == 200, r.text
	body = r.json()
	assert [(row["row"], row["email"]) for row in body["inserted"]] == [(3, "ana@school.local")]
	errors = {f["row"]: f["error"] for f in body["failures"]}
	assert "Phone number" in errors[2]
	assert errors[4] == "Duplicate email in upload."


def test_upload_with_nothing_inserted_is_400(client, admin_headers):
	content = xlsx([["First Name", "Last Name", "Email"], ["A", "B", "bad"]])
	r = client.post(
		"/api/super_admin/accounts/upload",
		params={"role": "super_admin"},
		files={"file": ("admins.xlsx", content, XLSX_MEDIA_TYPE)},
		headers=admin_headers,
	)
	assert r.status_code == 400
	assert r.json()["inserted"] == []
	assert len(r.json()["failures"]) == 1


def test_upload_rejects_bad_files(client, admin_headers):
	r = client.post(
		"/api/super_admin/accounts/upload",
		params={"role": "teacher"},
		files={"file": ("teachers.csv", b"a,b", "text/csv")},
		headers=admin_headers,
	)
	assert r.status_code == 400
	content = xlsx([["First Name", "Last Name"], ["Ana", "Reyes"]])
	r = client.post(
		"/api/super_admin/accounts/upload",
		params={"role": "teacher"},
		files={"file": ("teachers.xlsx", content, XLSX_MEDIA_TYPE)},
		headers=admin_headers,
	)
	assert r.status_code == 400
	assert "email" in r.json()["detail"]


def test_export_accounts(client, admin_headers, teacher):
	r = client.get("/api/super_admin/accounts/export", params={"role": "teacher"}, headers=admin_headers)
	assert r.status_code == 200
	assert r.headers["content-type"] == XLSX_MEDIA_TYPE
	assert "attachment" in r.headers["content-disposition"]
	ws = load_workbook(BytesIO(r.content)).active
	assert ws["A1"].value == "User ID"
	assert ws["B2"].value == "teach"
	assert ws.max_row == 2


def test_dashboard(client, admin_headers, teacher, make_student):
	make_student("100000000001", grade=3)
	make_student("100000000002", grade=3)
	make_student("100000000003", grade=4)
	r = client.get("/api/super_admin/dashboard", headers=admin_headers)
	assert r.status_code == 200
	body = r.json()
	assert body["accounts"][Role.TEACHER] == 1
	assert body["accounts"][Role.SUPER_ADMIN] == 1
	assert body["total_accounts"] == 2
	assert body["students_per_grade"] == {"3": 2, "4": 1}
	assert body["archived_users"] == 0
	assert body["published_assessments"] == 0


def test_dashboard_without_archive_tables(client, admin_headers):
	with engine.begin() as conn:
		conn.exec_driver_sql("DROP TABLE archive_students")
		conn.exec_driver_sql("DROP TABLE archive_users")
	r = client.get("/api/super_admin/dashboard", headers=admin_headers)
	assert r.status_code == 200
	assert r.json()["archived_users"] == 0
	assert r.json()["archived_students"] == 0
