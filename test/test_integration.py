import pytest
import pytest_asyncio
from datetime import date

from httpx import AsyncClient
from sqlalchemy import select, func, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import TEST_PASSWORD, make_user, make_child, make_token, auth_headers
from daily_checklist.database.models import (Activity, ActivityStep, DeviceToken, Notification, Role, User,
                                             UserStatus)


async def make_activity(db: AsyncSession, teacher: User, title: str = "Block Tower") -> Activity:
    activity = Activity(title=title, description="Build a tower", environment="Both", difficulty="Easy",
                        min_age=2, max_age=5, duration=15, created_by=teacher.id)
    db.add(activity)
    await db.flush()
    db.add(ActivityStep(activity_id=activity.id, teacher_id=teacher.id, steps=["Stack", "Count"], photos=[]))
    await db.commit()
    return activity


async def count_notifications(db: AsyncSession, **filters) -> int:
    stmt = select(func.count(Notification.id))
    for column, value in filters.items():
        stmt = stmt.where(getattr(Notification, column) == value)
    result = await db.execute(stmt)
    return result.scalar_one()


@pytest_asyncio.fixture(scope="function")
async def activity(db_session: AsyncSession, teacher: User) -> Activity:
    return await make_activity(db_session, teacher)


# --- Authentication ---

@pytest.mark.asyncio
async def test_itc_001_register_teacher(client: AsyncClient):
    """A public registration always creates a teacher and returns a token."""
    payload = {"name": "New Teacher", "email": "new.teacher@example.com", "password": "password123"}
    response = await client.post("/api/register", json=payload)

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["user"]["role"] == "teacher"
    assert body["token"]
    assert body["token_type"] == "bearer"

    duplicate = await client.post("/api/register", json=payload)
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_itc_002_login_and_current_user(client: AsyncClient, teacher: User):
    response = await client.post("/api/login", json={"email": teacher.email, "password": TEST_PASSWORD})
    assert response.status_code == 200, response.text
    token = response.json()["token"]

    me = await client.get("/api/user", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == teacher.email

    wrong = await client.post("/api/login", json={"email": teacher.email, "password": "not-the-password"})
    assert wrong.status_code == 401


@pytest.mark.asyncio
async def test_itc_003_login_inactive_account(client: AsyncClient, db_session: AsyncSession, teacher: User):
    await make_user(db_session, "gone@example.com", Role.PARENT, created_by=teacher.id, status=UserStatus.INACTIVE)
    response = await client.post("/api/login", json={"email": "gone@example.com", "password": TEST_PASSWORD})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_itc_004_logout_revokes_token(client: AsyncClient, teacher: User):
    headers = auth_headers(teacher)
    response = await client.post("/api/logout", headers=headers)
    assert response.status_code == 200

    after = await client.get("/api/user", headers=headers)
    assert after.status_code == 401


@pytest.mark.asyncio
async def test_itc_005_register_parent(client: AsyncClient, teacher: User, parent: User):
    payload = {"name": "Fresh Parent", "email": "fresh@example.com", "password": "temporary1"}
    response = await client.post("/api/register-parent", json=payload, headers=auth_headers(teacher))
    assert response.status_code == 201, response.text
    user = response.json()["user"]
    assert user["role"] == "parent"
    assert user["is_temp_password"] is True
    assert user["created_by"] == teacher.id

    forbidden = await client.post("/api/register-parent", json={**payload, "email": "other@example.com"},
                                  headers=auth_headers(parent))
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_itc_006_change_password_clears_temp_flag(client: AsyncClient, db_session: AsyncSession,
                                                        teacher: User):
    parent = await make_user(db_session, "temp@example.com", Role.PARENT, created_by=teacher.id)
    parent.is_temp_password = True
    await db_session.commit()

    wrong = await client.post("/api/change-password", headers=auth_headers(parent),
                              json={"current_password": "nope", "new_password": "brandnew1"})
    assert wrong.status_code == 422

    response = await client.post("/api/change-password", headers=auth_headers(parent),
                                 json={"current_password": TEST_PASSWORD, "new_password": "brandnew1"})
    assert response.status_code == 200
    assert parent.is_temp_password is False


# --- Users ---

@pytest.mark.asyncio
async def test_itc_007_user_listing_is_role_scoped(client: AsyncClient, teacher: User, parent: User,
                                                   other_parent: User):
    as_teacher = await client.get("/api/users/", headers=auth_headers(teacher))
    assert as_teacher.status_code == 200
    assert {u["id"] for u in as_teacher.json()} == {teacher.id, parent.id, other_parent.id}

    as_parent = await client.get("/api/users/", headers=auth_headers(parent))
    assert {u["id"] for u in as_parent.json()} == {teacher.id, parent.id}


@pytest.mark.asyncio
async def test_itc_008_deactivate_user(client: AsyncClient, teacher: User, parent: User):
    response = await client.delete(f"/api/users/{parent.id}", headers=auth_headers(teacher))
    assert response.status_code == 200
    assert parent.status == UserStatus.INACTIVE

    self_delete = await client.delete(f"/api/users/{teacher.id}", headers=auth_headers(teacher))
    assert self_delete.status_code == 403


# --- Children ---

@pytest.mark.asyncio
async def test_itc_009_create_child(client: AsyncClient, teacher: User, parent: User):
    payload = {"name": "Bo Chen", "age": 4, "parent_id": parent.id}
    response = await client.post("/api/children/", json=payload, headers=auth_headers(teacher))

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["teacher_id"] == teacher.id
    assert body["avatar_url"] == "https://api.dicebear.com/9.x/thumbs/png?seed=Bo%20Chen"

    not_a_parent = await client.post("/api/children/", json={**payload, "parent_id": teacher.id},
                                     headers=auth_headers(teacher))
    assert not_a_parent.status_code == 422

    as_parent = await client.post("/api/children/", json=payload, headers=auth_headers(parent))
    assert as_parent.status_code == 403


@pytest.mark.asyncio
async def test_itc_010_child_access(client: AsyncClient, child, parent: User, other_parent: User):
    own = await client.get(f"/api/children/{child.id}", headers=auth_headers(parent))
    assert own.status_code == 200

    foreign = await client.get(f"/api/children/{child.id}", headers=auth_headers(other_parent))
    assert foreign.status_code == 403

    missing = await client.get("/api/children/9999", headers=auth_headers(parent))
    assert missing.status_code == 404


# --- Activities ---

@pytest.mark.asyncio
async def test_itc_011_create_activity_with_steps(client: AsyncClient, teacher: User):
    payload = {"title": "Finger Painting", "description": "Paint with fingers", "environment": "Home",
               "difficulty": "Easy", "min_age": 1, "max_age": 3, "duration": 20, "steps": ["Prepare", "Paint"]}
    response = await client.post("/api/activities/", json=payload, headers=auth_headers(teacher))

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["created_by"] == teacher.id
    assert body["activity_steps"][0]["steps"] == ["Prepare", "Paint"]


@pytest.mark.asyncio
async def test_itc_012_custom_steps_upsert(client: AsyncClient, db_session: AsyncSession, activity: Activity):
    other_teacher = await make_user(db_session, "t2@example.com", Role.TEACHER)
    url = f"/api/activities/{activity.id}/steps"

    first = await client.post(url, json={"steps": ["One"]}, headers=auth_headers(other_teacher))
    assert first.status_code == 200, first.text
    second = await client.post(url, json={"steps": ["One", "Two"]}, headers=auth_headers(other_teacher))
    assert second.status_code == 200

    own_steps = [s for s in second.json()["activity_steps"] if s["teacher_id"] == other_teacher.id]
    assert len(own_steps) == 1
    assert own_steps[0]["steps"] == ["One", "Two"]


@pytest.mark.asyncio
async def test_itc_013_update_foreign_activity_forbidden(client: AsyncClient, db_session: AsyncSession,
                                                         activity: Activity):
    other_teacher = await make_user(db_session, "t2@example.com", Role.TEACHER)
    response = await client.put(f"/api/activities/{activity.id}", json={"title": "Mine now"},
                                headers=auth_headers(other_teacher))
    assert response.status_code == 403


# --- Plans and fan-out ---

@pytest.mark.asyncio
async def test_itc_014_plan_creation_notifies_each_guardian_once(client: AsyncClient, db_session: AsyncSession,
                                                                 teacher: User, push_gateway):
    g = await make_user(db_session, "g@example.com", Role.PARENT, created_by=teacher.id)
    h = await make_user(db_session, "h@example.com", Role.PARENT, created_by=teacher.id)
    c1 = await make_child(db_session, "C1", parent=g, teacher=teacher)
    c2 = await make_child(db_session, "C2", parent=g, teacher=teacher)
    c3 = await make_child(db_session, "C3", parent=h, teacher=teacher)
    await make_token(db_session, g, "g-phone")
    await make_token(db_session, g, "g-tablet")
    await make_token(db_session, g, "g-old", is_active=False)
    await make_token(db_session, h, "h-phone")
    first = await make_activity(db_session, teacher, "Puzzle")
    second = await make_activity(db_session, teacher, "Songs")

    payload = {
        "type": "weekly",
        "start_date": "2026-01-05",
        "child_ids": [c1.id, c2.id, c3.id],
        "activities": [
            {"activity_id": first.id, "scheduled_date": "2026-01-05"},
            {"activity_id": second.id, "scheduled_date": "2026-01-06", "scheduled_time": "09:00"},
        ],
    }
    response = await client.post("/api/plans/", json=payload, headers=auth_headers(teacher))

    assert response.status_code == 201, response.text
    plan = response.json()
    assert [c["id"] for c in plan["children"]] == [c1.id, c2.id, c3.id]
    assert len(plan["planned_activities"]) == 2

    result = await db_session.execute(select(Notification).order_by(Notification.id))
    rows = result.scalars().all()
    assert [(n.user_id, n.child_id) for n in rows] == [(g.id, c1.id), (h.id, c3.id)]
    assert all(n.type == "new_plan" and n.related_id == str(plan["id"]) for n in rows)

    assert sorted(call["token"] for call in push_gateway.calls) == ["g-phone", "g-tablet", "h-phone"]


@pytest.mark.asyncio
async def test_itc_015_global_plan_reaches_every_parent(client: AsyncClient, db_session: AsyncSession,
                                                        teacher: User, parent: User, other_parent: User,
                                                        activity: Activity):
    payload = {"type": "daily", "start_date": "2026-01-05",
               "activities": [{"activity_id": activity.id, "scheduled_date": "2026-01-05"}]}
    response = await client.post("/api/plans/", json=payload, headers=auth_headers(teacher))
    assert response.status_code == 201, response.text

    assert await count_notifications(db_session, type="new_plan") == 2

    listing = await client.get("/api/plans/", headers=auth_headers(parent))
    assert [p["id"] for p in listing.json()] == [response.json()["id"]]


@pytest.mark.asyncio
async def test_itc_016_plan_visibility_for_parents(client: AsyncClient, db_session: AsyncSession, teacher: User,
                                                   child, other_parent: User, activity: Activity):
    payload = {"type": "weekly", "start_date": "2026-01-05", "child_id": child.id,
               "activities": [{"activity_id": activity.id, "scheduled_date": "2026-01-05"}]}
    created = await client.post("/api/plans/", json=payload, headers=auth_headers(teacher))
    plan_id = created.json()["id"]

    foreign = await client.get(f"/api/plans/{plan_id}", headers=auth_headers(other_parent))
    assert foreign.status_code == 403
    assert (await client.get("/api/plans/", headers=auth_headers(other_parent))).json() == []


@pytest.mark.asyncio
async def test_itc_017_unknown_child_rejected(client: AsyncClient, teacher: User, activity: Activity):
    payload = {"type": "weekly", "start_date": "2026-01-05", "child_ids": [9999],
               "activities": [{"activity_id": activity.id, "scheduled_date": "2026-01-05"}]}
    response = await client.post("/api/plans/", json=payload, headers=auth_headers(teacher))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_itc_018_teacher_status_change_notifies_parent(client: AsyncClient, db_session: AsyncSession,
                                                             teacher: User, parent: User, child,
                                                             activity: Activity):
    payload = {"type": "weekly", "start_date": "2026-01-05", "child_ids": [child.id],
               "activities": [{"activity_id": activity.id, "scheduled_date": "2026-01-05"}]}
    created = await client.post("/api/plans/", json=payload, headers=auth_headers(teacher))
    planned_id = created.json()["planned_activities"][0]["id"]

    response = await client.put(f"/api/planned-activities/{planned_id}/status", json={"completed": True},
                                headers=auth_headers(teacher))

    assert response.status_code == 200, response.text
    assert response.json()["planned_activity"]["completed"] is True
    assert await count_notifications(db_session, user_id=parent.id, type="activity_completed") == 1


@pytest.mark.asyncio
async def test_itc_019_parent_status_change_notifies_teacher(client: AsyncClient, db_session: AsyncSession,
                                                             teacher: User, parent: User, other_parent: User,
                                                             child, activity: Activity):
    payload = {"type": "weekly", "start_date": "2026-01-05", "child_ids": [child.id],
               "activities": [{"activity_id": activity.id, "scheduled_date": "2026-01-05"}]}
    created = await client.post("/api/plans/", json=payload, headers=auth_headers(teacher))
    planned_id = created.json()["planned_activities"][0]["id"]
    url = f"/api/planned-activities/{planned_id}/status"

    foreign = await client.put(url, json={"completed": True}, headers=auth_headers(other_parent))
    assert foreign.status_code == 403

    response = await client.put(url, json={"completed": True}, headers=auth_headers(parent))
    assert response.status_code == 200, response.text

    result = await db_session.execute(select(Notification).where(Notification.user_id == teacher.id))
    notification = result.scalars().one()
    assert notification.type == "activity_status"
    assert notification.child_id == child.id
    assert notification.sent_by == parent.id


@pytest.mark.asyncio
async def test_itc_020_plan_update_and_delete(client: AsyncClient, db_session: AsyncSession, teacher: User,
                                              parent: User, child, activity: Activity):
    payload = {"type": "weekly", "start_date": "2026-01-05", "child_ids": [child.id],
               "activities": [{"activity_id": activity.id, "scheduled_date": "2026-01-05"},
                              {"activity_id": activity.id, "scheduled_date": "2026-01-06"}]}
    created = (await client.post("/api/plans/", json=payload, headers=auth_headers(teacher))).json()
    keep, drop = [pa["id"] for pa in created["planned_activities"]]

    update = {"type": "daily",
              "activities": [{"id": keep, "completed": True},
                             {"activity_id": activity.id, "scheduled_date": "2026-01-07"}],
              "deleted_activities": [drop]}
    response = await client.put(f"/api/plans/{created['id']}", json=update, headers=auth_headers(teacher))

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["type"] == "daily"
    assert [pa["id"] for pa in body["planned_activities"]][0] == keep
    assert drop not in [pa["id"] for pa in body["planned_activities"]]
    assert len(body["planned_activities"]) == 2
    assert await count_notifications(db_session, user_id=parent.id, type="activity_completed") == 1

    deleted = await client.delete(f"/api/plans/{created['id']}", headers=auth_headers(teacher))
    assert deleted.status_code == 200
    missing = await client.get(f"/api/plans/{created['id']}", headers=auth_headers(teacher))
    assert missing.status_code == 404


# --- Checklists ---

@pytest.mark.asyncio
async def test_itc_021_checklist_observations(client: AsyncClient, teacher: User, parent: User, child,
                                              activity: Activity):
    payload = {"child_id": child.id, "activity_id": activity.id, "custom_steps_used": ["Stack"]}
    created = await client.post("/api/checklists/", json=payload, headers=auth_headers(teacher))
    assert created.status_code == 201, created.text
    checklist = created.json()
    assert checklist["status"] == "pending"
    assert checklist["home_observation"]["completed"] is False
    assert checklist["status_icon"] == "⏱️"

    url = f"/api/checklists/{checklist['id']}"
    school_by_parent = await client.post(f"{url}/school-observation", headers=auth_headers(parent),
                                         json={"duration": 10, "engagement": 4, "notes": "ok",
                                               "learning_outcomes": "counting"})
    assert school_by_parent.status_code == 403

    home = await client.post(f"{url}/home-observation", headers=auth_headers(parent),
                             json={"duration": 15, "engagement": 5, "notes": "Loved it"})
    assert home.status_code == 200, home.text
    body = home.json()
    assert body["status"] == "completed"
    assert body["home_observation"]["completed"] is True
    assert body["home_observation"]["engagement"] == 5
    assert body["is_completed"] is True

    listing = await client.get("/api/checklists/", params={"child_id": child.id}, headers=auth_headers(parent))
    assert [c["id"] for c in listing.json()] == [checklist["id"]]


@pytest.mark.asyncio
async def test_itc_022_checklist_status_update(client: AsyncClient, teacher: User, child, activity: Activity):
    payload = {"child_id": child.id, "activity_id": activity.id, "custom_steps_used": []}
    checklist = (await client.post("/api/checklists/", json=payload, headers=auth_headers(teacher))).json()

    response = await client.put(f"/api/checklists/{checklist['id']}/status", json={"status": "in-progress"},
                                headers=auth_headers(teacher))
    assert response.status_code == 200
    assert response.json()["status_icon"] == "🔄"

    invalid = await client.put(f"/api/checklists/{checklist['id']}/status", json={"status": "done"},
                               headers=auth_headers(teacher))
    assert invalid.status_code == 422


# --- Notification inbox ---

@pytest.mark.asyncio
async def test_itc_023_device_token_upsert(client: AsyncClient, db_session: AsyncSession, parent: User,
                                           other_parent: User):
    first = await client.post("/api/notifications/firebase-token", headers=auth_headers(parent),
                              json={"token": "shared-device", "device_info": "Pixel"})
    assert first.status_code == 200, first.text

    second = await client.post("/api/notifications/firebase-token", headers=auth_headers(other_parent),
                               json={"token": "shared-device", "device_info": "Pixel (reset)"})
    assert second.status_code == 200

    result = await db_session.execute(select(DeviceToken).where(DeviceToken.token == "shared-device"))
    rows = result.scalars().all()
    assert len(rows) == 1
    assert rows[0].user_id == other_parent.id
    assert rows[0].device_info == "Pixel (reset)"
    assert rows[0].is_active is True


@pytest.mark.asyncio
async def test_itc_024_device_token_deactivate(client: AsyncClient, db_session: AsyncSession, parent: User):
    device_token = await make_token(db_session, parent, "to-remove")
    response = await client.delete("/api/notifications/firebase-token/to-remove", headers=auth_headers(parent))
    assert response.status_code == 200
    assert device_token.is_active is False


@pytest.mark.asyncio
async def test_itc_025_mark_all_read_only_touches_caller(client: AsyncClient, teacher: User, parent: User,
                                                         other_parent: User):
    send = {"title": "Hello", "body": "Everyone", "type": "system"}
    broadcast = await client.post("/api/notifications/system", json=send, headers=auth_headers(teacher))
    assert broadcast.status_code == 201, broadcast.text
    assert broadcast.json()["notification_count"] == 2

    inbox = await client.get("/api/notifications/", headers=auth_headers(parent))
    assert [n["is_read"] for n in inbox.json()] == [False]

    response = await client.put("/api/notifications/read-all", headers=auth_headers(parent))
    assert response.status_code == 200

    mine = await client.get("/api/notifications/unread-count", headers=auth_headers(parent))
    theirs = await client.get("/api/notifications/unread-count", headers=auth_headers(other_parent))
    assert mine.json()["unread_count"] == 0
    assert theirs.json()["unread_count"] == 1


@pytest.mark.asyncio
async def test_itc_026_notification_ownership(client: AsyncClient, db_session: AsyncSession, teacher: User,
                                              parent: User, other_parent: User):
    created = await client.post("/api/notifications/", headers=auth_headers(teacher),
                                json={"user_id": parent.id, "title": "Hi", "body": "Note", "type": "message"})
    assert created.status_code == 201, created.text
    notification_id = created.json()["id"]
    assert created.json()["sent_by"] == teacher.id

    foreign = await client.get(f"/api/notifications/{notification_id}", headers=auth_headers(other_parent))
    assert foreign.status_code == 403

    read = await client.put(f"/api/notifications/{notification_id}", json={"is_read": True},
                            headers=auth_headers(parent))
    assert read.status_code == 200
    assert read.json()["is_read"] is True

    deleted = await client.delete(f"/api/notifications/{notification_id}", headers=auth_headers(parent))
    assert deleted.status_code == 204
    missing = await client.get(f"/api/notifications/{notification_id}", headers=auth_headers(parent))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_itc_027_send_to_parents_dedups(client: AsyncClient, db_session: AsyncSession, teacher: User,
                                              parent: User):
    c1 = await make_child(db_session, "C1", parent=parent, teacher=teacher)
    c2 = await make_child(db_session, "C2", parent=parent, teacher=teacher)
    orphan = await make_child(db_session, "Orphan", teacher=teacher)

    payload = {"title": "Trip", "body": "Museum on Friday", "type": "event", "child_ids": [c1.id, orphan.id, c2.id]}
    response = await client.post("/api/notifications/send-to-parents", json=payload, headers=auth_headers(teacher))

    assert response.status_code == 201, response.text
    assert response.json()["notification_count"] == 1
    assert response.json()["failed_count"] == 0
    assert await count_notifications(db_session, user_id=parent.id, child_id=c1.id) == 1

    as_parent = await client.post("/api/notifications/send-to-parents", json=payload, headers=auth_headers(parent))
    assert as_parent.status_code == 403


@pytest.mark.asyncio
async def test_itc_028_point_event_endpoints(client: AsyncClient, db_session: AsyncSession, teacher: User, child):
    orphan = await make_child(db_session, "Orphan", teacher=teacher)

    sent = await client.post("/api/notifications/new-plan", headers=auth_headers(teacher),
                             json={"plan_id": "12", "plan_title": "Week 2", "child_id": child.id})
    assert sent.status_code == 200, sent.text

    failed = await client.post("/api/notifications/activity-status", headers=auth_headers(teacher),
                               json={"activity_id": "3", "activity_title": "Songs", "child_id": orphan.id,
                                     "status": "completed"})
    assert failed.status_code == 500
    assert await count_notifications(db_session, child_id=orphan.id) == 0


# --- Uploads ---

@pytest.mark.asyncio
async def test_itc_029_upload_photo(client: AsyncClient, teacher: User, tmp_path, mocker):
    mocker.patch("daily_checklist.controllers.uploads.UPLOAD_DIR", str(tmp_path))
    files = {"photo": ("tower.png", b"\x89PNG\r\n\x1a\nfake", "image/png")}

    response = await client.post("/api/upload-photo", files=files, data={"type": "activity"},
                                 headers=auth_headers(teacher))

    assert response.status_code == 200, response.text
    url = response.json()["url"]
    assert url.startswith("/uploads/activities/") and url.endswith(".png")
    assert (tmp_path / "activities" / url.rsplit("/", 1)[1]).exists()


@pytest.mark.asyncio
async def test_itc_030_upload_rejects_non_images(client: AsyncClient, teacher: User, tmp_path, mocker):
    mocker.patch("daily_checklist.controllers.uploads.UPLOAD_DIR", str(tmp_path))
    files = {"photo": ("notes.txt", b"hello", "text/plain")}
    response = await client.post("/api/upload-photo", files=files, data={"type": "profile"},
                                 headers=auth_headers(teacher))
    assert response.status_code == 422


# --- Failure paths ---

@pytest.mark.asyncio
async def test_itc_031_device_token_registered_concurrently(client: AsyncClient, db_session: AsyncSession,
                                                            parent: User, other_parent: User, monkeypatch):
    """Another request stores the same token just before this one writes; still one row, owned by the caller."""
    first_owner_id = parent.id
    caller_id = other_parent.id
    headers = auth_headers(other_parent)
    original_execute = db_session.execute
    competing = []

    async def execute_after_competing_insert(statement, *args, **kwargs):
        if not competing and getattr(statement, "is_insert", False) \
                and getattr(statement, "table", None) is DeviceToken.__table__:
            competing.append(True)
            await original_execute(insert(DeviceToken).values(
                user_id=first_owner_id, token="race-token", device_info="Phone", is_active=True))
        return await original_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", execute_after_competing_insert)

    response = await client.post("/api/notifications/firebase-token", headers=headers,
                                 json={"token": "race-token", "device_info": "Tablet"})

    assert response.status_code == 200, response.text
    assert competing == [True]
    assert response.json()["user_id"] == caller_id
    result = await original_execute(select(DeviceToken.user_id, DeviceToken.device_info)
                                    .where(DeviceToken.token == "race-token"))
    assert [tuple(row) for row in result.all()] == [(caller_id, "Tablet")]


@pytest.mark.asyncio
async def test_itc_032_notification_for_unknown_child_rejected(client: AsyncClient, db_session: AsyncSession,
                                                               teacher: User, parent: User):
    payload = {"user_id": parent.id, "title": "Hi", "body": "Note", "type": "message", "child_id": 98765}
    response = await client.post("/api/notifications/", json=payload, headers=auth_headers(teacher))

    assert response.status_code == 422
    assert await count_notifications(db_session) == 0


@pytest.mark.asyncio
async def test_itc_033_oversized_notification_fields_rejected(client: AsyncClient, db_session: AsyncSession,
                                                              teacher: User, parent: User):
    headers = auth_headers(teacher)
    too_long_type = await client.post("/api/notifications/system", headers=headers,
                                      json={"title": "Hi", "body": "Everyone", "type": "t" * 300})
    assert too_long_type.status_code == 422

    too_long_related = await client.post("/api/notifications/", headers=headers,
                                         json={"user_id": parent.id, "title": "Hi", "body": "Note",
                                               "type": "message", "related_id": "r" * 256})
    assert too_long_related.status_code == 422
    assert await count_notifications(db_session) == 0


async def _plan_with_two_families(client: AsyncClient, db_session: AsyncSession, teacher: User,
                                  activity: Activity) -> dict:
    g = await make_user(db_session, "g@example.com", Role.PARENT, created_by=teacher.id)
    h = await make_user(db_session, "h@example.com", Role.PARENT, created_by=teacher.id)
    c1 = await make_child(db_session, "C1", parent=g, teacher=teacher)
    c2 = await make_child(db_session, "C2", parent=h, teacher=teacher)
    payload = {"type": "weekly", "start_date": "2026-01-05", "child_ids": [c1.id, c2.id],
               "activities": [{"activity_id": activity.id, "scheduled_date": "2026-01-05"}]}
    response = await client.post("/api/plans/", json=payload, headers=auth_headers(teacher))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_itc_034_status_change_survives_notification_write_failure(client: AsyncClient,
                                                                          db_session: AsyncSession,
                                                                          teacher: User, activity: Activity,
                                                                          mocker):
    plan = await _plan_with_two_families(client, db_session, teacher, activity)
    planned_id = plan["planned_activities"][0]["id"]
    headers = auth_headers(teacher)
    mocker.patch("daily_checklist.services.notification_service.Notification",
                 side_effect=SQLAlchemyError("database unavailable"))

    response = await client.put(f"/api/planned-activities/{planned_id}/status", json={"completed": True},
                                headers=headers)

    assert response.status_code == 200, response.text
    assert response.json()["planned_activity"]["id"] == planned_id
    assert response.json()["planned_activity"]["completed"] is True
    assert await count_notifications(db_session, type="activity_completed") == 0


@pytest.mark.asyncio
async def test_itc_035_plan_update_survives_notification_write_failure(client: AsyncClient,
                                                                        db_session: AsyncSession,
                                                                        teacher: User, activity: Activity,
                                                                        mocker):
    plan = await _plan_with_two_families(client, db_session, teacher, activity)
    planned_id = plan["planned_activities"][0]["id"]
    headers = auth_headers(teacher)
    mocker.patch("daily_checklist.services.notification_service.Notification",
                 side_effect=SQLAlchemyError("database unavailable"))

    response = await client.put(f"/api/plans/{plan['id']}", json={"activities": [{"id": planned_id, "completed": True}]},
                                headers=headers)

    assert response.status_code == 200, response.text
    assert response.json()["planned_activities"][0]["completed"] is True
    assert await count_notifications(db_session, type="activity_completed") == 0
