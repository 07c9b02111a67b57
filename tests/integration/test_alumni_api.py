import pytest

INVITE = {
    "email": "Jane.Doe@Example.com",
    "firstName": "Jane",
    "lastName": "Doe",
    "graduationYear": 2020,
    "program": "Computer Science",
}


async def _invite(client, headers, **overrides):
    return await client.post("/education/alumni/invite", json={**INVITE, **overrides}, headers=headers)


async def _log(container, template_name):
    await container.dispatcher.drain()
    return await container.gateway.log.entries(template_name=template_name)


async def test_invitation_lifecycle(client, harvard_admin, container):
    response = await _invite(client, harvard_admin)

    assert response.status_code == 201
    invitation = response.json()
    code = invitation["invitationCode"]
    assert len(code) == 32
    assert invitation["id"].startswith("alum_")
    assert invitation["email"] == "jane.doe@example.com"
    assert invitation["institutionDomain"] == "harvard.edu"
    assert invitation["graduationYear"] == "2020"
    assert invitation["status"] == "invited"
    assert invitation["invitedBy"] == "edu-harvard"

    [sent] = await _log(container, "alumniInvitation")
    assert sent.to == "jane.doe@example.com"
    assert sent.metadata["alumniId"] == invitation["id"]

    assert (await _invite(client, harvard_admin)).status_code == 409

    response = await client.get(f"/education/alumni/verify-invitation/{code}")
    assert response.status_code == 200
    assert response.json() == {
        "valid": True,
        "firstName": "Jane",
        "lastName": "Doe",
        "email": "jane.doe@example.com",
        "institutionDomain": "harvard.edu",
        "graduationYear": "2020",
        "program": "Computer Science",
    }

    response = await client.post(
        "/education/alumni/accept-invitation",
        json={"invitationCode": code, "userId": "user-123"},
    )
    assert response.status_code == 200
    accepted = response.json()
    assert accepted["status"] == "accepted"
    assert accepted["userId"] == "user-123"
    assert accepted["acceptedAt"]
    assert [e.to for e in await _log(container, "alumniWelcome")] == ["jane.doe@example.com"]

    response = await client.get(f"/education/alumni/verify-invitation/{code}")
    assert response.status_code == 410
    assert response.json()["code"] == "gone"

    response = await client.post(
        "/education/alumni/accept-invitation",
        json={"invitationCode": code, "userId": "user-456"},
    )
    assert response.status_code == 409


async def test_same_email_may_be_invited_by_another_institution(client, harvard_admin, yale_admin):
    await _invite(client, harvard_admin)
    assert (await _invite(client, yale_admin)).status_code == 201


async def test_verify_rejects_malformed_and_unknown_codes(client):
    response = await client.get("/education/alumni/verify-invitation/short")
    assert response.status_code == 400

    response = await client.get(f"/education/alumni/verify-invitation/{'0' * 32}")
    assert response.status_code == 404


async def test_decline(client, harvard_admin):
    code = (await _invite(client, harvard_admin)).json()["invitationCode"]

    response = await client.post("/education/alumni/decline-invitation", json={"invitationCode": code})
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["rejectedAt"]

    assert (await client.get(f"/education/alumni/verify-invitation/{code}")).status_code == 410
    response = await client.post(
        "/education/alumni/accept-invitation", json={"invitationCode": code, "userId": "u"}
    )
    assert response.status_code == 410
    response = await client.post("/education/alumni/decline-invitation", json={"invitationCode": code})
    assert response.status_code == 410


async def test_scope_isolation(client, harvard_admin, yale_admin):
    alumni_id = (await _invite(client, harvard_admin)).json()["id"]

    body = (await client.get("/education/alumni", headers=yale_admin)).json()
    assert body["items"] == []
    assert body["pagination"]["total"] == 0

    response = await client.put(f"/education/alumni/{alumni_id}/resend", headers=yale_admin)
    assert response.status_code == 403
    assert "harvard.edu" not in response.json()["detail"]

    response = await client.delete(f"/education/alumni/{alumni_id}", headers=yale_admin)
    assert response.status_code == 403

    body = (await client.get("/education/alumni", headers=harvard_admin)).json()
    assert [i["id"] for i in body["items"]] == [alumni_id]


async def test_requires_educational_admin(client, system_admin):
    assert (await client.get("/education/alumni")).status_code == 401
    assert (await _invite(client, system_admin)).status_code == 403


async def test_invite_validation(client, harvard_admin):
    assert (await _invite(client, harvard_admin, email="nope")).status_code == 422
    assert (await _invite(client, harvard_admin, firstName="   ")).status_code == 422


async def test_resend_issues_new_code(client, harvard_admin, container):
    original = (await _invite(client, harvard_admin)).json()

    response = await client.put(f"/education/alumni/{original['id']}/resend", headers=harvard_admin)

    assert response.status_code == 200
    resent = response.json()
    assert resent["invitationCode"] != original["invitationCode"]
    assert len(resent["invitationCode"]) == 32
    assert resent["invitedAt"] >= original["invitedAt"]
    assert len(await _log(container, "alumniReminder")) == 1

    old = await client.get(f"/education/alumni/verify-invitation/{original['invitationCode']}")
    assert old.status_code == 404
    new = await client.get(f"/education/alumni/verify-invitation/{resent['invitationCode']}")
    assert new.status_code == 200


async def test_resend_after_decline_reopens_invitation(client, harvard_admin):
    invitation = (await _invite(client, harvard_admin)).json()
    await client.post(
        "/education/alumni/decline-invitation", json={"invitationCode": invitation["invitationCode"]}
    )

    response = await client.put(f"/education/alumni/{invitation['id']}/resend", headers=harvard_admin)

    assert response.status_code == 200
    assert response.json()["status"] == "invited"
    assert response.json()["rejectedAt"] is None


async def test_resend_refused_once_accepted(client, harvard_admin):
    invitation = (await _invite(client, harvard_admin)).json()
    await client.post(
        "/education/alumni/accept-invitation",
        json={"invitationCode": invitation["invitationCode"], "userId": "u1"},
    )

    response = await client.put(f"/education/alumni/{invitation['id']}/resend", headers=harvard_admin)
    assert response.status_code == 409


async def test_delete(client, harvard_admin):
    alumni_id = (await _invite(client, harvard_admin)).json()["id"]

    assert (await client.delete(f"/education/alumni/{alumni_id}", headers=harvard_admin)).status_code == 204
    assert (await client.delete(f"/education/alumni/{alumni_id}", headers=harvard_admin)).status_code == 404


async def test_list_filters_search_and_paginates(client, harvard_admin):
    for n in range(5):
        await _invite(client, harvard_admin, email=f"alum{n}@example.com", firstName=f"Alum{n}")
    await _invite(client, harvard_admin, email="zed@example.com", firstName="Zed", lastName="Quinn")

    body = (await client.get("/education/alumni?perPage=2&page=2", headers=harvard_admin)).json()
    assert body["pagination"] == {"page": 2, "perPage": 2, "total": 6, "totalPages": 3}
    assert [i["firstName"] for i in body["items"]] == ["Alum3", "Alum2"]

    body = (await client.get("/education/alumni?search=quinn", headers=harvard_admin)).json()
    assert [i["email"] for i in body["items"]] == ["zed@example.com"]

    body = (await client.get("/education/alumni?status=accepted", headers=harvard_admin)).json()
    assert body["items"] == []

    body = (await client.get("/education/alumni?perPage=500", headers=harvard_admin)).json()
    assert body["pagination"]["perPage"] == 100


@pytest.mark.parametrize("code, status_code", [("", 422), ("x" * 31, 404), ("é" * 32, 404)])
async def test_accept_with_unknown_code(client, code, status_code):
    response = await client.post(
        "/education/alumni/accept-invitation", json={"invitationCode": code, "userId": "u"}
    )
    assert response.status_code == status_code
