from tests.conftest import load_bot, load_restaurant

PHONE = "+966511112222"


def _start(client, owner, phone=PHONE, **extra):
    body = {"phone": phone, "restaurantId": owner["restaurant_id"], **extra}
    return client.post("/api/onboarding/whatsapp/start", json=body)


def test_status_without_bot(client, owner):
    r = client.get("/api/onboarding/whatsapp")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["bot"] is None
    assert body["is_shared"] is False


def test_requires_session_cookie(anon_client):
    r = anon_client.get("/api/onboarding/whatsapp")
    assert r.status_code == 401
    assert r.json() == {"success": False, "error": "Unauthorized"}


def test_unknown_session_user(anon_client):
    anon_client.cookies.set("user-phone", "%2B966599999999")
    r = anon_client.get("/api/onboarding/whatsapp")
    assert r.status_code == 404
    assert r.json()["error"] == "User not found"


def test_start_sends_otp_and_marks_verifying(client, owner, senders):
    r = _start(client, owner, profile={"name": "Sufrah Grill", "about": "Best grill in town"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["has_verification"] is True
    assert body["message"] == "OTP sent. Check your phone."

    bot = body["bot"]
    assert bot["status"] == "VERIFYING"
    assert bot["whatsapp_number"] == PHONE
    assert bot["sender_sid"].startswith("XE")
    assert bot["verification_sid"].startswith("VE")
    assert bot["waba_id"] == "123456789012345"
    assert bot["name"] == "Sufrah Grill"
    assert bot["restaurant_name"] == "Sufrah Test Kitchen"
    assert bot["verified_at"] is None
    assert bot["error_message"] is None
    assert "auth_token" not in bot
    assert senders.verification_requests(bot["sender_sid"]) == ["sms"]


def test_start_uses_users_restaurant_when_id_omitted(client, owner):
    r = client.post("/api/onboarding/whatsapp/start", json={"phone": PHONE})
    assert r.status_code == 200
    assert r.json()["bot"]["restaurant_id"] == owner["restaurant_id"]
    assert r.json()["bot"]["name"] == "Sufrah Test Kitchen"


def test_start_rejects_invalid_phone(client, owner):
    r = _start(client, owner, phone="0511112222")
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "Invalid phone format"}
    assert load_bot(owner["restaurant_id"]) is None


def test_start_for_foreign_restaurant_is_forbidden(client, owner, other_owner):
    r = client.post(
        "/api/onboarding/whatsapp/start",
        json={"phone": PHONE, "restaurantId": other_owner["restaurant_id"]},
    )
    assert r.status_code == 403
    assert load_bot(other_owner["restaurant_id"]) is None


def test_start_with_unknown_restaurant(client, owner):
    r = client.post(
        "/api/onboarding/whatsapp/start",
        json={"phone": PHONE, "restaurantId": "does-not-exist"},
    )
    assert r.status_code == 404
    assert r.json()["error"] == "Restaurant not found"


def test_start_already_registered_number(client, owner, senders):
    assert _start(client, owner).status_code == 200

    r = _start(client, owner)
    assert r.status_code == 400
    assert "already registered" in r.json()["error"]
    # The existing bot is left untouched
    assert load_bot(owner["restaurant_id"]).status.value == "VERIFYING"


def test_start_when_sender_not_ready_yet(client, owner, senders, monkeypatch):
    monkeypatch.setattr(senders, "ready_after_polls", 10)

    r = _start(client, owner)
    assert r.status_code == 200
    body = r.json()
    assert body["has_verification"] is False
    assert body["message"] == "Sender created. Verification will be available shortly."
    assert body["bot"]["status"] == "VERIFYING"
    assert body["bot"]["verification_sid"] is None


def test_status_requests_otp_once_sender_is_ready(client, owner, senders, monkeypatch):
    monkeypatch.setattr(senders, "ready_after_polls", 10)
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]

    # Still creating: nothing changes
    r = client.get("/api/onboarding/whatsapp")
    assert r.json()["bot"]["verification_sid"] is None

    senders.set_status(sender_sid, "UNVERIFIED")
    r = client.get("/api/onboarding/whatsapp")
    bot = r.json()["bot"]
    assert bot["status"] == "VERIFYING"
    assert bot["verification_sid"].startswith("VE")
    assert senders.verification_requests(sender_sid) == ["sms"]

    # A second read does not ask for another OTP
    client.get("/api/onboarding/whatsapp")
    assert senders.verification_requests(sender_sid) == ["sms"]


def test_status_activates_online_sender(client, owner, senders, notifications):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    senders.set_status(sender_sid, "ONLINE")

    r = client.get("/api/onboarding/whatsapp", params={"restaurantId": owner["restaurant_id"]})
    bot = r.json()["bot"]
    assert bot["status"] == "ACTIVE"
    assert bot["verified_at"] is not None
    assert len(notifications.sent) == 1
    assert notifications.sent[0]["to"] == owner["phone"]


def test_status_marks_failed_sender(client, owner, senders):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    senders.set_status(sender_sid, "FAILED")

    bot = client.get("/api/onboarding/whatsapp").json()["bot"]
    assert bot["status"] == "FAILED"
    assert bot["error_message"] == "Sender registration failed at provider"


def test_status_keeps_state_when_twilio_unreachable(client, owner, senders):
    _start(client, owner)
    senders.reset()

    r = client.get("/api/onboarding/whatsapp")
    assert r.status_code == 200
    assert r.json()["bot"]["status"] == "VERIFYING"


def test_verify_activates_bot(client, owner, notifications):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]

    r = client.post(
        "/api/onboarding/whatsapp/verify",
        json={"senderSid": sender_sid, "code": "123456"},
    )
    assert r.status_code == 200, r.text
    bot = r.json()["bot"]
    assert bot["status"] == "ACTIVE"
    assert bot["verified_at"] is not None
    assert bot["error_message"] is None
    assert "connected" in notifications.sent[0]["body"]


def test_verify_wrong_code_marks_failed(client, owner, notifications):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]

    r = client.post(
        "/api/onboarding/whatsapp/verify",
        json={"sender_sid": sender_sid, "code": "000000"},
    )
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": "Invalid verification code"}

    bot = load_bot(owner["restaurant_id"])
    assert bot.status.value == "FAILED"
    assert bot.error_message == "Invalid verification code"
    assert bot.verified_at is None
    assert len(notifications.sent) == 1


def test_verify_short_code_rejected(client, owner):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    r = client.post("/api/onboarding/whatsapp/verify", json={"senderSid": sender_sid, "code": "12"})
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_verify_unknown_sender(client, owner):
    r = client.post("/api/onboarding/whatsapp/verify", json={"senderSid": "XEnope", "code": "123456"})
    assert r.status_code == 404
    assert r.json()["error"] == "Sender not found"


def test_verify_foreign_sender_is_forbidden(client, owner, other_owner):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    client.cookies.set("user-phone", "%2B966500000002")

    r = client.post("/api/onboarding/whatsapp/verify", json={"senderSid": sender_sid, "code": "123456"})
    assert r.status_code == 403
    assert load_bot(owner["restaurant_id"]).status.value == "VERIFYING"


def test_resend_otp_by_voice(client, owner, senders):
    start = _start(client, owner).json()["bot"]
    sender_sid = start["sender_sid"]

    r = client.post(
        "/api/onboarding/whatsapp/resend-otp",
        json={"senderSid": sender_sid, "method": "voice"},
    )
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "OTP sent via call"}
    assert senders.verification_requests(sender_sid) == ["sms", "call"]

    bot = load_bot(owner["restaurant_id"])
    assert bot.verification_sid != start["verification_sid"]


def test_resend_otp_defaults_to_sms(client, owner):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    r = client.post("/api/onboarding/whatsapp/resend-otp", json={"senderSid": sender_sid})
    assert r.json()["message"] == "OTP sent via SMS"


def test_resend_otp_rejects_unknown_method(client, owner):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    r = client.post(
        "/api/onboarding/whatsapp/resend-otp",
        json={"senderSid": sender_sid, "method": "email"},
    )
    assert r.status_code == 400


def test_cancel_deletes_bot(client, owner):
    _start(client, owner)

    r = client.post("/api/onboarding/whatsapp/cancel", json={"restaurantId": owner["restaurant_id"]})
    assert r.status_code == 200
    assert r.json()["message"] == "Connection cancelled. You can now start over."
    assert load_bot(owner["restaurant_id"]) is None


def test_cancel_foreign_restaurant(client, owner, other_owner):
    r = client.post("/api/onboarding/whatsapp/cancel", json={"restaurantId": other_owner["restaurant_id"]})
    assert r.status_code == 403
    assert r.json()["error"] == "Restaurant not found or access denied"


def test_delink_returns_bot_to_pending(client, owner):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    client.post("/api/onboarding/whatsapp/verify", json={"senderSid": sender_sid, "code": "123456"})

    r = client.post("/api/onboarding/whatsapp/delink", json={"restaurantId": owner["restaurant_id"]})
    assert r.status_code == 200
    bot = r.json()["bot"]
    assert bot["status"] == "PENDING"
    assert bot["whatsapp_number"] is None
    assert bot["sender_sid"] is None
    assert bot["verification_sid"] is None
    assert bot["waba_id"] is None
    assert bot["verified_at"] is None
    assert bot["account_sid"] == "AC00000000000000000000000000000000"
    assert load_restaurant(owner["restaurant_id"]).whatsapp_number is None


def test_delink_without_bot(client, owner):
    r = client.post("/api/onboarding/whatsapp/delink", json={"restaurantId": owner["restaurant_id"]})
    assert r.status_code == 404
    assert r.json()["error"] == "No bot to delink"


def test_use_existing_attaches_shared_number(client, owner):
    r = client.post("/api/onboarding/whatsapp/use-existing", json={"restaurantId": owner["restaurant_id"]})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["bot"]["status"] == "ACTIVE"
    assert body["bot"]["whatsapp_number"] == "+14155238886"
    assert body["bot"]["sender_sid"] is None
    assert "+14155238886" in body["message"]
    assert load_restaurant(owner["restaurant_id"]).whatsapp_number == "+14155238886"

    status = client.get("/api/onboarding/whatsapp").json()
    assert status["is_shared"] is True


def test_use_existing_without_shared_number(client, owner, monkeypatch):
    from sufrah.core.config import get_settings

    monkeypatch.setattr(get_settings(), "twilio_whatsapp_from", None)
    r = client.post("/api/onboarding/whatsapp/use-existing", json={"restaurantId": owner["restaurant_id"]})
    assert r.status_code == 500
    assert r.json()["error"] == "WhatsApp configuration missing"


def test_save_credentials_approved(client, owner, notifications):
    r = client.post(
        "/api/onboarding/whatsapp/save-credentials",
        json={
            "restaurantId": owner["restaurant_id"],
            "wabaId": "998877",
            "whatsappNumber": "+966533334444",
            "senderSid": "XEexternal",
            "status": "approved",
        },
    )
    assert r.status_code == 200, r.text
    bot = r.json()["bot"]
    assert bot["status"] == "ACTIVE"
    assert bot["sender_sid"] == "XEexternal"
    assert bot["waba_id"] == "998877"
    assert bot["verification_sid"] is None
    assert load_restaurant(owner["restaurant_id"]).whatsapp_number == "+966533334444"
    assert len(notifications.sent) == 1


def test_save_credentials_rejected(client, owner):
    r = client.post(
        "/api/onboarding/whatsapp/save-credentials",
        json={
            "restaurantId": owner["restaurant_id"],
            "wabaId": "998877",
            "whatsappNumber": "+966533334444",
            "senderSid": "XEexternal",
            "status": "rejected",
        },
    )
    bot = r.json()["bot"]
    assert bot["status"] == "FAILED"
    assert bot["error_message"] == "WhatsApp connection was rejected by Meta/Twilio."


def test_save_credentials_prefers_twilio_status(client, owner, senders):
    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    senders.set_status(sender_sid, "ONLINE")

    r = client.post(
        "/api/onboarding/whatsapp/save-credentials",
        json={
            "restaurantId": owner["restaurant_id"],
            "wabaId": "123456789012345",
            "whatsappNumber": PHONE,
            "senderSid": sender_sid,
            "status": "pending",
        },
    )
    assert r.json()["bot"]["status"] == "ACTIVE"


def test_shared_senders_lists_unassigned_active_bots(client, owner, bot_api):
    bot_api.add_bot({"id": "bot-1", "name": "Shared A", "whatsappNumber": "+966555000001", "isActive": True, "restaurantId": None})
    bot_api.add_bot({"id": "bot-2", "name": "Taken", "whatsappNumber": "+966555000002", "isActive": True, "restaurantId": "r-9"})
    bot_api.add_bot({"id": "bot-3", "name": "Off", "whatsappNumber": "+966555000003", "isActive": False, "restaurantId": None})

    r = client.get("/api/onboarding/shared-senders")
    assert r.status_code == 200
    assert [s["id"] for s in r.json()["senders"]] == ["bot-1"]


def test_link_sender(client, owner, bot_api):
    bot_api.add_bot({
        "id": "bot-1",
        "name": "Shared A",
        "restaurantName": "Shared A Kitchen",
        "whatsappNumber": "whatsapp:966555000001",
        "accountSid": "ACshared",
        "senderSid": "XEshared",
        "wabaId": "555",
        "isActive": True,
        "restaurantId": None,
    })

    r = client.post("/api/onboarding/link-sender", json={"botId": "bot-1"})
    assert r.status_code == 200, r.text
    bot = r.json()["bot"]
    assert bot["status"] == "ACTIVE"
    assert bot["whatsapp_number"] == "+966555000001"
    assert bot["sender_sid"] == "XEshared"
    assert bot["account_sid"] == "ACshared"
    assert load_restaurant(owner["restaurant_id"]).whatsapp_number == "+966555000001"

    remaining = client.get("/api/onboarding/shared-senders").json()["senders"]
    assert remaining == []


def test_link_unknown_sender(client, owner):
    r = client.post("/api/onboarding/link-sender", json={"botId": "missing"})
    assert r.status_code == 404
    assert r.json()["success"] is False


def _failing_create(error):
    async def create_sender(phone, profile, waba_id, webhook=None):
        raise error

    return create_sender


def test_start_first_sender_must_come_from_console(client, owner, senders, monkeypatch):
    from sufrah.services.senders import SenderApiError

    monkeypatch.setattr(
        senders,
        "create_sender",
        _failing_create(SenderApiError("Create sender in Console first", status_code=400, error_code=63100)),
    )

    r = _start(client, owner)
    assert r.status_code == 400
    assert "Twilio Console" in r.json()["error"]
    assert load_bot(owner["restaurant_id"]) is None


def test_start_upstream_failure_marks_existing_bot_failed(client, owner, senders, monkeypatch):
    from sufrah.services.senders import SenderApiError

    _start(client, owner)
    monkeypatch.setattr(
        senders,
        "create_sender",
        _failing_create(SenderApiError("Service unavailable", status_code=503)),
    )

    r = _start(client, owner, phone="+966511113333")
    assert r.status_code == 500
    assert r.json()["error"] == "Service unavailable"

    bot = load_bot(owner["restaurant_id"])
    assert bot.status.value == "FAILED"
    assert bot.error_message == "Service unavailable"
    assert bot.whatsapp_number == PHONE


def test_start_without_waba_marks_existing_bot_failed(client, owner, monkeypatch):
    from sufrah.core.config import get_settings

    _start(client, owner)
    monkeypatch.setattr(get_settings(), "twilio_waba_id", None)

    r = _start(client, owner, phone="+966511113333")
    assert r.status_code == 500
    assert "TWILIO_WABA_ID" in r.json()["error"]
    assert load_bot(owner["restaurant_id"]).status.value == "FAILED"


def test_link_sender_when_read_back_fails(client, owner, bot_api, monkeypatch):
    from sufrah.services.bot_api import BotApiError

    bot_api.add_bot({"id": "bot-1", "isActive": True, "restaurantId": None})

    async def get_bot(bot_id):
        raise BotApiError("Bot service timeout", status_code=504)

    monkeypatch.setattr(bot_api, "get_bot", get_bot)

    r = client.post("/api/onboarding/link-sender", json={"botId": "bot-1"})
    assert r.status_code == 200
    assert r.json() == {"success": True, "bot": None, "message": "Sender linked."}
    assert load_bot(owner["restaurant_id"]) is None


def test_verify_succeeds_when_owner_sms_cannot_be_sent(client, owner, monkeypatch):
    from types import SimpleNamespace

    from sufrah.services.notifications import RealNotificationService

    def create(**kwargs):
        raise ConnectionError("network down")

    sms = RealNotificationService()
    sms.twilio_client = SimpleNamespace(messages=SimpleNamespace(create=create))
    sms.twilio_from_number = "+14155550100"
    monkeypatch.setattr("sufrah.services.onboarding.get_notification_service", lambda: sms)

    sender_sid = _start(client, owner).json()["bot"]["sender_sid"]
    r = client.post("/api/onboarding/whatsapp/verify", json={"senderSid": sender_sid, "code": "123456"})

    assert r.status_code == 200
    assert r.json()["bot"]["status"] == "ACTIVE"


def test_transition_survives_notification_service_crash(client, owner, notifications, monkeypatch):
    async def send_sms(to_phone, message):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(notifications, "send_sms", send_sms)

    r = client.post("/api/onboarding/whatsapp/use-existing", json={"restaurantId": owner["restaurant_id"]})
    assert r.status_code == 200
    assert load_bot(owner["restaurant_id"]).status.value == "ACTIVE"
