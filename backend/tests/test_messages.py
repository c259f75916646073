import pytest


def _send(client, org, who, **body):
    return client.post("/api/messages", headers=org["headers"][who], json=body)


def _token(org, who):
    return org["headers"][who]["Authorization"].split()[1]


def test_manager_posts_to_admin_channel(client, org):
    response = _send(client, org, "manager", toRole="admin", text="Weekly report is ready", clientId="tmp-1")
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["toRole"] == "admin"
    assert data["conversationId"] is None
    assert data["clientId"] == "tmp-1"
    assert data["from"]["name"] == "Majed Manager"

    feed = client.get("/api/messages?toRole=admin", headers=org["headers"]["admin"]).json()
    assert [m["text"] for m in feed["data"]] == ["Weekly report is ready"]
    assert feed["unreadCount"] == 1
    assert feed["hasMore"] is False


@pytest.mark.parametrize("body, message", [
    ({"toRole": "admin", "text": "   "}, "Message text is required"),
    ({"toRole": "admin", "text": "x" * 2001}, "Message text cannot exceed 2000 characters"),
    ({"toRole": "hr", "text": "hello"}, "Invalid toRole"),
    ({"toRole": "admin", "text": "hello", "participants": ["bogus"]}, "Invalid participants list"),
])
def test_send_validation(client, org, body, message):
    response = _send(client, org, "admin", **body)
    assert response.status_code == 400
    assert response.json()["message"] == message


def test_employee_cannot_broadcast(client, org):
    response = _send(client, org, "employee", toRole="admin", text="Hi all admins")
    assert response.status_code == 403
    response = _send(client, org, "employee", toRole="employee", text="Hi")
    assert response.status_code == 400
    assert response.json()["message"] == "Recipient required"


def test_feed_pagination_and_search(client, org):
    for i in range(3):
        _send(client, org, "manager", toRole="admin", text=f"update {i}")
    _send(client, org, "manager", toRole="admin", text="Budget approval needed")

    page = client.get("/api/messages?toRole=admin&limit=2", headers=org["headers"]["admin"]).json()
    assert len(page["data"]) == 2
    assert page["hasMore"] is True

    found = client.get("/api/messages?toRole=admin&search=budget", headers=org["headers"]["admin"]).json()
    assert [m["text"] for m in found["data"]] == ["Budget approval needed"]


def test_invalid_before(client, org):
    response = client.get("/api/messages?before=yesterday", headers=org["headers"]["admin"])
    assert response.status_code == 400


def test_channel_read_receipt(client, org):
    _send(client, org, "manager", toRole="admin", text="Please review")
    bad = client.post("/api/messages/read", headers=org["headers"]["admin"], json={"channelRole": "employee"})
    assert bad.status_code == 400

    ok = client.post("/api/messages/read", headers=org["headers"]["admin"], json={"channelRole": "admin"})
    assert ok.status_code == 200
    feed = client.get("/api/messages?toRole=admin", headers=org["headers"]["admin"]).json()
    assert feed["unreadCount"] == 0


def test_own_messages_are_not_unread(client, org):
    _send(client, org, "admin", toRole="admin", text="Note to self")
    feed = client.get("/api/messages?toRole=admin", headers=org["headers"]["admin"]).json()
    assert feed["unreadCount"] == 0


def test_employee_sees_only_own_messages_in_admin_channel(client, org):
    _send(client, org, "manager", toRole="admin", text="Managers only")
    feed = client.get("/api/messages?toRole=admin", headers=org["headers"]["employee"]).json()
    assert feed["data"] == []
    assert feed["unreadCount"] == 0


def test_conversation_flow(client, org):
    employee = org["users"]["employee"]
    colleague = org["users"]["colleague"]

    sent = _send(client, org, "employee", toRole="employee", text="Lunch?", participants=[str(colleague["_id"])])
    assert sent.status_code == 201
    conversation_id = sent.json()["data"]["conversationId"]
    assert conversation_id

    reply = _send(client, org, "colleague", toRole="employee", text="Sure", participants=[str(employee["_id"])])
    assert reply.json()["data"]["conversationId"] == conversation_id

    thread = client.get(f"/api/messages/{conversation_id}", headers=org["headers"]["colleague"]).json()
    assert [m["text"] for m in thread["data"]] == ["Lunch?", "Sure"]
    assert {p["_id"] for p in thread["conversation"]["participants"]} == {str(employee["_id"]), str(colleague["_id"])}

    listing = client.get(f"/api/messages/user/{colleague['_id']}", headers=org["headers"]["colleague"]).json()
    assert listing["data"][0]["_id"] == conversation_id
    assert listing["data"][0]["lastMessage"]["text"] == "Sure"
    assert listing["data"][0]["unreadCount"] == 1

    client.post(f"/api/messages/{conversation_id}/read", headers=org["headers"]["colleague"])
    listing = client.get(f"/api/messages/user/{colleague['_id']}", headers=org["headers"]["colleague"]).json()
    assert listing["data"][0]["unreadCount"] == 0


def test_direct_messages_stay_out_of_employee_feed(client, org):
    colleague = org["users"]["colleague"]
    _send(client, org, "employee", toRole="employee", text="Private note", participants=[str(colleague["_id"])])
    _send(client, org, "admin", toRole="employee", text="Office closes early today")

    feed = client.get("/api/messages?toRole=employee", headers=org["headers"]["outsider"]).json()
    assert [m["text"] for m in feed["data"]] == ["Office closes early today"]
    assert feed["unreadCount"] == 1


def test_conversation_access_is_limited_to_participants(client, org):
    colleague = org["users"]["colleague"]
    sent = _send(client, org, "employee", toRole="employee", text="Hi", participants=[str(colleague["_id"])])
    conversation_id = sent.json()["data"]["conversationId"]

    assert client.get(f"/api/messages/{conversation_id}", headers=org["headers"]["outsider"]).status_code == 403
    assert client.post(f"/api/messages/{conversation_id}/read", headers=org["headers"]["outsider"]).status_code == 403
    assert client.get("/api/messages/64b7f0c2a1b2c3d4e5f60718", headers=org["headers"]["employee"]).status_code == 404


def test_user_conversations_only_for_self_or_admin(client, org):
    colleague = org["users"]["colleague"]
    assert client.get(f"/api/messages/user/{colleague['_id']}", headers=org["headers"]["employee"]).status_code == 403
    assert client.get(f"/api/messages/user/{colleague['_id']}", headers=org["headers"]["admin"]).status_code == 200


def test_send_is_audited(client, org, db, run):
    sent = _send(client, org, "manager", toRole="admin", text="Audit me")
    entry = run(db["audit_logs"].find_one, {"target": "MESSAGE"})
    assert entry["targetId"] == sent.json()["data"]["_id"]


# --------------------------------------------------------------------------
# Realtime delivery
# --------------------------------------------------------------------------
def test_websocket_rejects_bad_token(client, org):
    from starlette.websockets import WebSocketDisconnect

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=bogus") as ws:
            ws.receive_json()
    assert exc.value.code == 4401


def test_role_room_receives_new_message_once(client, org):
    with client.websocket_connect(f"/ws?token={_token(org, 'admin')}") as ws:
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"

        _send(client, org, "manager", toRole="admin", text="Realtime hello")
        event = ws.receive_json()
        assert event["event"] == "message:new"
        assert event["data"]["text"] == "Realtime hello"

        # Nothing else queued for this socket
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"


def test_send_over_socket_with_ack(client, org):
    colleague = org["users"]["colleague"]
    with client.websocket_connect(f"/ws?token={_token(org, 'colleague')}") as receiver:
        receiver.send_json({"event": "ping"})
        receiver.receive_json()

        with client.websocket_connect(f"/ws?token={_token(org, 'employee')}") as sender:
            sender.send_json({
                "event": "message:send",
                "ackId": 7,
                "data": {"toRole": "employee", "text": "Over the socket", "participants": [str(colleague["_id"])]},
            })
            # The sender is in its own user room, so it sees the push before the ack
            pushed = sender.receive_json()
            ack = sender.receive_json()
            assert pushed["event"] == "message:new"
            assert ack == {"event": "ack", "ackId": 7, "data": {"ok": True, "data": ack["data"]["data"]}}

        delivered = receiver.receive_json()
        assert delivered["event"] == "message:new"
        assert delivered["data"]["text"] == "Over the socket"


def test_socket_errors_are_acked(client, org):
    with client.websocket_connect(f"/ws?token={_token(org, 'employee')}") as ws:
        ws.send_json({"event": "message:send", "ackId": "a1", "data": {"toRole": "admin", "text": "hi"}})
        ack = ws.receive_json()
        assert ack["ackId"] == "a1"
        assert ack["data"] == {"ok": False, "error": "Employees cannot broadcast to roles"}


@pytest.mark.parametrize("text", [123, ["hi"], {"body": "hi"}])
def test_socket_non_string_text_is_acked(client, org, text):
    with client.websocket_connect(f"/ws?token={_token(org, 'manager')}") as ws:
        ws.send_json({"event": "message:send", "ackId": "t1", "data": {"toRole": "admin", "text": text}})
        ack = ws.receive_json()
        assert ack == {"event": "ack", "ackId": "t1", "data": {"ok": False, "error": "Message text must be a string"}}

        # The socket is still usable afterwards
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"


def test_join_conversation_requires_participation(client, org):
    colleague = org["users"]["colleague"]
    sent = _send(client, org, "employee", toRole="employee", text="Hi", participants=[str(colleague["_id"])])
    conversation_id = sent.json()["data"]["conversationId"]

    with client.websocket_connect(f"/ws?token={_token(org, 'outsider')}") as ws:
        ws.send_json({"event": "joinConversation", "ackId": 1, "data": {"conversationId": conversation_id}})
        assert ws.receive_json()["data"] == {"ok": False, "error": "Access denied"}

    with client.websocket_connect(f"/ws?token={_token(org, 'employee')}") as ws:
        ws.send_json({"event": "joinConversation", "ackId": 2, "data": {"conversationId": conversation_id}})
        assert ws.receive_json()["data"] == {"ok": True}
