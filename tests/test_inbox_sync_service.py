import asyncio

from app.models import Contact, Conversation, Patient
from app.services.inbox_sync_service import handle_inbox_event


def _handle(db, clinic, event):
    return asyncio.run(handle_inbox_event(db, clinic, event))


class TestContactCreated:
    def test_contact_is_synced(self, db, clinic):
        result = _handle(
            db,
            clinic,
            {"event": "contact_created", "contact": {"id": 7, "name": "Maria", "phone_number": "+5511988887777"}},
        )

        assert result["success"] is True
        assert result["action"] == "contact_synced"
        assert result["phone"] == "11988887777"
        contact = db.query(Contact).one()
        assert contact.name == "Maria"

    def test_entity_at_top_level(self, db, clinic):
        result = _handle(db, clinic, {"event": "contact_created", "id": 7, "phone_number": "+5511988887777"})
        assert result["success"] is True
        assert db.query(Contact).one().name == "Contato 11988887777"

    def test_patient_is_linked(self, db, clinic):
        patient = Patient(clinic_id=clinic.id, name="Maria", phone="11988887777")
        db.add(patient)
        db.commit()

        result = _handle(
            db, clinic, {"event": "contact_created", "contact": {"name": "Maria", "phone_number": "5511988887777"}}
        )

        assert result["patient_id"] == str(patient.id)

    def test_missing_phone(self, db, clinic):
        result = _handle(db, clinic, {"event": "contact_created", "contact": {"id": 7, "name": "Maria"}})

        assert result["success"] is False
        assert result["code"] == "no_phone"
        assert db.query(Contact).count() == 0


class TestConversationCreated:
    def test_conversation_is_created_as_new_lead(self, db, clinic):
        event = {
            "event": "conversation_created",
            "conversation": {"id": 42, "meta": {"sender": {"phone_number": "+5511988887777", "name": "Maria"}}},
        }

        result = _handle(db, clinic, event)

        assert result["success"] is True
        assert result["action"] == "conversation_created"
        assert result["inbox_conversation_id"] == "42"
        conversation = db.query(Conversation).one()
        assert conversation.lead_status == "novo"
        assert conversation.inbox_conversation_id == "42"
        assert conversation.unread_count == 0

    def test_existing_conversation_is_linked(self, db, clinic, conversation):
        event = {
            "event": "conversation_created",
            "conversation": {"id": 43, "meta": {"sender": {"phone_number": "5511988887777"}}},
        }

        result = _handle(db, clinic, event)

        assert result["action"] == "conversation_linked"
        assert result["conversation_id"] == str(conversation.id)
        db.expire_all()
        assert db.query(Conversation).one().inbox_conversation_id == "43"

    def test_missing_conversation_payload(self, db, clinic):
        result = _handle(db, clinic, {"event": "conversation_created"})
        assert result == {
            "success": False,
            "error": "Conversation data not found",
            "code": "missing_conversation",
            "event": "conversation_created",
        }


def test_unhandled_event(db, clinic):
    assert _handle(db, clinic, {"event": "message_created"}) == {
        "success": True,
        "message": "Event not handled",
        "event": "message_created",
    }
