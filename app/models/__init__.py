from app.models.clinic import Clinic
from app.models.contact import Contact
from app.models.conversation import Conversation
from app.models.ingest_failure import IngestFailure
from app.models.message import Message
from app.models.patient import Patient, PatientPhone

__all__ = [
    "Clinic",
    "Contact",
    "Conversation",
    "Message",
    "Patient",
    "PatientPhone",
    "IngestFailure",
]
