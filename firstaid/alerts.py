"""Emergency contacts and the alert message sent to them.

A user keeps up to ``MAX_CONTACTS`` contacts, marks which ones should be
notified, and sends them a text carrying a map link to their last known
location (or a fallback text when the location is unavailable). Contacts are
stored as a single Firestore document per user.
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

MAX_CONTACTS = 3

ALERT_HEADER = "🚨 Emergency Alert 🚨"
ALERT_INTRO = "Hi! This is an urgent message sent through SwiftAidAI."
ALERT_CHOSEN = "I may need your help right now and have chosen you as my emergency contact."
LOCATION_NOT_SHARED = (
    f"{ALERT_HEADER}\n\n{ALERT_INTRO}\n\n{ALERT_CHOSEN}\n\n"
    "Unfortunately, my location couldn't be shared. "
    "Please reach out to me as soon as possible to make sure I'm okay!"
)
LOCATION_FAILED = (
    f"{ALERT_HEADER}\n\n{ALERT_INTRO}\n\n"
    "I couldn't determine my exact location right now. Please reach out to check if I'm okay!"
)
LOCATION_MISSING = f"{ALERT_HEADER}\n\nHi! We had trouble getting the location. Please check on me when you can!"
NO_CONTACTS = (
    "You haven't added any emergency contacts yet. Would you like to add contacts "
    "who will be notified in case of an emergency?"
)
NONE_SELECTED = "Select at least one emergency contact to notify."
CONFIRM_TITLE = "Send Emergency Alert"
CONFIRM_SEND = "This will send your location and vital signs to your emergency contacts."

Location = Tuple[float, float]


class LocationStatus(str, Enum):
    """How the location lookup ended when no coordinate is available."""

    DENIED = "denied"
    FAILED = "failed"
    MISSING = "missing"


class ContactLimitReached(ValueError):
    pass


class NoRecipients(RuntimeError):
    pass


class EmergencyContact(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(min_length=1)
    phone_number: str = Field(min_length=1)
    is_selected: bool = True

    model_config = {"extra": "forbid"}


class EmergencyAlert(BaseModel):
    body: str
    recipients: List[str]
    location_shared: bool

    model_config = {"extra": "forbid", "frozen": True}


class ContactStore(Protocol):
    async def load_emergency_contacts(self) -> List[EmergencyContact]: ...

    async def save_emergency_contacts(self, contacts: List[EmergencyContact]) -> None: ...


class MessageSender(Protocol):
    def send_text(self, recipients: List[str], body: str) -> None: ...


def maps_link(location: Location) -> str:
    lat, lon = location
    return f"https://www.google.com/maps?q={lat},{lon}"


def alert_message(location: Optional[Location] = None, status: LocationStatus = LocationStatus.DENIED) -> str:
    if location is not None:
        return (
            f"{ALERT_HEADER}\n\n{ALERT_INTRO}\n\n{ALERT_CHOSEN}\n\n"
            f"You can find my last known location here:\n{maps_link(location)}\n\n"
            "Please check on me when you can!"
        )
    if status is LocationStatus.FAILED:
        return LOCATION_FAILED
    if status is LocationStatus.MISSING:
        return LOCATION_MISSING
    return LOCATION_NOT_SHARED


class ContactBook:
    """The user's emergency contacts, in the order they were added."""

    def __init__(self, contacts: Optional[List[EmergencyContact]] = None, max_contacts: int = MAX_CONTACTS):
        self.max_contacts = max_contacts
        self.contacts: List[EmergencyContact] = list(contacts or [])[:max_contacts]

    def __len__(self) -> int:
        return len(self.contacts)

    @property
    def can_add(self) -> bool:
        return len(self.contacts) < self.max_contacts

    def add(self, name: str, phone_number: str, selected: bool = True) -> EmergencyContact:
        if not self.can_add:
            raise ContactLimitReached(f"at most {self.max_contacts} emergency contacts")
        contact = EmergencyContact(name=name, phone_number=phone_number, is_selected=selected)
        self.contacts.append(contact)
        return contact

    def get(self, contact_id: str) -> EmergencyContact:
        for c in self.contacts:
            if c.id == contact_id:
                return c
        raise KeyError(f"no emergency contact {contact_id}")

    def remove(self, contact_id: str) -> EmergencyContact:
        contact = self.get(contact_id)
        self.contacts.remove(contact)
        return contact

    def toggle(self, contact_id: str) -> bool:
        contact = self.get(contact_id)
        contact.is_selected = not contact.is_selected
        return contact.is_selected

    def selected(self) -> List[EmergencyContact]:
        return [c for c in self.contacts if c.is_selected]

    def prepare_alert(
        self, location: Optional[Location] = None, status: LocationStatus = LocationStatus.DENIED
    ) -> EmergencyAlert:
        if not self.contacts:
            raise NoRecipients(NO_CONTACTS)
        recipients = [c.phone_number for c in self.selected()]
        if not recipients:
            raise NoRecipients(NONE_SELECTED)
        return EmergencyAlert(
            body=alert_message(location, status),
            recipients=recipients,
            location_shared=location is not None,
        )

    def send_alert(
        self,
        sender: MessageSender,
        location: Optional[Location] = None,
        status: LocationStatus = LocationStatus.DENIED,
    ) -> EmergencyAlert:
        alert = self.prepare_alert(location, status)
        sender.send_text(alert.recipients, alert.body)
        logger.info("emergency alert sent to %d contact(s)", len(alert.recipients))
        return alert

    async def load(self, store: ContactStore) -> None:
        self.contacts = (await store.load_emergency_contacts())[: self.max_contacts]

    async def save(self, store: ContactStore) -> None:
        await store.save_emergency_contacts(self.contacts)


# Firestore document codec: {"contacts": [{id, name, phoneNumber, isSelected}, ...]}


def contacts_to_document(contacts: List[EmergencyContact]) -> Dict[str, Any]:
    values = [
        {
            "mapValue": {
                "fields": {
                    "id": {"stringValue": c.id},
                    "name": {"stringValue": c.name},
                    "phoneNumber": {"stringValue": c.phone_number},
                    "isSelected": {"booleanValue": c.is_selected},
                }
            }
        }
        for c in contacts
    ]
    return {"fields": {"contacts": {"arrayValue": {"values": values}}}}


def contacts_from_document(doc: Dict[str, Any]) -> List[EmergencyContact]:
    values = doc.get("fields", {}).get("contacts", {}).get("arrayValue", {}).get("values", [])
    out: List[EmergencyContact] = []
    for v in values:
        fields = v.get("mapValue", {}).get("fields", {})
        data = {
            "name": fields.get("name", {}).get("stringValue"),
            "phone_number": fields.get("phoneNumber", {}).get("stringValue"),
            "is_selected": fields.get("isSelected", {}).get("booleanValue"),
        }
        if "id" in fields:
            data["id"] = fields["id"].get("stringValue")
        try:
            out.append(EmergencyContact(**data))
        except ValidationError as e:
            logger.warning("skipping malformed emergency contact: %s", e.errors()[0]["msg"])
    return out
