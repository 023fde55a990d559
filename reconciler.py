"""Identity reconciliation: link contacts that share an email or phone number."""

from dataclasses import dataclass, field
from typing import List, Optional

from db_models import Contact, ContactResponse, LinkPrecedence, PrimaryContact
from db_setup import ContactStore, ContactTransaction
from errors import InvalidInput
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class MergePlan:
    """Fold several identity groups into the one led by the oldest primary."""

    true_primary: PrimaryContact
    demoted: List[PrimaryContact] = field(default_factory=list)

    @classmethod
    def from_primaries(cls, primaries: List[PrimaryContact]) -> "MergePlan":
        oldest = min(primaries, key=lambda c: (c.createdAt, c.id))
        return cls(oldest, [c for c in primaries if c.id != oldest.id])

    def apply(self, tx: ContactTransaction) -> None:
        for other in self.demoted:
            tx.update_to_secondary(other.id, self.true_primary.id)
            relinked = tx.relink_secondaries(other.id, self.true_primary.id)
            logger.info(
                "Merged contact group",
                extra={
                    "primary_id": self.true_primary.id,
                    "demoted_id": other.id,
                    "relinked": relinked,
                },
            )


class IdentityReconciler:
    """Resolves an (email, phone) pair to a consolidated identity.

    Each call is one unit of work against the injected store: the lookup,
    any merge, any new contact and the final read all happen inside a single
    transaction, so a failure part-way leaves the store untouched.
    """

    def __init__(self, store: ContactStore):
        self.store = store

    def resolve(self, email: Optional[str] = None, phone: Optional[str] = None) -> ContactResponse:
        email = _present(email)
        phone = _present(phone)
        if not email and not phone:
            raise InvalidInput("At least one of email or phoneNumber must be provided")

        with self.store.transaction() as tx:
            return self._resolve(tx, email, phone)

    def _resolve(self, tx: ContactTransaction, email, phone) -> ContactResponse:
        matches = tx.find_contacts(email, phone)

        primaries = []
        if matches:
            primary_ids = []
            for contact in matches:
                primary_id = contact.id if contact.linkedId is None else contact.linkedId
                if primary_id not in primary_ids:
                    primary_ids.append(primary_id)
            # a secondary whose primary was soft-deleted contributes no group
            primaries = [
                c for c in tx.get_contacts_by_ids(primary_ids)
                if c.linkPrecedence == LinkPrecedence.PRIMARY.value
            ]

        if not primaries:
            contact = tx.create_contact(email, phone, None, LinkPrecedence.PRIMARY)
            logger.info("Created primary contact", extra={"contact_id": contact.id})
            return format_response(contact, [])

        plan = MergePlan.from_primaries(primaries)
        if plan.demoted:
            plan.apply(tx)
        true_primary = plan.true_primary

        if email and phone and has_new_info(tx.get_all_linked_contacts(true_primary.id), email, phone):
            contact = tx.create_contact(email, phone, true_primary.id, LinkPrecedence.SECONDARY)
            logger.info(
                "Created secondary contact",
                extra={"contact_id": contact.id, "primary_id": true_primary.id},
            )

        group = tx.get_all_linked_contacts(true_primary.id)
        secondaries = [c for c in group if c.id != true_primary.id]
        return format_response(true_primary, secondaries)


def _present(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value


def has_new_info(group: List[Contact], email: str, phone: str) -> bool:
    """Whether (email, phone) should be recorded as a new secondary of group.

    The exact pair must be absent from the group and at least one of the two
    values must be unknown to it.
    """
    known_emails = {c.email for c in group if c.email is not None}
    known_phones = {c.phoneNumber for c in group if c.phoneNumber is not None}
    exact_match = any(c.email == email and c.phoneNumber == phone for c in group)
    novel = email not in known_emails or phone not in known_phones
    return novel and not exact_match


def format_response(primary: Contact, secondaries: List[Contact]) -> ContactResponse:
    """Consolidate a group, primary's values first, secondaries oldest first."""
    emails = []
    phone_numbers = []
    secondary_ids = []

    if primary.email:
        emails.append(primary.email)
    if primary.phoneNumber:
        phone_numbers.append(primary.phoneNumber)

    for contact in secondaries:
        if contact.email and contact.email not in emails:
            emails.append(contact.email)
        if contact.phoneNumber and contact.phoneNumber not in phone_numbers:
            phone_numbers.append(contact.phoneNumber)
        secondary_ids.append(contact.id)

    return ContactResponse(
        primaryContatctId=primary.id,
        emails=emails,
        phoneNumbers=phone_numbers,
        secondaryContactIds=secondary_ids,
    )
