from django.test import SimpleTestCase

from cfdi.exceptions import ConflictError
from cfdi.models import DocumentStatus
from cfdi.services.status import can_transition, ensure_transition


class StatusTransitionTests(SimpleTestCase):
    def test_allowed_transitions(self):
        self.assertTrue(can_transition(DocumentStatus.DRAFT, DocumentStatus.STAMPED))
        self.assertTrue(can_transition(DocumentStatus.STAMPED, DocumentStatus.CANCELED))

    def test_rejected_transitions(self):
        rejected = [
            (DocumentStatus.DRAFT, DocumentStatus.CANCELED),
            (DocumentStatus.DRAFT, DocumentStatus.DRAFT),
            (DocumentStatus.STAMPED, DocumentStatus.STAMPED),
            (DocumentStatus.STAMPED, DocumentStatus.DRAFT),
            (DocumentStatus.CANCELED, DocumentStatus.STAMPED),
            (DocumentStatus.CANCELED, DocumentStatus.DRAFT),
            (DocumentStatus.CANCELED, DocumentStatus.CANCELED),
        ]
        for current, target in rejected:
            with self.subTest(current=current, target=target):
                self.assertFalse(can_transition(current, target))
                with self.assertRaises(ConflictError):
                    ensure_transition(current, target)

    def test_conflict_messages(self):
        with self.assertRaisesMessage(ConflictError, "invoice is already stamped"):
            ensure_transition(DocumentStatus.STAMPED, DocumentStatus.STAMPED, document="invoice")
        with self.assertRaisesMessage(ConflictError, "payment is canceled and cannot change"):
            ensure_transition(DocumentStatus.CANCELED, DocumentStatus.STAMPED, document="payment")
        with self.assertRaisesMessage(ConflictError, "only stamped documents can be canceled"):
            ensure_transition(DocumentStatus.DRAFT, DocumentStatus.CANCELED)

    def test_conflict_maps_to_http_409(self):
        with self.assertRaises(ConflictError) as ctx:
            ensure_transition(DocumentStatus.CANCELED, DocumentStatus.CANCELED)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertFalse(ctx.exception.retryable)
