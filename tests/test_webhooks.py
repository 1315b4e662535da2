import json

import stripe

from cloudus.models import AuditLog, Booking, BookingStatus, PayableKind, Payment, PaymentStatus, Provider
from cloudus.ozow_service import NOTIFY_HASH_FIELDS, ozow_hash
from cloudus.paystack_service import paystack_signature


def _status(db, payment_id):
    db.expire_all()
    return db.get(Payment, payment_id).status


# --- Ozow ---

def _ozow_notification(settings, reference, status="COMPLETE", **overrides):
    fields = {
        "SiteCode": settings.ozow.site_code,
        "TransactionId": "ozow-txn-1",
        "TransactionReference": reference,
        "Amount": "300.00",
        "Status": status,
        "CurrencyCode": "ZAR",
        "IsTest": "true",
    }
    fields.update(overrides)
    fields["HashCheck"] = ozow_hash({k: fields.get(k, "") for k in NOTIFY_HASH_FIELDS}, settings.ozow.private_key)
    return fields


def test_ozow_complete_marks_payment_paid(client, db, settings, make_milestone, make_payment):
    milestone_id = make_milestone()
    payment_id = make_payment(PayableKind.PROJECT, milestone_id, provider=Provider.OZOW,
                              provider_ref="proj-ref-1")

    response = client.post("/webhooks/ozow", json=_ozow_notification(settings, "proj-ref-1"))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert _status(db, payment_id) == PaymentStatus.PAID
    assert db.query(AuditLog).filter_by(payment_id=payment_id, action="payment.paid").count() == 1


def test_ozow_hash_is_case_insensitive(client, db, settings, make_milestone, make_payment):
    milestone_id = make_milestone()
    payment_id = make_payment(PayableKind.PROJECT, milestone_id, provider=Provider.OZOW,
                              provider_ref="proj-ref-1")
    notification = _ozow_notification(settings, "proj-ref-1")
    notification["HashCheck"] = notification["HashCheck"].upper()

    response = client.post("/webhooks/ozow", json=notification)

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.PAID


def test_ozow_form_encoded_notification(client, db, settings, make_milestone, make_payment):
    milestone_id = make_milestone()
    payment_id = make_payment(PayableKind.PROJECT, milestone_id, provider=Provider.OZOW,
                              provider_ref="proj-ref-2")

    response = client.post("/webhooks/ozow", data=_ozow_notification(settings, "proj-ref-2", status="Cancelled"))

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.FAILED


def test_ozow_wrong_hash_is_rejected(client, db, settings, make_milestone, make_payment):
    milestone_id = make_milestone()
    payment_id = make_payment(PayableKind.PROJECT, milestone_id, provider=Provider.OZOW,
                              provider_ref="proj-ref-1")
    notification = _ozow_notification(settings, "proj-ref-1")
    notification["Amount"] = "0.01"  # tampered after signing

    response = client.post("/webhooks/ozow", json=notification)

    assert response.status_code == 400
    assert response.json() == {"error": "Hash verification failed"}
    assert _status(db, payment_id) == PaymentStatus.PENDING
    assert db.query(AuditLog).count() == 0


def test_ozow_pending_status_is_ignored(client, db, settings, make_milestone, make_payment):
    milestone_id = make_milestone()
    payment_id = make_payment(PayableKind.PROJECT, milestone_id, provider=Provider.OZOW,
                              provider_ref="proj-ref-1")

    response = client.post("/webhooks/ozow", json=_ozow_notification(settings, "proj-ref-1", status="PendingInvestigation"))

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.PENDING


# --- Paystack ---

def _paystack_post(client, settings, payload, signature=None):
    body = json.dumps(payload).encode("utf-8")
    signature = signature or paystack_signature(settings.paystack.secret_key, body)
    return client.post(
        "/webhooks/paystack",
        content=body,
        headers={"x-paystack-signature": signature, "content-type": "application/json"},
    )


def _paystack_verify(mocker, status="success"):
    response = mocker.Mock()
    response.status_code = 200
    response.json.return_value = {"status": True, "message": "Verification successful", "data": {"status": status}}
    return mocker.patch("cloudus.paystack_service.requests.request", return_value=response)


def test_paystack_charge_success_confirms_booking(client, mocker, db, settings, make_booking, make_payment):
    booking_id = make_booking()
    payment_id = make_payment(PayableKind.BOOKING, booking_id, provider=Provider.PAYSTACK,
                              provider_ref="book-ref-1")
    verify = _paystack_verify(mocker)

    response = _paystack_post(client, settings, {
        "event": "charge.success",
        "data": {"status": "success", "reference": "book-ref-1", "receipt_number": "R-100",
                 "metadata": {"payment_id": payment_id}},
    })

    assert response.status_code == 200
    assert verify.call_args.args == ("GET", "https://paystack.test/transaction/verify/book-ref-1")

    db.expire_all()
    payment = db.get(Payment, payment_id)
    assert payment.status == PaymentStatus.PAID
    assert payment.receipt_url == "paystack-receipt:R-100"
    assert db.get(Booking, booking_id).status == BookingStatus.CONFIRMED


def test_paystack_verify_disagreement_keeps_pending(client, mocker, db, settings, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.PAYSTACK, provider_ref="ord-ref-1")
    _paystack_verify(mocker, status="abandoned")

    response = _paystack_post(client, settings, {
        "event": "charge.success", "data": {"status": "success", "reference": "ord-ref-1"},
    })

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.PENDING


def test_paystack_failed_charge_cancels_booking(client, db, settings, make_booking, make_payment):
    booking_id = make_booking()
    payment_id = make_payment(PayableKind.BOOKING, booking_id, provider=Provider.PAYSTACK,
                              provider_ref="book-ref-2")

    response = _paystack_post(client, settings, {
        "event": "charge.failed", "data": {"status": "failed", "reference": "book-ref-2"},
    })

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.FAILED
    assert db.get(Booking, booking_id).status == BookingStatus.CANCELED


def test_paystack_invalid_signature(client, db, settings, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.PAYSTACK, provider_ref="ord-ref-1")

    response = _paystack_post(client, settings, {
        "event": "charge.success", "data": {"status": "success", "reference": "ord-ref-1"},
    }, signature="deadbeef")

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid Paystack signature"}
    assert _status(db, payment_id) == PaymentStatus.PENDING


def test_paystack_locates_payment_by_metadata(client, mocker, db, settings, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.PAYSTACK, provider_ref=None)
    _paystack_verify(mocker)

    _paystack_post(client, settings, {
        "event": "charge.success",
        "data": {"status": "success", "reference": "unknown-ref", "metadata": {"payment_id": payment_id}},
    })

    assert _status(db, payment_id) == PaymentStatus.PAID


# --- Stripe ---

def _stripe_event(event_type, obj):
    return {"id": "evt_test", "type": event_type, "data": {"object": obj}}


def test_stripe_success_is_idempotent(client, mocker, db, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.STRIPE, provider_ref="cs_test_123")
    mocker.patch("stripe.Webhook.construct_event", return_value=_stripe_event(
        "checkout.session.completed",
        {"id": "cs_test_123", "payment_status": "paid", "metadata": {"payment_id": payment_id}},
    ))

    for _ in range(2):
        response = client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "sig"})
        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert _status(db, payment_id) == PaymentStatus.PAID

    assert db.query(AuditLog).filter_by(payment_id=payment_id, action="payment.paid").count() == 1


def test_stripe_invalid_signature(client, mocker, db, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.STRIPE, provider_ref="cs_test_123")
    mocker.patch(
        "stripe.Webhook.construct_event",
        side_effect=stripe.SignatureVerificationError("Invalid", "sig"),
    )

    response = client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "invalid_sig"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature"}
    assert _status(db, payment_id) == PaymentStatus.PENDING


def test_stripe_missing_signature(client):
    response = client.post("/webhooks/stripe", content="raw_payload")

    assert response.status_code == 400


def test_stripe_irrelevant_event_is_acknowledged(client, mocker, db, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.STRIPE, provider_ref="cs_test_123")
    mocker.patch("stripe.Webhook.construct_event", return_value=_stripe_event(
        "customer.created", {"id": "cus_1"},
    ))

    response = client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "sig"})

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.PENDING


def test_stripe_declined_attempt_keeps_payment_pending(client, mocker, db, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.STRIPE, provider_ref="cs_test_123")
    mocker.patch("stripe.Webhook.construct_event", return_value=_stripe_event(
        "payment_intent.payment_failed", {"id": "pi_1", "metadata": {"payment_id": payment_id}},
    ))

    response = client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "sig"})

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.PENDING
    assert db.query(AuditLog).filter_by(payment_id=payment_id).count() == 0


def test_stripe_retry_after_decline_confirms_booking(client, mocker, db, make_booking, make_payment):
    booking_id = make_booking()
    payment_id = make_payment(PayableKind.BOOKING, booking_id, provider=Provider.STRIPE, provider_ref="cs_1")
    construct_event = mocker.patch("stripe.Webhook.construct_event")

    construct_event.return_value = _stripe_event(
        "payment_intent.payment_failed", {"id": "pi_1", "metadata": {"payment_id": payment_id}},
    )
    client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "sig"})

    construct_event.return_value = _stripe_event(
        "checkout.session.completed",
        {"id": "cs_1", "payment_status": "paid", "metadata": {"payment_id": payment_id}},
    )
    response = client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "sig"})

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.PAID
    assert db.get(Booking, booking_id).status == BookingStatus.CONFIRMED


def test_stripe_expired_session_fails_payment(client, mocker, db, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.STRIPE, provider_ref="cs_test_123")
    mocker.patch("stripe.Webhook.construct_event", return_value=_stripe_event(
        "checkout.session.expired", {"id": "cs_test_123"},
    ))

    client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "sig"})

    assert _status(db, payment_id) == PaymentStatus.FAILED


def test_paid_payment_never_reverts(client, mocker, db, make_order, make_payment):
    order_id = make_order()
    payment_id = make_payment(PayableKind.ORDER, order_id, provider=Provider.STRIPE,
                              provider_ref="cs_test_123", status=PaymentStatus.PAID)
    mocker.patch("stripe.Webhook.construct_event", return_value=_stripe_event(
        "checkout.session.expired", {"id": "cs_test_123"},
    ))

    response = client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "sig"})

    assert response.status_code == 200
    assert _status(db, payment_id) == PaymentStatus.PAID
    assert db.query(AuditLog).filter_by(payment_id=payment_id, action="payment.ignored").count() == 1


def test_webhook_for_unknown_payment(client, mocker):
    mocker.patch("stripe.Webhook.construct_event", return_value=_stripe_event(
        "checkout.session.completed", {"id": "cs_unknown", "payment_status": "paid"},
    ))

    response = client.post("/webhooks/stripe", content="raw_payload", headers={"stripe-signature": "sig"})

    assert response.status_code == 200
