"""Tests for renewal batches and subscription changes."""
from datetime import date
from decimal import Decimal

import pytest

import config
import db
import invoices
import members
import renewals
from mailer import GraphMailer, MailerNotConfigured
from models import SubscriptionChange

DD = config.DD_PAYMENT_METHOD


def no_sleep(_seconds):
    pass


def sent_rows(email_type=None):
    if email_type is None:
        return db.fetch_all("SELECT * FROM sent_emails ORDER BY id")
    return db.fetch_all("SELECT * FROM sent_emails WHERE email_type = ? ORDER BY id", (email_type,))


@pytest.fixture
def bacs_members(add_subscription, add_member):
    add_subscription("Full", 432)
    return [
        add_member(first_name="Ann", surname="Adams", email="ann@example.com"),
        add_member(first_name="Bob", surname="Brown", email="bob@example.com", default_payment_method="Over the Till"),
        add_member(first_name="Cat", surname="Clark", email="cat@example.com", default_payment_method="Cheque"),
    ]


@pytest.fixture
def dd_family(add_subscription, add_member):
    add_subscription("Full", 432)
    add_subscription("Junior", 20)
    payer = add_member(email="alan@example.com", default_payment_method=DD, direct_debit_member_id="DD1")
    junior = add_member(
        first_name="Jack", email="jack@example.com", category="Junior", national_id=None,
        date_of_birth="2011-02-02", default_payment_method=DD, family_payer_id=payer.id,
    )
    return payer, junior


class TestSendRenewals:

    def test_batches_until_nothing_remains(self, bacs_members, fake_mailer):
        first = renewals.send_renewals("bacs_renewal", 2026, fake_mailer, batch_size=2, sleep=no_sleep)
        assert (first.total, first.succeeded, first.failed, first.remaining) == (2, 2, 0, 1)

        second = renewals.send_renewals("bacs_renewal", 2026, fake_mailer, batch_size=2, sleep=no_sleep)
        assert (second.total, second.succeeded, second.remaining) == (1, 1, 0)

        third = renewals.send_renewals("bacs_renewal", 2026, fake_mailer, batch_size=2, sleep=no_sleep)
        assert third.total == 0
        assert len(fake_mailer.sent) == 3
        assert [r["status"] for r in sent_rows("bacs_renewal")] == ["sent", "sent", "sent"]

    def test_sent_in_surname_order_with_subject(self, bacs_members, fake_mailer):
        renewals.send_renewals("bacs_renewal", 2026, fake_mailer, sleep=no_sleep)
        assert [to for to, _, _ in fake_mailer.sent] == ["ann@example.com", "bob@example.com", "cat@example.com"]
        assert fake_mailer.sent[0][1] == "AVGC 2026 Membership Renewal - Payment Details"

    def test_delay_between_sends_only(self, bacs_members, fake_mailer):
        delays = []
        renewals.send_renewals("bacs_renewal", 2026, fake_mailer, delay=0.1, sleep=delays.append)
        assert delays == [0.1, 0.1]

    def test_failed_send_is_recorded_and_batch_continues(self, bacs_members, make_mailer):
        mailer = make_mailer(fail_for={"bob@example.com"})
        result = renewals.send_renewals("bacs_renewal", 2026, mailer, sleep=no_sleep)
        assert (result.succeeded, result.failed) == (2, 1)
        assert "Bob Brown (bob@example.com)" in result.errors[0]
        statuses = {r["email_address"]: r["status"] for r in sent_rows()}
        assert statuses["bob@example.com"] == "failed"

    def test_exception_from_mailer_is_contained(self, bacs_members, make_mailer):
        mailer = make_mailer(raise_for={"ann@example.com"})
        result = renewals.send_renewals("bacs_renewal", 2026, mailer, sleep=no_sleep)
        assert (result.succeeded, result.failed) == (2, 1)
        assert "connection reset" in result.errors[0]

    def test_failed_members_only_retried_on_request(self, bacs_members, make_mailer, fake_mailer):
        renewals.send_renewals("bacs_renewal", 2026, make_mailer(fail_for={"bob@example.com"}), sleep=no_sleep)

        again = renewals.send_renewals("bacs_renewal", 2026, fake_mailer, sleep=no_sleep)
        assert again.total == 0

        retry = renewals.send_renewals("bacs_renewal", 2026, fake_mailer, sleep=no_sleep, retry_failed=True)
        assert retry.succeeded == 1
        assert fake_mailer.sent[0][0] == "bob@example.com"

    def test_unconfigured_mailer_fails_loudly(self, bacs_members):
        with pytest.raises(MailerNotConfigured):
            renewals.send_renewals("bacs_renewal", 2026, GraphMailer(), sleep=no_sleep)

    def test_member_without_fee_counts_as_failed(self, add_member, fake_mailer, club_db):
        add_member(category="Mystery", email="m@example.com")
        result = renewals.send_renewals("bacs_renewal", 2026, fake_mailer, sleep=no_sleep)
        assert result.failed == 1
        assert "No fee for category Mystery" in result.errors[0]
        assert fake_mailer.sent == []

    def test_members_without_email_are_not_candidates(self, bacs_members, add_member, fake_mailer):
        add_member(first_name="Dan", surname="Dodd", email="")
        result = renewals.send_renewals("bacs_renewal", 2026, fake_mailer, sleep=no_sleep)
        assert result.total == 3

    def test_social_members_get_the_social_notice(self, bacs_members, add_subscription, add_member, fake_mailer):
        add_subscription("Social", 40)
        add_member(first_name="Sue", surname="Grey", email="sue@example.com", category="Social")
        bacs = renewals.send_renewals("bacs_renewal", 2026, fake_mailer, sleep=no_sleep)
        social = renewals.send_renewals("social_renewal", 2026, fake_mailer, sleep=no_sleep)
        assert bacs.total == 3
        assert social.total == 1
        assert fake_mailer.sent[-1][1] == "AVGC 2026 Social Membership Renewal"

    def test_dd_family_gets_one_consolidated_notice(self, dd_family, fake_mailer):
        payer, junior = dd_family
        result = renewals.send_renewals("dd_renewal", 2026, fake_mailer, sleep=no_sleep)
        assert result.total == 1
        [(to, subject, html)] = fake_mailer.sent
        assert to == payer.email
        assert subject == "AVGC 2026 Membership renewal"
        assert "Family Direct Debit Renewal Notice" in html
        assert "Jack Robson (Junior)" in html

    def test_unknown_renewal_type(self, club_db, fake_mailer):
        with pytest.raises(ValueError):
            renewals.send_renewals("carrier_pigeon", 2026, fake_mailer, sleep=no_sleep)


class TestGenerateRenewalInvoices:

    def test_invoices_members_who_were_sent(self, bacs_members, make_mailer):
        renewals.send_renewals("bacs_renewal", 2026, make_mailer(fail_for={"cat@example.com"}), sleep=no_sleep)
        result = renewals.generate_renewal_invoices("bacs_renewal", 2026)
        assert (result.total, result.succeeded, result.failed) == (2, 2, 0)
        cat = bacs_members[2]
        assert invoices.member_invoices(cat.id) == []
        assert members.get_member(bacs_members[0].id).account_balance == Decimal("450.50")

    def test_batches_and_then_stops(self, bacs_members, fake_mailer):
        renewals.send_renewals("bacs_renewal", 2026, fake_mailer, sleep=no_sleep)
        first = renewals.generate_renewal_invoices("bacs_renewal", 2026, batch_size=2)
        assert (first.succeeded, first.remaining) == (2, 1)
        second = renewals.generate_renewal_invoices("bacs_renewal", 2026, batch_size=2)
        assert (second.succeeded, second.remaining) == (1, 0)
        assert renewals.generate_renewal_invoices("bacs_renewal", 2026).total == 0

    def test_dd_dependants_invoiced_through_payer(self, dd_family, fake_mailer):
        payer, junior = dd_family
        renewals.send_renewals("dd_renewal", 2026, fake_mailer, sleep=no_sleep)
        result = renewals.generate_renewal_invoices("dd_renewal", 2026)
        assert result.succeeded == 2
        [junior_invoice] = invoices.member_invoices(junior.id)
        assert junior_invoice.status == "paid"
        assert junior_invoice.total == Decimal("20.00")
        assert members.get_member(payer.id).account_balance == Decimal("0.00")

    def test_social_dd_member_gets_subscription_only(self, add_subscription, add_member, fake_mailer):
        add_subscription("Social", 40)
        member = add_member(category="Social", default_payment_method=DD, locker_number="12")
        assert members.renewal_candidates("dd_renewal", 2026) == []
        assert renewals.send_renewals("social_renewal", 2026, fake_mailer, sleep=no_sleep).succeeded == 1

        result = renewals.generate_renewal_invoices("social_renewal", 2026)
        assert result.succeeded == 1
        [invoice] = invoices.member_invoices(member.id)
        assert [i.description for i in invoices.invoice_items(invoice.id)] == ["Social subscription"]

    def test_social_payer_does_not_invoice_dependants(self, add_subscription, add_member, fake_mailer):
        add_subscription("Social", 40)
        add_subscription("Full", 432)
        payer = add_member(email="sue@example.com", category="Social", default_payment_method="Over the Till")
        dependant = add_member(first_name="Jack", email="", family_payer_id=payer.id)
        renewals.send_renewals("social_renewal", 2026, fake_mailer, sleep=no_sleep)

        result = renewals.generate_renewal_invoices("social_renewal", 2026)
        assert (result.total, result.succeeded) == (1, 1)
        assert invoices.member_invoices(dependant.id) == []
        assert members.get_member(payer.id).account_balance == Decimal("40.00")

    def test_unknown_renewal_type(self, club_db):
        with pytest.raises(ValueError):
            renewals.generate_renewal_invoices("carrier_pigeon", 2026)


class TestApplySubscriptionChanges:

    @pytest.fixture
    def junior(self, add_subscription, add_member):
        add_subscription("Junior", 20)
        add_subscription("Intermediate", 150)
        member = add_member(first_name="Jack", category="Junior", date_of_birth="2008-01-10", email="jack@example.com")
        invoices.generate_invoice_for_member(member, {}, 2026, is_dd=False)
        db.execute(
            "INSERT INTO sent_emails(member_id, email_type, email_address, year) VALUES(?, 'bacs_renewal', ?, 2026)",
            (member.id, member.email),
        )
        return member

    def change_for(self, member):
        return SubscriptionChange(
            member_id=member.id,
            member_name=member.short_name,
            current_subscription="Junior",
            new_subscription="Intermediate",
            reason="Junior → Intermediate",
            age_on_april_1=18,
            years_of_membership=12,
        )

    def test_reinvoices_at_new_category(self, junior, fake_mailer):
        assert members.get_member(junior.id).account_balance == Decimal("20.00")
        outcome = renewals.apply_subscription_changes(
            [self.change_for(junior)], mailer=fake_mailer, year=2026, user="admin", sleep=no_sleep
        )
        assert (outcome.processed, outcome.invoices_generated, outcome.emails_sent) == (1, 1, 1)
        assert outcome.errors == []

        updated = members.get_member(junior.id)
        assert updated.category == "Intermediate"
        assert updated.account_balance == Decimal("168.50")
        [invoice] = invoices.member_invoices(junior.id)
        assert invoice.total == Decimal("168.50")

    def test_send_log_is_reset_and_change_notice_recorded(self, junior, fake_mailer):
        renewals.apply_subscription_changes([self.change_for(junior)], mailer=fake_mailer, year=2026, sleep=no_sleep)
        assert [r["email_type"] for r in sent_rows()] == ["subscription_change"]
        [(to, subject, html)] = fake_mailer.sent
        assert subject == "AVGC 2026 Subscription Change Notification"
        assert "<strong>Junior</strong> to <strong>Intermediate</strong>" in html

    def test_without_mailer_no_email_is_sent(self, junior):
        outcome = renewals.apply_subscription_changes([self.change_for(junior)], year=2026, sleep=no_sleep)
        assert outcome.emails_sent == 0
        assert outcome.processed == 1
        assert sent_rows() == []

    def test_audit_log(self, junior):
        renewals.apply_subscription_changes([self.change_for(junior)], year=2026, user="admin", sleep=no_sleep)
        log = db.fetch_one("SELECT * FROM audit_log WHERE action = 'subscription_change'")
        assert log["user_name"] == "admin"
        assert log["details"] == "Junior -> Intermediate"

    def test_email_failure_is_reported(self, junior, make_mailer):
        outcome = renewals.apply_subscription_changes(
            [self.change_for(junior)], mailer=make_mailer(fail_for={"jack@example.com"}), year=2026, sleep=no_sleep
        )
        assert outcome.processed == 1
        assert "Email failed" in outcome.errors[0]

    def test_unknown_member(self, club_db):
        change = SubscriptionChange(999, "Nobody", "Junior", "Intermediate", "", 18, 1)
        outcome = renewals.apply_subscription_changes([change], year=2026, sleep=no_sleep)
        assert outcome.processed == 0
        assert outcome.errors == ["Member 999: not found"]

    def test_defaults_to_current_year(self, junior):
        outcome = renewals.apply_subscription_changes([self.change_for(junior)], sleep=no_sleep)
        [invoice] = [i for i in invoices.member_invoices(junior.id) if i.period_start == f"{date.today().year}-04-01"]
        assert invoice.total == Decimal("168.50")
        assert outcome.invoices_generated == 1
