"""
renewals.py
Batch jobs: renewal notice sends, renewal invoices, subscription changes.

Each call handles at most `batch_size` members and reports how many remain,
so a long run is finished by calling again until remaining == 0. One member's
failure is recorded and the batch carries on.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date

import config
import db
import fees
import invoices
import members
import notices
import schedule as dd_schedule
from mailer import MailerNotConfigured, SendResult
from models import BatchResult, Member, Notice, SubscriptionChange

logger = logging.getLogger(__name__)


def _record_send(member: Member, email_type: str, year: int, result: SendResult) -> None:
    db.execute(
        "INSERT INTO sent_emails(member_id, email_type, email_address, year, status, error) VALUES(?,?,?,?,?,?)",
        (member.id, email_type, member.email or "", year, "sent" if result.success else "failed", result.error),
    )


def build_notice(
    member: Member,
    renewal_type: str,
    year: int,
    bank_details: dict[str, str],
    fee_items: fees.FeeTable,
) -> Notice:
    if renewal_type == "dd_renewal":
        dependants = [(d, d.subscription_fee) for d in members.get_dependants(member.id)
                      if d.subscription_fee is not None]
        if dependants:
            consolidated = dd_schedule.calculate_consolidated_schedule(
                member, member.subscription_fee, dependants, year, fee_items
            )
            return notices.render_consolidated_dd_renewal(consolidated)
        return notices.render_dd_renewal(member, dd_schedule.calculate_schedule(member, member.subscription_fee, year, fee_items))
    if renewal_type == "bacs_renewal":
        return notices.render_bacs_renewal(member, member.subscription_fee, year, bank_details, fee_items)
    if renewal_type == "social_renewal":
        return notices.render_social_renewal(member, member.subscription_fee, year, bank_details)
    raise ValueError(f"Unknown renewal type: {renewal_type}")


def send_renewals(
    renewal_type: str,
    year: int,
    mailer,
    batch_size: int = config.BATCH_SIZE,
    delay: float = config.EMAIL_DELAY_SECONDS,
    sleep=time.sleep,
    retry_failed: bool = False,
) -> BatchResult:
    """Send the next batch of renewal notices of one type."""
    candidates = members.renewal_candidates(renewal_type, year, retry_failed=retry_failed)
    batch = candidates[:batch_size]
    result = BatchResult(total=len(batch), remaining=len(candidates) - len(batch))
    if not batch:
        return result

    bank_details = db.get_bank_details()
    fee_items = fees.load_fee_items()

    for i, member in enumerate(batch):
        if member.subscription_fee is None:
            message = f"No fee for category {member.category}"
            result.fail(f"{member.short_name}: {message}")
            _record_send(member, renewal_type, year, SendResult(False, message))
            continue

        try:
            notice = build_notice(member, renewal_type, year, bank_details, fee_items)
            sent = mailer.send(member.email, notice.subject, notice.html)
        except MailerNotConfigured:
            raise
        except Exception as e:
            logger.exception("Renewal notice for member %s failed", member.id)
            sent = SendResult(False, str(e))

        _record_send(member, renewal_type, year, sent)
        if sent.success:
            result.succeeded += 1
        else:
            result.fail(f"{member.short_name} ({member.email}): {sent.error}")

        if i < len(batch) - 1:
            sleep(delay)

    logger.info(
        "%s %s: %d sent, %d failed, %d remaining",
        renewal_type, year, result.succeeded, result.failed, result.remaining,
    )
    return result


def generate_renewal_invoices(renewal_type: str, year: int, batch_size: int = config.BATCH_SIZE) -> BatchResult:
    """Invoice the next batch of members who were sent this renewal type."""
    if renewal_type not in members.RENEWAL_TYPES:
        raise ValueError(f"Unknown renewal type: {renewal_type}")

    period_start, period_end = invoices.period_bounds(year)
    candidates = members.invoice_candidates(renewal_type, year, period_start, period_end)
    batch = candidates[:batch_size]
    result = BatchResult(total=len(batch), remaining=len(candidates) - len(batch))
    if not batch:
        return result

    fee_items = fees.load_fee_items()
    for member in batch:
        try:
            outcome = invoices.generate_invoice_for_member(
                member,
                fee_items,
                year,
                is_dd=renewal_type == "dd_renewal",
                is_social=renewal_type == "social_renewal",
            )
        except Exception as e:
            logger.exception("Invoice for member %s failed", member.id)
            result.fail(f"{member.short_name}: {e}")
            continue

        if outcome.created:
            result.succeeded += 1
        elif outcome.success:
            result.skipped += 1
        else:
            result.fail(f"{member.short_name}: {outcome.error}")

    logger.info(
        "%s invoices %s: %d created, %d skipped, %d failed, %d remaining",
        renewal_type, year, result.succeeded, result.skipped, result.failed, result.remaining,
    )
    return result


@dataclass
class ChangeOutcome:
    processed: int = 0
    emails_sent: int = 0
    invoices_generated: int = 0
    errors: list[str] = field(default_factory=list)


def apply_subscription_changes(
    changes: list[SubscriptionChange],
    mailer=None,
    year: int | None = None,
    user: str = "system",
    delay: float = config.EMAIL_DELAY_SECONDS,
    sleep=time.sleep,
) -> ChangeOutcome:
    """
    Move members to their new category: drop this period's invoices, clear
    this year's send log, invoice at the new category and send a change
    notice (when a mailer is given and the member has an email).
    """
    year = year or date.today().year
    period_start, _ = invoices.period_bounds(year)
    outcome = ChangeOutcome()
    bank_details = db.get_bank_details()
    fee_items = fees.load_fee_items()

    for change in changes:
        try:
            member = members.get_member(change.member_id, category=change.new_subscription)
            if member is None:
                outcome.errors.append(f"Member {change.member_id}: not found")
                continue
            old_category = change.current_subscription or member.category or ""

            members.update_category(member.id, change.new_subscription)
            member.category = change.new_subscription
            invoices.delete_period_invoices(member.id, period_start, user=user)
            db.execute("DELETE FROM sent_emails WHERE member_id = ? AND year = ?", (member.id, year))

            is_dd = member.default_payment_method == config.DD_PAYMENT_METHOD
            result = invoices.generate_invoice_for_member(member, fee_items, year, is_dd=is_dd, created_by=user)
            if result.created:
                outcome.invoices_generated += 1
            elif not result.success:
                outcome.errors.append(
                    f"Member {member.id} ({member.short_name}): Invoice generation failed - {result.error}"
                )

            if mailer is not None and member.has_email:
                notice = notices.render_subscription_change(
                    member, old_category, change.new_subscription,
                    member.subscription_fee or 0, year, bank_details, fee_items,
                )
                sent = mailer.send(member.email, notice.subject, notice.html)
                if sent.success:
                    outcome.emails_sent += 1
                    _record_send(member, "subscription_change", year, sent)
                else:
                    outcome.errors.append(f"Member {member.id} ({member.short_name}): Email failed - {sent.error}")
                sleep(delay)

            db.log_action(user, "subscription_change", "member", member.id,
                          f"{old_category} -> {change.new_subscription}")
            outcome.processed += 1
        except MailerNotConfigured:
            raise
        except Exception as e:
            logger.exception("Subscription change for member %s failed", change.member_id)
            outcome.errors.append(f"Member {change.member_id}: {e}")

    return outcome
