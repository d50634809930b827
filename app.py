"""
app.py
Streamlit club office: members, invoices, renewals, subscription reviews.
Run: streamlit run app.py
"""

from __future__ import annotations

import logging
from datetime import date

import pandas as pd
import streamlit as st
import streamlit.components.v1 as components

import auth
import config
import db
import fees
import invoices
import members
import renewals
import subscription_rules
import utils
from mailer import GraphMailer, MailerNotConfigured
from models import money

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

st.set_page_config(page_title=f"{config.CLUB_NAME} Office", layout="wide")

RENEWAL_LABELS = {
    "dd_renewal": "Direct Debit",
    "bacs_renewal": "BACS / Over the Till",
    "social_renewal": "Social",
}
PAYMENT_METHODS = [config.DD_PAYMENT_METHOD, *config.BACS_PAYMENT_METHODS]


def init_once():
    if "db_ready" not in st.session_state:
        db.init_db(auth.hash_password("admin123"))
        st.session_state.db_ready = True


def require_login():
    if "logged_in" not in st.session_state:
        st.session_state.logged_in = False
    if "username" not in st.session_state:
        st.session_state.username = None


def logout():
    st.session_state.logged_in = False
    st.session_state.username = None


def editable() -> bool:
    return auth.can_edit(st.session_state.username)


def login_screen():
    st.title("🔐 Club Office Login")
    username = st.text_input("Username", value="admin")
    password = st.text_input("Password", type="password")
    if st.button("Login", type="primary"):
        if auth.login(username.strip(), password):
            st.session_state.logged_in = True
            st.session_state.username = username.strip()
            st.rerun()
        else:
            st.error("Invalid username or password.")


def password_fields(key: str):
    new1 = st.text_input("New password", type="password", key=f"{key}_1")
    new2 = st.text_input("Confirm new password", type="password", key=f"{key}_2")
    if st.button("Update password", type="primary", key=f"{key}_btn"):
        if len(new1) < 6:
            st.error("Password must be at least 6 characters.")
        elif new1 != new2:
            st.error("Passwords do not match.")
        else:
            auth.change_password(st.session_state.username, new1)
            st.success("Password updated.")
            return True
    return False


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")
    st.warning("You must change the default password before using the office.")
    if password_fields("force"):
        st.rerun()


def selected_year() -> int:
    return int(st.sidebar.number_input("Membership year", min_value=2000, max_value=2100, value=date.today().year))


def member_picker(label: str = "Member", key: str = "member"):
    rows = members.list_members()
    if not rows:
        st.info("No members yet.")
        return None
    options = {f"{m.surname}, {m.first_name} ({m.club_number or '-'}) - ID {m.id}": m.id for m in rows}
    chosen = st.selectbox(label, list(options.keys()), key=key)
    return members.get_member(options[chosen])


# ---------- Pages ----------

def dashboard_page(year: int):
    st.header("📊 Dashboard")

    everyone = members.list_members()
    outstanding = sum((m.account_balance for m in everyone if m.account_balance > 0), money(0))
    dd_count = sum(1 for m in everyone if m.default_payment_method == config.DD_PAYMENT_METHOD)
    period_start, _ = invoices.period_bounds(year)
    counts = db.fetch_all(
        "SELECT status, COUNT(*) AS c FROM invoices WHERE period_start = ? GROUP BY status", (period_start,)
    )

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Members", len(everyone))
    c2.metric("Direct Debit members", dd_count)
    c3.metric("Outstanding balances", f"£{outstanding:.2f}")
    c4.metric(f"Invoices {year}/{year + 1}", sum(r["c"] for r in counts))

    if counts:
        st.dataframe(pd.DataFrame([dict(r) for r in counts]), hide_index=True)

    st.divider()
    st.subheader("Members without a subscription fee")
    missing = [m for m in everyone if m.subscription_fee is None]
    if missing:
        st.dataframe(
            pd.DataFrame([{"id": m.id, "name": m.short_name, "category": m.category} for m in missing]),
            hide_index=True,
        )
    else:
        st.caption("Every member's category has a subscription fee.")


def member_form(existing=None):
    st.subheader(f"✏️ Edit Member (ID: {existing.id})" if existing else "➕ Add Member")
    categories = members.subscription_categories()

    col1, col2, col3 = st.columns(3)
    with col1:
        title = st.text_input("Title", value=(existing.title or "") if existing else "")
        first_name = st.text_input("First name", value=existing.first_name if existing else "")
        surname = st.text_input("Surname", value=existing.surname if existing else "")
        club_number = st.text_input("Club number", value=(existing.club_number or "") if existing else "")
        email = st.text_input("Email", value=(existing.email or "") if existing else "")
    with col2:
        date_of_birth = st.text_input("Date of birth (YYYY-MM-DD)", value=(existing.date_of_birth or "") if existing else "")
        date_joined = st.text_input(
            "Date joined (YYYY-MM-DD)", value=(existing.date_joined or "") if existing else utils.today_iso()
        )
        home_away = st.selectbox(
            "Home/Away", ["H", "A", "V"],
            index=["H", "A", "V"].index(existing.home_away) if existing and existing.home_away in ("H", "A", "V") else 0,
        )
        national_id = st.text_input("CDH number", value=(existing.national_id or "") if existing else "")
        handicap = st.text_input(
            "Handicap index",
            value="" if not existing or existing.handicap_index is None else str(existing.handicap_index),
        )
    with col3:
        suggested = subscription_rules.calculate_default_subscription_type(date_of_birth or None, date_joined or None)
        default_category = existing.category if existing else suggested.new_type
        if default_category and default_category not in categories:
            categories = [default_category, *categories]
        category = st.selectbox(
            "Category", categories or [default_category],
            index=(categories.index(default_category) if default_category in categories else 0),
        )
        if not existing:
            st.caption(f"Suggested: {suggested.new_type} ({suggested.reason})")
        locker_number = st.text_input("Locker number", value=(existing.locker_number or "") if existing else "")
        method = st.selectbox(
            "Payment method", PAYMENT_METHODS,
            index=PAYMENT_METHODS.index(existing.default_payment_method)
            if existing and existing.default_payment_method in PAYMENT_METHODS else 0,
        )
        dd_id = st.text_input("DD reference", value=(existing.direct_debit_member_id or "") if existing else "")

    errors = utils.validate_member_inputs(first_name, surname, home_away, date_of_birth, date_joined)
    try:
        handicap_index = float(handicap) if handicap.strip() else None
    except ValueError:
        handicap_index = None
        errors.append("Handicap index must be numeric.")
    for e in errors:
        st.error(e)

    if st.button("Save", type="primary", disabled=bool(errors) or not editable()):
        fields = dict(
            title=title.strip() or None, first_name=first_name.strip(), surname=surname.strip(),
            club_number=club_number.strip() or None, email=email.strip() or None, category=category,
            home_away=home_away, national_id=national_id.strip() or None, handicap_index=handicap_index,
            locker_number=locker_number.strip() or None, date_of_birth=date_of_birth or None,
            date_joined=date_joined or None, default_payment_method=method,
            direct_debit_member_id=dd_id.strip() or None,
        )
        if existing:
            members.update_member(existing.id, **fields)
            st.success("Member updated.")
        else:
            members.add_member(**fields)
            st.success("Member added.")
        st.rerun()


def members_page(year: int):
    st.header("👥 Members")

    with st.sidebar:
        search = st.text_input("Search (name/club number)")

    rows = members.list_members(search)
    df = pd.DataFrame(
        [
            {
                "id": m.id, "name": m.short_name, "club_number": m.club_number, "category": m.category,
                "home_away": m.home_away, "payment_method": m.default_payment_method,
                "subscription": None if m.subscription_fee is None else float(m.subscription_fee),
                "balance": float(m.account_balance),
            }
            for m in rows
        ]
    )
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()
    ids = [str(m.id) for m in rows]
    selected = st.selectbox("Edit member", ["(new member)"] + ids)
    if selected == "(new member)":
        member_form()
    else:
        member_form(existing=members.get_member(int(selected)))


def invoices_page(year: int):
    st.header("🧾 Invoices")

    member = member_picker()
    if member is None:
        return

    is_dd = member.default_payment_method == config.DD_PAYMENT_METHOD
    st.write(
        f"Category: **{member.category}** | Payment: **{member.default_payment_method or '-'}** | "
        f"Balance: **£{member.account_balance:.2f}**"
    )

    preview = fees.calculate_line_items(member, fees.load_fee_items())
    if preview:
        st.dataframe(
            pd.DataFrame([{"description": i.description, "amount": float(i.unit_price)} for i in preview]),
            hide_index=True,
        )
    else:
        st.warning(f"No subscription fee for category {member.category}.")

    if st.button(f"Generate {year}/{year + 1} invoice", type="primary", disabled=not editable()):
        result = invoices.generate_invoice_for_member(
            member, fees.load_fee_items(), year, is_dd=is_dd, created_by=st.session_state.username
        )
        if result.created:
            st.success(f"Created {result.invoice_number}.")
        elif result.success:
            st.info("This member already has an invoice for the period.")
        else:
            st.error(result.error)

    st.divider()
    history = invoices.member_invoices(member.id)
    if not history:
        st.caption("No invoices for this member yet.")
        return
    st.dataframe(
        pd.DataFrame(
            [
                {"id": i.id, "number": i.invoice_number, "period": f"{i.period_start} to {i.period_end}",
                 "total": float(i.total), "status": i.status}
                for i in history
            ]
        ),
        hide_index=True,
    )
    chosen = st.selectbox("Invoice", [i.invoice_number for i in history])
    invoice = next(i for i in history if i.invoice_number == chosen)
    st.dataframe(
        pd.DataFrame(
            [{"description": it.description, "amount": float(it.line_total)} for it in invoices.invoice_items(invoice.id)]
        ),
        hide_index=True,
    )
    c1, c2 = st.columns(2)
    with c1:
        if st.button("Cancel invoice", disabled=not editable() or invoice.status == "cancelled"):
            invoices.cancel_invoice(invoice.id, user=st.session_state.username)
            st.rerun()
    with c2:
        confirm = st.checkbox("Confirm delete", value=False)
        if st.button("Delete invoice", disabled=not (editable() and confirm)):
            invoices.delete_invoice(invoice.id, user=st.session_state.username)
            st.rerun()


def renewals_page(year: int):
    st.header("🔁 Renewals")

    renewal_type = st.radio("Renewal type", list(RENEWAL_LABELS), format_func=RENEWAL_LABELS.get, horizontal=True)
    pending = members.renewal_candidates(renewal_type, year)
    st.write(f"**{len(pending)}** members still to receive the {year} {RENEWAL_LABELS[renewal_type]} notice.")

    if pending:
        preview_member = st.selectbox("Preview notice for", pending, format_func=lambda m: m.short_name)
        if preview_member.subscription_fee is None:
            st.warning(f"No subscription fee for category {preview_member.category}.")
        else:
            notice = renewals.build_notice(
                preview_member, renewal_type, year, db.get_bank_details(), fees.load_fee_items()
            )
            st.caption(f"Subject: {notice.subject}")
            components.html(notice.html, height=600, scrolling=True)

    c1, c2 = st.columns(2)
    with c1:
        retry = st.checkbox("Retry failed sends")
        if st.button("Send next batch", type="primary", disabled=not editable()):
            try:
                result = renewals.send_renewals(renewal_type, year, GraphMailer.from_config(), retry_failed=retry)
            except MailerNotConfigured as e:
                st.error(str(e))
            else:
                st.success(f"Sent {result.succeeded}, failed {result.failed}, remaining {result.remaining}.")
                for err in result.errors:
                    st.error(err)
    with c2:
        if st.button("Generate invoices (next batch)", disabled=not editable()):
            result = renewals.generate_renewal_invoices(renewal_type, year)
            st.success(
                f"Created {result.succeeded}, skipped {result.skipped}, failed {result.failed}, "
                f"remaining {result.remaining}."
            )
            for err in result.errors:
                st.error(err)


def subscriptions_page(year: int):
    st.header("📅 Subscription Review")

    reference = st.date_input("Reference date", value=date.today())
    changes = subscription_rules.review_subscription_changes(members.list_members(), reference)
    if not changes:
        st.caption("No subscription changes required.")
        return

    df = pd.DataFrame(
        [
            {"apply": True, "member_id": c.member_id, "name": c.member_name, "current": c.current_subscription,
             "new": c.new_subscription, "reason": c.reason, "age": c.age_on_april_1,
             "years": c.years_of_membership}
            for c in changes
        ]
    )
    edited = st.data_editor(df, hide_index=True, disabled=[c for c in df.columns if c != "apply"])
    chosen_ids = set(edited.loc[edited["apply"], "member_id"])
    send_notices = st.checkbox("Email change notices", value=True)

    if st.button(f"Apply {len(chosen_ids)} changes", type="primary", disabled=not editable() or not chosen_ids):
        try:
            outcome = renewals.apply_subscription_changes(
                [c for c in changes if c.member_id in chosen_ids],
                mailer=GraphMailer.from_config() if send_notices else None,
                year=year,
                user=st.session_state.username,
            )
        except MailerNotConfigured as e:
            st.error(str(e))
        else:
            st.success(
                f"Processed {outcome.processed}, invoices {outcome.invoices_generated}, emails {outcome.emails_sent}."
            )
            for err in outcome.errors:
                st.error(err)


def reports_page(year: int):
    st.header("📈 Reports")

    st.subheader("Direct Debit schedule")
    frame = utils.dd_schedule_frame(year)
    if frame.empty:
        st.caption("No Direct Debit members with a subscription fee.")
    else:
        st.dataframe(frame, use_container_width=True, hide_index=True)
        st.download_button(
            f"Download dd-schedule-{year}.csv",
            data=utils.dd_schedule_to_csv_bytes(year),
            file_name=f"dd-schedule-{year}.csv",
            mime="text/csv",
        )

    st.divider()
    st.subheader("Members")
    rows = members.list_members()
    if rows:
        st.download_button(
            "Download members.csv", data=utils.members_to_csv_bytes(rows), file_name="members.csv", mime="text/csv"
        )
    else:
        st.caption("No members to export.")


def settings_page(year: int):
    st.header("⚙️ Settings")

    st.subheader("Change password")
    password_fields("settings")

    st.divider()
    st.subheader("Bank details (shown on BACS and Social notices)")
    bank = db.get_bank_details()
    updated = {key: st.text_input(key.replace("_", " ").title(), value=value) for key, value in bank.items()}
    if st.button("Save bank details", disabled=not editable()):
        for key, value in updated.items():
            db.set_setting(key, value.strip())
        st.success("Bank details saved.")

    st.divider()
    st.subheader("Fees and subscriptions")
    items = db.fetch_all("SELECT id, category, name, fee, active FROM payment_items ORDER BY category, name")
    if items:
        st.dataframe(pd.DataFrame([dict(r) for r in items]), hide_index=True)
        labels = {f"{r['category']}: {r['name']}": r for r in items}
        chosen = labels[st.selectbox("Item", list(labels))]
        new_fee = st.number_input("Fee (£)", min_value=0.0, value=float(chosen["fee"]), step=0.5)
        active = st.checkbox("Active", value=bool(chosen["active"]))
        if st.button("Update item", disabled=not editable()):
            db.execute(
                "UPDATE payment_items SET fee = ?, active = ? WHERE id = ?",
                (money(new_fee), int(active), chosen["id"]),
            )
            st.rerun()

    with st.form("new_subscription"):
        name = st.text_input("New subscription category")
        fee = st.number_input("Annual fee (£)", min_value=0.0, step=0.5)
        if st.form_submit_button("Add subscription", disabled=not editable()) and name.strip():
            db.execute(
                "INSERT INTO payment_items(category, name, fee) VALUES('Subscription', ?, ?)",
                (name.strip(), money(fee)),
            )
            st.rerun()

    st.divider()
    st.subheader("Sample data")
    st.caption("Insert sample subscription fees and members for testing (adds new members each run).")
    if st.button("Insert sample data", disabled=not editable()):
        utils.insert_sample_data()
        st.success("Sample data inserted.")
        st.rerun()


PAGES = {
    "Dashboard": dashboard_page,
    "Members": members_page,
    "Invoices": invoices_page,
    "Renewals": renewals_page,
    "Subscriptions": subscriptions_page,
    "Reports": reports_page,
    "Settings": settings_page,
}


def main_app():
    st.sidebar.title("⛳ Club Office")
    st.sidebar.caption(f"Logged in as: {st.session_state.username}")

    page = st.sidebar.radio("Navigate", list(PAGES))
    year = selected_year()

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    PAGES[page](year)


# --------- App entry ---------

def run():
    init_once()
    require_login()

    if not st.session_state.logged_in:
        login_screen()
        return

    if db.is_force_password_change():
        force_change_password_screen()
        return

    main_app()


if __name__ == "__main__":
    run()
