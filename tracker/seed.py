"""
tracker/seed.py -- Demo data for local development.

Creates three platform teams, six users (one per role plus extra devs), four
applications, three vendor reports and a handful of findings whose dates are
relative to "now" so the overdue, due-this-week and retest views all have
something to show.

All seeded users share one password (SEED_USER_PASSWORD, default
"password123").

Layer rule: this is the only tracker/ module that imports auth/, because it
creates users. Nothing else in tracker/ may.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.documents import DocumentStore
from tracker.models import Application, Report, Team, Vulnerability
from tracker.store import ApplicationStore, ReportStore, SlaSettingsStore, TeamStore, VulnerabilityStore

logger = logging.getLogger("vmp.tracker")

_SEEDED_COLLECTIONS = ("users", "refresh_tokens", "teams", "applications", "reports", "vulnerabilities", "saved_views")


def seed_demo_data(documents: DocumentStore, password: str, reset: bool = False) -> dict[str, int]:
    """Populate the store with demo data and return per-entity counts.

    reset=True empties the seeded collections first. Without it, seeding an
    already-populated store raises Conflict on the first duplicate email.
    """
    if reset:
        for name in _SEEDED_COLLECTIONS:
            removed = documents.collection(name).delete_many()
            if removed:
                logger.info("Cleared %d documents from %s", removed, name)

    now = datetime.now(timezone.utc)
    teams = TeamStore(documents)
    apps = ApplicationStore(documents)
    reports = ReportStore(documents)
    vulns = VulnerabilityStore(documents)
    users = UserStore(documents)
    sla = SlaSettingsStore(documents).get()

    # Teams
    web = teams.create(Team(name="Web Development Team", platform="Web"))
    ios = teams.create(Team(name="iOS Development Team", platform="iOS"))
    android = teams.create(Team(name="Android Development Team", platform="Android"))
    all_teams = [web.id, ios.id, android.id]

    # Users
    pw_hash = hash_password(password)
    people = [
        User(email="admin@company.com", name="Admin User", role="Admin", team_ids=all_teams),
        User(email="security@company.com", name="Security Analyst", role="Security", team_ids=all_teams),
        User(email="web.dev@company.com", name="Web Developer", role="Dev", team_ids=[web.id]),
        User(email="ios.dev@company.com", name="iOS Developer", role="Dev", team_ids=[ios.id]),
        User(email="android.dev@company.com", name="Android Developer", role="Dev", team_ids=[android.id]),
        User(email="web.po@company.com", name="Web Product Owner", role="ProductOwner", team_ids=[web.id]),
    ]
    for person in people:
        person.password_hash = pw_hash
        users.create_user(person)
    web_dev, ios_dev = people[2], people[3]

    # Applications
    site = apps.create(
        Application(
            name="Company Website",
            platform="Web",
            team_id=web.id,
            description="Main company website with customer portal",
        )
    )
    ios_app = apps.create(
        Application(
            name="Mobile Banking App",
            platform="iOS",
            team_id=ios.id,
            description="iOS banking application for customers",
        )
    )
    android_app = apps.create(
        Application(
            name="Mobile Banking App",
            platform="Android",
            team_id=android.id,
            description="Android banking application for customers",
        )
    )
    dashboard = apps.create(
        Application(
            name="Admin Dashboard",
            platform="Web",
            team_id=web.id,
            description="Internal admin dashboard for managing users and data",
        )
    )
    teams.update(web.id, {"application_ids": [site.id, dashboard.id]})
    teams.update(ios.id, {"application_ids": [ios_app.id]})
    teams.update(android.id, {"application_ids": [android_app.id]})

    # Reports
    site_report = reports.create(
        Report(
            application_id=site.id,
            vendor_name="SecureVault Security",
            file_name="VAPT_Report_Company_Website.pdf",
            report_date=now - timedelta(days=40),
            date_uploaded=now - timedelta(days=38),
            parsed=True,
        )
    )
    ios_report = reports.create(
        Report(
            application_id=ios_app.id,
            vendor_name="CyberShield Labs",
            file_name="VAPT_Report_Mobile_Banking_iOS.pdf",
            report_date=now - timedelta(days=25),
            date_uploaded=now - timedelta(days=24),
            parsed=True,
        )
    )
    reports.create(
        Report(
            application_id=android_app.id,
            vendor_name="SecureTech Solutions",
            file_name="VAPT_Report_Mobile_Banking_Android.pdf",
            report_date=now - timedelta(days=3),
            date_uploaded=now - timedelta(days=2),
        )
    )

    # Findings
    findings = [
        Vulnerability(
            application_id=site.id,
            report_id=site_report.id,
            title="SQL Injection in Login Form",
            description="The login form is vulnerable to SQL injection, allowing authentication bypass.",
            severity="Critical",
            cvss_score=9.8,
            cvss_vector="CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
            cwe=["CWE-89"],
            status="Open",
            discovered_date=now - timedelta(days=40),
            assigned_to_user_id=web_dev.id,
            tags=["authentication", "database", "injection"],
        ),
        Vulnerability(
            application_id=site.id,
            report_id=site_report.id,
            title="Cross-Site Scripting (XSS) in Search Function",
            description="Search input is reflected without sanitization.",
            severity="High",
            cvss_score=7.2,
            cvss_vector="CVSS:3.1/AV:N/AC:L/PR:N/UI:R/S:U/C:H/I:L/A:N",
            cwe=["CWE-79"],
            status="In Progress",
            internal_status="Fix in progress",
            discovered_date=now - timedelta(days=26),
            assigned_to_user_id=web_dev.id,
            tags=["xss", "input-validation"],
        ),
        Vulnerability(
            application_id=site.id,
            report_id=site_report.id,
            title="Weak Password Policy",
            description="The application accepts passwords that do not meet complexity requirements.",
            severity="Medium",
            cvss_score=5.3,
            cwe=["CWE-521"],
            status="Fixed",
            discovered_date=now - timedelta(days=40),
            resolved_date=now - timedelta(days=20),
            assigned_to_user_id=web_dev.id,
            tags=["authentication", "password-policy"],
        ),
        Vulnerability(
            application_id=ios_app.id,
            report_id=ios_report.id,
            title="Insecure Data Storage",
            description="Sensitive data is stored in plain text in local storage.",
            severity="High",
            cvss_score=7.5,
            cwe=["CWE-312"],
            status="Open",
            discovered_date=now - timedelta(days=25),
            assigned_to_user_id=ios_dev.id,
            tags=["data-protection", "mobile"],
        ),
        Vulnerability(
            application_id=ios_app.id,
            report_id=ios_report.id,
            title="Certificate Pinning Bypass",
            description="No certificate pinning, leaving the app open to MITM attacks.",
            severity="Medium",
            cvss_score=5.9,
            cwe=["CWE-295"],
            status="New",
            internal_status="Stuck",
            discovered_date=now - timedelta(days=25),
            tags=["network", "mobile"],
        ),
        Vulnerability(
            application_id=dashboard.id,
            title="Verbose Error Messages",
            description="Stack traces are shown to end users on server errors.",
            severity="Low",
            cwe=["CWE-209"],
            status="Closed",
            discovered_date=now - timedelta(days=90),
            tags=["information-disclosure"],
        ),
    ]
    created = vulns.bulk_create(findings, sla)
    reports.mark_parsed(site_report.id, [v.id for v in created if v.report_id == site_report.id])
    reports.mark_parsed(ios_report.id, [v.id for v in created if v.report_id == ios_report.id])

    counts = {
        "teams": 3,
        "users": len(people),
        "applications": 4,
        "reports": 3,
        "vulnerabilities": len(created),
    }
    logger.info("Seeded demo data: %s", counts)
    return counts
