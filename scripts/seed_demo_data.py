#!/usr/bin/env python3
"""Seed a realistic investigation scenario into a running CaseGraph backend.

Usage:
    # Start the backend first:
    uvicorn casegraph.web.app:create_app --factory --port 8080

    # Seed demo data:
    python3 scripts/seed_demo_data.py

    # Seed against a different host or tenant:
    python3 scripts/seed_demo_data.py --base-url http://localhost:9000 --tenant acme

Every record goes through the public API, so validation, audit and the
pattern projection see exactly what a real client would produce.

Data created:
    - 5 persons (two employees, a manager, an investigator, an external vendor)
    - 3 reports: a hotline call, a web form and a gift disclosure
    - 3 cases, one later merged into another as a duplicate
    - Evidentiary and role associations, a manager relationship and a COI link
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone

import httpx

DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_TENANT = "demo-tenant"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def api(
    client: httpx.Client,
    method: str,
    path: str,
    *,
    json: dict | None = None,
    params: dict | None = None,
) -> dict | list | None:
    """Make an API call and return parsed JSON, or None on failure."""
    resp = client.request(method, path, json=json, params=params)
    if resp.status_code >= 400:
        print(f"  FAILED {method} {path} -> {resp.status_code}: {resp.text[:200]}")
        return None
    if resp.headers.get("content-type", "").startswith("application/json"):
        return resp.json()
    return None


def section(title: str) -> None:
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}")


def require(value, what: str):
    if value is None:
        print(f"\nERROR: could not create {what}; aborting")
        sys.exit(1)
    return value


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------


def seed_persons(client: httpx.Client) -> dict[str, str]:
    section("Persons")
    people = {
        "dana": {"type": "EMPLOYEE", "source": "HRIS_SYNC", "first_name": "Dana",
                 "last_name": "Whitfield", "email": "dana.whitfield@example.com"},
        "marco": {"type": "EMPLOYEE", "source": "HRIS_SYNC", "first_name": "Marco",
                  "last_name": "Reyes", "email": "marco.reyes@example.com"},
        "helen": {"type": "EMPLOYEE", "source": "HRIS_SYNC", "first_name": "Helen",
                  "last_name": "Osei", "email": "helen.osei@example.com"},
        "ivy": {"type": "EMPLOYEE", "source": "HRIS_SYNC", "first_name": "Ivy",
                "last_name": "Chen", "email": "ivy.chen@example.com"},
        "vendor": {"type": "EXTERNAL_CONTACT", "source": "MANUAL",
                   "company": "Northgate Supplies Ltd"},
    }
    ids = {}
    for key, payload in people.items():
        person = require(api(client, "POST", "/api/persons", json=payload), f"person {key}")
        ids[key] = person["id"]
        print(f"  {key:<8} {person['id']}")
    return ids


def seed_reports(client: httpx.Client, persons: dict[str, str]) -> dict[str, dict]:
    section("Reports")
    reports = {
        "hotline": {
            "type": "HOTLINE",
            "source_channel": "PHONE",
            "details": "Caller states purchase orders to Northgate were split to stay "
                       "under the approval threshold.",
            "severity": "HIGH",
            "reporter_type": "ANONYMOUS",
            "hotline": {"call_duration": 840, "operator_notes": "Caller nervous"},
        },
        "web_form": {
            "type": "WEB_FORM",
            "source_channel": "WEB_FORM",
            "details": "Repeated split invoices from Northgate approved by the same manager.",
            "severity": "MEDIUM",
            "reporter_type": "IDENTIFIED",
            "reporter_person_id": persons["dana"],
            "web_form": {"form_definition_id": "ethics-v2", "form_version": 2},
        },
        "disclosure": {
            "type": "DISCLOSURE",
            "source_channel": "WEB_FORM",
            "details": "Annual gifts and hospitality disclosure.",
            "reporter_type": "IDENTIFIED",
            "reporter_person_id": persons["marco"],
            "disclosure": {
                "disclosure_type": "GIFT",
                "disclosure_value": 450.0,
                "disclosure_currency": "USD",
                "related_company": "Northgate Supplies Ltd",
            },
        },
    }
    created = {}
    for key, payload in reports.items():
        report = require(api(client, "POST", "/api/reports", json=payload), f"report {key}")
        created[key] = report
        print(f"  {key:<10} {report['reference_number']} ({report['status']})")
    return created


def seed_cases(
    client: httpx.Client, persons: dict[str, str], reports: dict[str, dict]
) -> dict[str, str]:
    section("Cases and associations")
    cases = {}
    for key, summary in (
        ("procurement", "Split purchase orders to Northgate"),
        ("duplicate", "Invoice splitting (duplicate intake)"),
        ("gifts", "Undisclosed vendor hospitality"),
    ):
        case = require(api(client, "POST", "/api/cases", json={"summary": summary}), key)
        cases[key] = case["id"]
        print(f"  {key:<12} {case['reference_number']}")

    api(client, "POST", f"/api/cases/{cases['procurement']}/reports",
        json={"report_id": reports["hotline"]["id"]})
    api(client, "POST", f"/api/cases/{cases['duplicate']}/reports",
        json={"report_id": reports["web_form"]["id"]})
    api(client, "POST", f"/api/cases/{cases['gifts']}/reports",
        json={"report_id": reports["disclosure"]["id"], "association_type": "RELATED"})

    started = datetime.now(timezone.utc).isoformat()
    links = [
        ("person-case", persons["marco"], cases["procurement"], "SUBJECT", {}),
        ("person-case", persons["marco"], cases["duplicate"], "SUBJECT", {}),
        ("person-case", persons["dana"], cases["duplicate"], "REPORTER", {}),
        ("person-case", persons["marco"], cases["gifts"], "SUBJECT", {}),
        ("person-case", persons["ivy"], cases["procurement"], "ASSIGNED_INVESTIGATOR",
         {"started_at": started}),
        ("person-case", persons["helen"], cases["procurement"], "WITNESS", {}),
        ("person-person", persons["helen"], persons["marco"], "MANAGER_OF",
         {"source": "HRIS"}),
        ("person-person", persons["marco"], persons["vendor"], "CLOSE_PERSONAL_FRIEND",
         {"source": "INVESTIGATION"}),
        ("case-case", cases["gifts"], cases["procurement"], "RELATED", {}),
    ]
    for kind, subject, obj, label, metadata in links:
        result = api(client, "POST", f"/api/associations/{kind}", json={
            "subject_id": subject, "object_id": obj, "label": label, "metadata": metadata,
        })
        if result:
            print(f"  {kind:<14} {label}")
    return cases


def seed_merge(client: httpx.Client, cases: dict[str, str]) -> None:
    section("Merge")
    check = api(client, "GET", "/api/cases/merge/check", params={
        "source_case_id": cases["duplicate"], "target_case_id": cases["procurement"],
    })
    if not check or not check.get("can_merge"):
        print(f"  Merge not possible: {check}")
        return
    result = api(client, "POST", "/api/cases/merge", json={
        "source_case_id": cases["duplicate"],
        "target_case_id": cases["procurement"],
        "reason": "Same invoice-splitting allegation reported twice",
    })
    if result:
        print(f"  {result['source_reference']} -> {result['target_reference']}: "
              f"{result['associations_moved']} associations moved")


def verify_data(client: httpx.Client, persons: dict[str, str]) -> None:
    section("Verification")
    rebuilt = api(client, "POST", "/api/patterns/rebuild")
    if rebuilt:
        print(f"  Projection rebuilt: {rebuilt['cases']} cases, {rebuilt['reports']} reports")

    matches = api(client, "GET", f"/api/patterns/persons/{persons['marco']}/cases",
                  params={"roles": ["SUBJECT"]}) or []
    print(f"  Marco is a subject on {len(matches)} open case(s)")

    history = api(client, "GET", f"/api/patterns/persons/{persons['dana']}/reporter-history")
    if history:
        print(f"  Dana reporter history: {history['label']}")

    repeats = api(client, "GET", "/api/patterns/repeat",
                  params={"label": "SUBJECT", "min_count": 2}) or []
    print(f"  Repeat subjects: {len(repeats)}")

    conflicts = api(client, "GET", f"/api/persons/{persons['marco']}/conflicts") or []
    print(f"  Conflict-of-interest links for Marco: {len(conflicts)}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed CaseGraph demo data")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)
    parser.add_argument("--tenant", default=DEFAULT_TENANT)
    parser.add_argument("--actor", default="demo-seeder")
    parser.add_argument(
        "--roles",
        default="compliance_officer",
        help="Comma-separated roles sent with every request",
    )
    args = parser.parse_args()

    section("CaseGraph Demo Data Seeder")
    print(f"Target: {args.base_url}")
    print(f"Tenant: {args.tenant}")
    print(f"Time:   {datetime.now(timezone.utc).isoformat()}")

    headers = {
        "X-Tenant-Id": args.tenant,
        "X-Actor-Id": args.actor,
        "X-Actor-Roles": args.roles,
    }
    with httpx.Client(base_url=args.base_url, headers=headers, timeout=30.0) as client:
        try:
            health = api(client, "GET", "/api/health")
        except httpx.ConnectError:
            print(f"\nERROR: Cannot connect to {args.base_url}")
            print("Start the backend first:")
            print("  uvicorn casegraph.web.app:create_app --factory --port 8080")
            sys.exit(1)
        if not health:
            print("\nERROR: Backend is not responding.")
            sys.exit(1)
        print(f"Backend: healthy={health.get('healthy')} "
              f"(v{health.get('details', {}).get('version', '?')})")

        persons = seed_persons(client)
        reports = seed_reports(client, persons)
        cases = seed_cases(client, persons, reports)
        seed_merge(client, cases)
        verify_data(client, persons)

        section("Done")
        print("  Demo data seeded successfully!")
        print()


if __name__ == "__main__":
    main()
