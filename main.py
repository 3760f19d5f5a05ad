#!/usr/bin/env python3
"""
POS Licence Server - Main Entry Point.

Usage:
    python main.py serve [--port 3000]
    python main.py licence create [--type perpetual|subscription] [--months N] [--email E]
    python main.py licence validate <key> <hardware> [--email E] [--phone P] [--business B]
    python main.py licence renew <key> [--months N] [--payment-ref R]
    python main.py licence deactivate <key>
    python main.py licence list
    python main.py report status
    python main.py report expiring [--days 7]
    python main.py report expired
    python main.py report customers [--output customers.csv]
    python main.py db backup [--output file.json]
    python main.py db restore <file> --confirm RESTORE_CONFIRMED
    python main.py db verify
    python main.py db export-seed
"""

import argparse
import json
import logging
import sys

from config.settings import (
    AUDIT_LOG_PATH,
    BACKUP_DIR,
    BACKUP_RETAIN,
    EMERGENCY_BACKUP_PATH,
    LICENCE_DB_PATH,
    LICENCE_DB_SEED,
    LOG_FORMAT,
    LOG_LEVEL,
    PORT,
)
from licence.audit import AuditLog
from licence.lifecycle import LicenceLifecycle
from licence.reports import ReportGenerator
from licence.store import JsonFileLicenceStore


def _get_store():
    return JsonFileLicenceStore(
        LICENCE_DB_PATH,
        emergency_backup_path=EMERGENCY_BACKUP_PATH,
        seed=LICENCE_DB_SEED,
    )


def _audit(action, target, detail=""):
    AuditLog(AUDIT_LOG_PATH).log(action, target, detail, user="cli")


# ============================================================
# Server
# ============================================================

def cmd_serve(args):
    """Run the HTTP licence server."""
    from web import create_app

    app = create_app()
    app.run(host=args.host, port=args.port)


# ============================================================
# Licence Commands
# ============================================================

def cmd_licence_create(args):
    """Issue a new licence."""
    lifecycle = LicenceLifecycle(_get_store())
    lic = lifecycle.create(
        licence_type=args.type,
        subscription_months=args.months,
        customer_email=args.email or "",
        customer_name=args.name or "",
    )
    _audit("licence_create", lic.key, f"type: {lic.licence_type}")
    print(f"Key:     {lic.key}")
    print(f"Type:    {lic.licence_type}")
    expires = lic.expires_at.isoformat() if lic.expires_at else "never"
    print(f"Expires: {expires}")


def cmd_licence_validate(args):
    """Validate a licence the way a POS terminal would."""
    lifecycle = LicenceLifecycle(_get_store())
    customer = {
        "customer_email": args.email,
        "customer_phone": args.phone,
        "customer_business": args.business,
    }
    result = lifecycle.validate(args.key, args.hardware, {k: v for k, v in customer.items() if v})
    if result.success:
        print(f"{result.code.value} - type: {result.licence_type}")
        if result.expires_at:
            print(f"  Expires: {result.expires_at.isoformat()} ({result.days_remaining} days)")
    else:
        print(f"{result.code.value} - {result.message}")
        sys.exit(1)


def cmd_licence_renew(args):
    """Extend a subscription."""
    lifecycle = LicenceLifecycle(_get_store())
    result = lifecycle.renew(args.key, args.months, args.payment_ref or "")
    if result.success:
        _audit("licence_renew", args.key, f"+{args.months} month(s)")
        print(f"Renewed {args.key} until {result.new_expiration.isoformat()}")
        print(f"  Renewals: {result.renewal_count}")
    else:
        print(f"{result.code.value} - {result.message}")
        sys.exit(1)


def cmd_licence_deactivate(args):
    """Deactivate a licence."""
    lifecycle = LicenceLifecycle(_get_store())
    result = lifecycle.deactivate(args.key)
    if result.success:
        _audit("licence_deactivate", args.key)
        print(f"Licence deactivated: {args.key}")
    else:
        print(f"Licence not found: {args.key}")
        sys.exit(1)


def cmd_licence_list(args):
    """List all licences."""
    licences = LicenceLifecycle(_get_store()).list_all()
    if not licences:
        print("No licences found.")
        return
    for lic in licences:
        if not lic.active:
            status = "deactivated"
        elif lic.is_expired():
            status = "expired"
        elif lic.is_bound:
            status = "in use"
        else:
            status = "unused"
        expires = lic.expires_at.strftime("%Y-%m-%d") if lic.expires_at else "-"
        print(f"  {lic.key:20s}  {lic.licence_type:13s}  {expires:10s}  [{status}]")


# ============================================================
# Report Commands
# ============================================================

def cmd_report_status(args):
    """Show licence statistics."""
    report = ReportGenerator(_get_store()).status_report()
    stats = report["stats"]
    print(f"\n{'=' * 50}")
    print("  LICENCE SERVER STATUS")
    print(f"{'=' * 50}")
    print(f"  Total licences:     {stats['total_licenses']}")
    print(f"  Activated:          {stats['activated_licenses']}")
    print(f"  Perpetual:          {stats['perpetual_licenses']}")
    print(f"  Subscriptions:      {stats['subscription_licenses']}")
    print(f"  With email:         {stats['customers_with_email']} ({stats['completion_rate']}%)")
    if report["recent_activations"]:
        print("\n  Recent activations:")
        for row in report["recent_activations"]:
            print(f"    {row['license_key']}  {row['activated_at']}  {row['business']}")


def cmd_report_expiring(args):
    """List subscriptions that expire soon."""
    rows = ReportGenerator(_get_store()).expiring_subscriptions(args.days)
    if not rows:
        print(f"No subscriptions expire in the next {args.days} days.")
        return
    for row in rows:
        print(
            f"  {row['license_key']}  {row['days_until_expiration']:3d} days  "
            f"{row['customer_email']}"
        )


def cmd_report_expired(args):
    """List expired subscriptions."""
    rows = ReportGenerator(_get_store()).expired_subscriptions()
    if not rows:
        print("No expired subscriptions.")
        return
    for row in rows:
        print(f"  {row['license_key']}  expired {row['days_expired']} days ago  {row['customer_email']}")


def cmd_report_customers(args):
    """Export activated customers as CSV."""
    content = ReportGenerator(_get_store()).export_customers_csv()
    if args.output:
        with open(args.output, "w", newline="", encoding="utf-8") as f:
            f.write(content)
        print(f"Customers exported to {args.output}")
    else:
        print(content, end="")


# ============================================================
# Database Commands
# ============================================================

def cmd_db_backup(args):
    """Write a backup of the licence database."""
    store = _get_store()
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(store.snapshot(), f, indent=2)
        _audit("database_backup", args.output)
        print(f"Backup written to {args.output}")
    else:
        path = store.write_backup(BACKUP_DIR, retain=BACKUP_RETAIN)
        _audit("database_backup", str(path))
        print(f"Backup written to {path}")


def cmd_db_restore(args):
    """Restore the licence database from a backup file."""
    with open(args.file, encoding="utf-8") as f:
        payload = json.load(f)
    result = _get_store().restore(payload, args.confirm)
    print(result.message)
    if result.emergency_backup_path:
        print(f"  Previous data saved to {result.emergency_backup_path}")
    if not result.success:
        sys.exit(1)
    _audit("database_restore", args.file, f"{result.restored_licences} licence(s) restored")
    print(f"  Restored {result.restored_licences} licence(s)")


def cmd_db_verify(args):
    """Check the licence database for structural problems."""
    report = _get_store().verify_integrity()
    print(json.dumps(report.to_dict(), indent=2))
    if not report.healthy:
        sys.exit(1)


def cmd_db_export_seed(args):
    """Print the database as a base64 value for LICENCE_DB_SEED."""
    _audit("database_export_seed", "LICENCE_DB_SEED")
    print(_get_store().export_seed())


# ============================================================
# Parser
# ============================================================

def build_parser():
    """Build the argument parser."""
    parser = argparse.ArgumentParser(description="POS Licence Server")
    subparsers = parser.add_subparsers(dest="module", help="Module")

    # --- Server ---
    srv = subparsers.add_parser("serve", help="Run the HTTP licence server")
    srv.add_argument("--host", default="0.0.0.0", help="Bind address")
    srv.add_argument("--port", type=int, default=PORT, help="Port")
    srv.set_defaults(func=cmd_serve)

    # --- Licence commands ---
    lic_parser = subparsers.add_parser("licence", help="Licence management")
    lic_sub = lic_parser.add_subparsers(dest="action")

    create = lic_sub.add_parser("create", help="Issue a new licence")
    create.add_argument("--type", choices=["perpetual", "subscription"], default="perpetual")
    create.add_argument("--months", type=int, help="Subscription length in months")
    create.add_argument("--email", help="Customer email")
    create.add_argument("--name", help="Customer name")
    create.set_defaults(func=cmd_licence_create)

    val = lic_sub.add_parser("validate", help="Validate a licence key")
    val.add_argument("key", help="Licence key")
    val.add_argument("hardware", help="Hardware identifier")
    val.add_argument("--email", help="Customer email")
    val.add_argument("--phone", help="Customer phone")
    val.add_argument("--business", help="Customer business name")
    val.set_defaults(func=cmd_licence_validate)

    renew = lic_sub.add_parser("renew", help="Renew a subscription")
    renew.add_argument("key", help="Licence key")
    renew.add_argument("--months", type=int, default=1, help="Months to add")
    renew.add_argument("--payment-ref", help="Payment reference")
    renew.set_defaults(func=cmd_licence_renew)

    deact = lic_sub.add_parser("deactivate", help="Deactivate a licence")
    deact.add_argument("key", help="Licence key to deactivate")
    deact.set_defaults(func=cmd_licence_deactivate)

    lst = lic_sub.add_parser("list", help="List all licences")
    lst.set_defaults(func=cmd_licence_list)

    # --- Report commands ---
    rep_parser = subparsers.add_parser("report", help="Licence reports")
    rep_sub = rep_parser.add_subparsers(dest="action")

    rs = rep_sub.add_parser("status", help="Licence statistics")
    rs.set_defaults(func=cmd_report_status)

    rx = rep_sub.add_parser("expiring", help="Subscriptions expiring soon")
    rx.add_argument("--days", type=int, default=7, help="Days ahead")
    rx.set_defaults(func=cmd_report_expiring)

    rd = rep_sub.add_parser("expired", help="Expired subscriptions")
    rd.set_defaults(func=cmd_report_expired)

    rc = rep_sub.add_parser("customers", help="Export customers as CSV")
    rc.add_argument("--output", help="Output file path")
    rc.set_defaults(func=cmd_report_customers)

    # --- Database commands ---
    db_parser = subparsers.add_parser("db", help="Licence database maintenance")
    db_sub = db_parser.add_subparsers(dest="action")

    bk = db_sub.add_parser("backup", help="Back up the database")
    bk.add_argument("--output", help="Output file (default: timestamped file in BACKUP_DIR)")
    bk.set_defaults(func=cmd_db_backup)

    rst = db_sub.add_parser("restore", help="Restore the database from a backup")
    rst.add_argument("file", help="Backup file")
    rst.add_argument("--confirm", help="Must be RESTORE_CONFIRMED")
    rst.set_defaults(func=cmd_db_restore)

    ver = db_sub.add_parser("verify", help="Check database integrity")
    ver.set_defaults(func=cmd_db_verify)

    seed = db_sub.add_parser("export-seed", help="Print the database as a base64 seed")
    seed.set_defaults(func=cmd_db_export_seed)

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.module:
        parser.print_help()
        sys.exit(1)

    if not hasattr(args, "func"):
        parser.parse_args([args.module, "--help"])
        sys.exit(1)

    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    args.func(args)


if __name__ == "__main__":
    main()
