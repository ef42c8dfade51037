#!/usr/bin/env python
"""Idempotent seed script for preset permission groups.

Usage:
    python backend/scripts/seed_groups.py                # seed normally
    python backend/scripts/seed_groups.py --show-groups  # print group -> grant counts (after ensuring seed)
    python backend/scripts/seed_groups.py --dry-run      # run logic then rollback (no DB changes)
    python backend/scripts/seed_groups.py --validate     # exit 2 when a stored group references unknown permissions

The super-admin group is never created here; it only comes from first-admin setup.
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import select, inspect

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from backoffice import create_app, get_db  # type: ignore
from backoffice.models.authz import Base, PermissionGroup
from backoffice.constants.permissions import (
    CATALOG_VERSION, GROUP_PRESETS, SUPER_ADMIN_GROUP_ID, catalog_problems, normalize_grants,
)


def ensure_groups(session):
    existing = {g.id: g for g in session.execute(select(PermissionGroup)).scalars().all()}
    names = {g.name for g in existing.values()}
    created = 0
    for group_id, preset in GROUP_PRESETS.items():
        if group_id in existing:
            continue
        if preset['name'] in names:
            print(f"[WARN] A group named '{preset['name']}' already exists; skipping preset {group_id}")
            continue
        problems = catalog_problems(preset['grants'])
        if problems:
            print(f"[WARN] Preset {group_id} skipped: {'; '.join(problems)}")
            continue
        session.add(PermissionGroup(
            id=group_id,
            name=preset['name'],
            is_admin=False,
            grants=normalize_grants(preset['grants']),
            catalog_version=CATALOG_VERSION,
        ))
        created += 1
    session.flush()
    return created


def build_group_grant_map(session):
    return {
        g.id: {'name': g.name, 'isAdmin': bool(g.is_admin), 'grants': g.grants or {}}
        for g in session.execute(select(PermissionGroup).order_by(PermissionGroup.id)).scalars().all()
    }


def validate_groups(group_map):
    problems = []
    for group_id, info in group_map.items():
        for problem in catalog_problems(info['grants']):
            problems.append(f"Group '{group_id}': {problem}")
    admin = group_map.get(SUPER_ADMIN_GROUP_ID)
    if admin is not None and not admin['isAdmin']:
        problems.append(f"Group '{SUPER_ADMIN_GROUP_ID}' exists without administrator status")
    return problems


def print_group_summary(group_map):
    if not group_map:
        print("[INFO] No groups present.")
        return
    name_w = max(len(g) for g in group_map)
    print(f"{'Group'.ljust(name_w)} | Admin | Grants")
    print('-' * (name_w + 30))
    for group_id, info in group_map.items():
        count = sum(len(v) for v in info['grants'].values())
        print(f"{group_id.ljust(name_w)} | {('yes' if info['isAdmin'] else 'no').ljust(5)} | {str(count).rjust(6)}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed preset permission groups",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_groups.py\n  dry run: seed_groups.py --dry-run\n  show groups: seed_groups.py --show-groups\n""")
    )
    p.add_argument('--show-groups', action='store_true', help='Print group grant counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export group->grants JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate stored grants against the catalog; exits non-zero on problems')
    return p.parse_args(argv)


def main(argv=None, app=None):
    args = parse_args(argv)
    app = app or create_app()
    with app.app_context():
        session = get_db()
        engine = session.get_bind()
        if not inspect(engine).has_table(PermissionGroup.__tablename__):
            # Auto-create schema for local use; in real env prefer alembic upgrade
            import backoffice.models.ledger  # noqa: F401
            import backoffice.models.exchange_rate  # noqa: F401
            import backoffice.models.audit  # noqa: F401
            Base.metadata.create_all(engine)

        try:
            created = ensure_groups(session)
            group_map = build_group_grant_map(session)
            if args.validate:
                problems = validate_groups(group_map)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for problem in problems:
                        print(' -', problem)
                    session.rollback()
                    return 2
                print('[VALIDATION] OK: All stored grants reference known permissions.')
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Groups would create: {created}")
            else:
                session.commit()
                print(f"[DONE] Groups created: {created}")
            if args.show_groups:
                print('\nGroup Grant Summary:')
                print_group_summary(group_map)
            if args.export_json is not None:
                canonical = json.dumps(group_map, sort_keys=True, separators=(',', ':'))
                payload = {
                    'groups': group_map,
                    'meta': {
                        'catalog_version': CATALOG_VERSION,
                        'groups_checksum_sha256': hashlib.sha256(canonical.encode('utf-8')).hexdigest(),
                        'dry_run': args.dry_run,
                    },
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
