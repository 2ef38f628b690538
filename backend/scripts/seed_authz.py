#!/usr/bin/env python
"""Idempotent seed script for permissions, roles, the super admin account and bindings.

Usage:
    python backend/scripts/seed_authz.py                # seed normally
    python backend/scripts/seed_authz.py --show-roles   # print role -> permission counts (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run      # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --backfill     # also create bindings for staff accounts lacking one
    python backend/scripts/seed_authz.py --export-json roles.json
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from shopadmin import create_app, get_db  # noqa: E402
from shopadmin.constants.permissions import ROLE_SUPER_ADMIN  # noqa: E402
from shopadmin.models.authz import Base, Role, User  # noqa: E402
import shopadmin.models.product  # noqa: E402,F401
import shopadmin.models.order  # noqa: E402,F401
import shopadmin.models.notification  # noqa: E402,F401
import shopadmin.models.audit  # noqa: E402,F401
from shopadmin.services.bindings import assign_role, backfill_bindings  # noqa: E402
from shopadmin.services.roles import initialize_permissions, initialize_roles  # noqa: E402


def ensure_super_admin(session, email, password):
    """Create the super admin account (and its binding) when absent. Returns the user or None."""
    if not email or not password:
        print('[WARN] SUPER_ADMIN_EMAIL / SUPER_ADMIN_PASSWORD not set; skipping super admin creation')
        return None
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None:
        user = User(name='Super Admin', email=email, password_hash='')
        user.set_password(password)
        session.add(user)
        session.flush()
        print(f"[INFO] Created super admin {email}")
    if user.primary_role != ROLE_SUPER_ADMIN:
        assign_role(session, user, ROLE_SUPER_ADMIN)
        print(f"[INFO] Bound {email} to {ROLE_SUPER_ADMIN}")
    return user


def build_role_permission_map(session):
    mapping = {}
    for role in session.execute(select(Role).order_by(Role.level)).scalars().all():
        mapping[role.name] = sorted(rp.permission.key for rp in role.permissions)
    return mapping


def print_role_summary(role_perm_map):
    if not role_perm_map:
        print("[INFO] No roles present.")
        return
    name_w = max(len(name) for name in role_perm_map)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 8)")
    print('-' * (name_w + 40))
    for name, perms in role_perm_map.items():
        print(f"{name.ljust(name_w)} | {str(len(perms)).rjust(5)} | {', '.join(perms[:8])}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed RBAC permissions, roles and the super admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--backfill', action='store_true', help='Create bindings for admin accounts without one')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->permissions JSON (to FILE or stdout if omitted)')
    return p.parse_args(argv)


def run(session, args, config):
    created_p = initialize_permissions(session)
    created_r = initialize_roles(session)
    admin = ensure_super_admin(session, config.get('SUPER_ADMIN_EMAIL'), config.get('SUPER_ADMIN_PASSWORD'))
    backfilled = backfill_bindings(session, assigned_by=admin) if args.backfill else 0
    return {'permissions': created_p, 'roles': created_r, 'backfilled': backfilled}


def main(argv=None):
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            # Ensure tables exist (lightweight fallback if migrations not run yet)
            session.execute(text('SELECT 1 FROM permissions LIMIT 1'))
        except OperationalError:
            session.rollback()
            Base.metadata.create_all(session.get_bind())

        try:
            counts = run(session, args, app.config)
            role_perm_map = build_role_permission_map(session)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) would create: {counts}")
            else:
                session.commit()
                print(f"[DONE] created: {counts}")
            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary(role_perm_map)
            if args.export_json is not None:
                # Deterministic checksum for change detection
                canonical = json.dumps(role_perm_map, sort_keys=True, separators=(',', ':'))
                payload = {
                    'roles': role_perm_map,
                    'meta': {
                        'roles_checksum_sha256': hashlib.sha256(canonical.encode('utf-8')).hexdigest(),
                        'dry_run': args.dry_run,
                    }
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


if __name__ == '__main__':
    main()
