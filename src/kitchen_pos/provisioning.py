"""Provision the platform super-admin account.

Usage:
  python -m kitchen_pos.provisioning --email admin@example.com
  python -m kitchen_pos.provisioning --email admin@example.com --password '...' --skip-login-check

Requires SUPABASE_SERVICE_ROLE_KEY in the environment. Both the auth user and
the profile row are written with the service-role client. When --password is
omitted it is read from KITCHEN_POS_ADMIN_PASSWORD or prompted for.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import sys

from kitchen_pos.auth.credentials import CredentialStore, SupabaseAdminClient, SupabaseCredentialStore
from kitchen_pos.db.client import DatabaseClient
from kitchen_pos.models.identity import Profile, Role

logger = logging.getLogger(__name__)

DEFAULT_FULL_NAME = "Super Administrator"


async def setup_super_admin(
    admin: SupabaseAdminClient,
    db: DatabaseClient,
    email: str,
    password: str,
    full_name: str = DEFAULT_FULL_NAME,
    login_check: CredentialStore | None = None,
) -> Profile:
    """Ensure an auth user and an active super-admin profile exist for email.

    Args:
        admin: Service-role auth client
        db: Database client for the profile table
        email: Admin email address
        password: Password to set on the auth user
        full_name: Display name for a newly created profile
        login_check: If given, sign in and out with it to verify the account

    Returns:
        The stored super-admin profile
    """
    existing = await admin.find_user_by_email(email)
    if existing is not None:
        logger.info(f"Auth user for {email} exists, updating password")
        identity = await admin.update_user(existing.subject_id, password=password, email_confirm=True)
    else:
        logger.info(f"Creating auth user for {email}")
        identity = await admin.create_user(
            email,
            password,
            metadata={"full_name": full_name, "role": Role.SUPER_ADMIN.value},
        )

    profile = await db.upsert_super_admin(identity.subject_id, email, full_name)

    if login_check is not None:
        await login_check.sign_in(email, password)
        await login_check.sign_out()
        logger.info("Login check passed")

    return profile


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provision the Kitchen POS super-admin account")
    parser.add_argument("--email", required=True, help="Super-admin email address")
    parser.add_argument("--password", help="Password to set (default: env or prompt)")
    parser.add_argument("--full-name", default=DEFAULT_FULL_NAME, help="Display name for a new profile")
    parser.add_argument("--skip-login-check", action="store_true", help="Do not verify by signing in")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    password = args.password or os.getenv("KITCHEN_POS_ADMIN_PASSWORD") or getpass.getpass("Password: ")
    if not password:
        logger.error("A password is required")
        return 2

    try:
        admin = SupabaseAdminClient()
    except ValueError as e:
        logger.error(str(e))
        return 2

    login_check = None if args.skip_login_check else SupabaseCredentialStore()

    try:
        profile = asyncio.run(
            setup_super_admin(
                admin,
                DatabaseClient(client=admin.client),
                args.email,
                password,
                full_name=args.full_name,
                login_check=login_check,
            )
        )
    except Exception as e:
        logger.error(f"Error setting up super admin: {e}")
        return 1

    logger.info(f"Super admin ready: {profile.email} (profile {profile.id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
