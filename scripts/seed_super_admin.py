#!/usr/bin/env python3
"""
Seed an operator into super_admins and print a bearer token for the admin API.

Reads SUPER_ADMIN_EMAIL plus the usual engine settings from .env.
Run from project root: python scripts/seed_super_admin.py
"""

import os
import sys

from dotenv import load_dotenv
load_dotenv()

from supabase import create_client
from tms_sync.auth import create_super_admin_token
from tms_sync.config import load_settings


def main():
    email = os.getenv("SUPER_ADMIN_EMAIL")
    if not email:
        print("Error: SUPER_ADMIN_EMAIL must be set in .env")
        sys.exit(1)

    settings = load_settings()
    supabase = create_client(settings.supabase_url, settings.supabase_service_role_key)

    existing = supabase.table("super_admins").select("id, email").eq("email", email).execute()
    if existing.data:
        super_admin = existing.data[0]
        print(f"Super-admin with email '{email}' already exists.")
    else:
        result = supabase.table("super_admins").insert({
            "email": email,
            "name": "Super Admin",
        }).execute()
        if not result.data:
            print("Error: Failed to create super-admin")
            sys.exit(1)
        super_admin = result.data[0]
        print("Created super-admin:")
        print(f"  ID: {super_admin['id']}")
        print(f"  Email: {super_admin['email']}")

    token = create_super_admin_token(settings, str(super_admin["id"]))
    print(f"\nBearer token (expires in {settings.jwt_expiration_minutes} minutes):\n{token}")


if __name__ == "__main__":
    main()
