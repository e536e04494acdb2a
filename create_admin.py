# create_admin.py
"""Create the first admin account. Run from the project root: ``python create_admin.py``."""
import asyncio
from getpass import getpass

from pymongo.errors import PyMongoError

from driveflow.core.config import DATABASE_NAME
from driveflow.core.security import get_password_hash
from driveflow.db.database import close_db, init_db
from driveflow.models.enum import UserRole
from driveflow.models.user import User


def prompt_password() -> str:
    while True:
        password = getpass("Enter admin password: ")
        if len(password) < 6:
            print("Password must be at least 6 characters.")
            continue
        if password == getpass("Confirm admin password: "):
            return password
        print("Passwords do not match. Please try again.")


async def create_initial_admin():
    print("--- Create Initial Admin User ---")
    try:
        await init_db()
    except PyMongoError as e:
        print(f"Error connecting to database: {e}")
        return
    print(f"Connected to database: {DATABASE_NAME}")

    try:
        while True:
            username = input("Enter admin username: ").strip()
            if username:
                break
            print("Username cannot be empty.")

        if await User.find_one(User.username == username):
            print(f"Error: Username '{username}' already exists.")
            return

        password = prompt_password()
        email = input("Enter admin email (optional, press Enter to skip): ").strip() or None
        full_name = input("Enter admin full name (optional, press Enter to skip): ").strip() or None

        admin_user = User(
            username=username,
            email=email,
            full_name=full_name,
            hashed_password=get_password_hash(password),
            role=UserRole.ADMIN,
            is_approved=True,
            disabled=False,
        )
        try:
            await admin_user.insert()
        except PyMongoError as e:
            print(f"Error saving admin user to database: {e}")
            return
        print(f"Admin user '{username}' created successfully!")
    finally:
        close_db()
        print("Database connection closed.")


if __name__ == "__main__":
    asyncio.run(create_initial_admin())
