#!/usr/bin/env python3
"""
Utility script to reset a user's password or provision a staff account.
Staff roles (admin, area_super_admin, department_admin) cannot self-register.
Run from the project root:
    python reset_password.py
"""
import sys
import os

# Add the app to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.database import SessionLocal, engine, Base
from app.models import User, Area, Department
from app.utils.security import get_password_hash
from app.workflow_rules import Role, STAFF_ROLES

def list_users():
    """List all users in the database"""
    db = SessionLocal()
    try:
        users = db.query(User).order_by(User.id).all()
        if not users:
            print("\nNo users found in database.")
            return []

        print("\n=== Existing Users ===")
        for user in users:
            print(f"  ID: {user.id}, Email: {user.email}, Name: {user.name}, Role: {user.role}, "
                  f"Area: {user.assigned_area_id}, Department: {user.assigned_department_id}, Active: {user.is_active}")
        return users
    finally:
        db.close()

def reset_password(email: str, new_password: str):
    """Reset password for an existing user"""
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
        if not user:
            print(f"\nError: User with email '{email}' not found.")
            return False

        user.hashed_password = get_password_hash(new_password)
        user.is_active = True  # Ensure user is active
        db.commit()
        print(f"\nSuccess! Password reset for user: {email}")
        return True
    finally:
        db.close()

def create_staff(email: str, password: str, role: str, name: str = "Admin", scope_name: str = None):
    """Create a staff user; area/department admins are bound to an area/department by name"""
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            print(f"\nUser with email '{email}' already exists. Use reset option instead.")
            return False

        user = User(
            email=email,
            name=name,
            hashed_password=get_password_hash(password),
            is_active=True,
            is_verified=True,
            role=role
        )

        if role == Role.AREA_SUPER_ADMIN.value:
            area = db.query(Area).filter(Area.name == scope_name).first()
            if not area:
                print(f"\nError: Area '{scope_name}' not found. Run seed_reference_data.py first.")
                return False
            user.assigned_area_id = area.id
        elif role == Role.DEPARTMENT_ADMIN.value:
            department = db.query(Department).filter(Department.name == scope_name).first()
            if not department:
                print(f"\nError: Department '{scope_name}' not found. Run seed_reference_data.py first.")
                return False
            user.assigned_department_id = department.id

        db.add(user)
        db.commit()
        print(f"\nSuccess! Created {role} user: {email}")
        return True
    finally:
        db.close()

def main():
    Base.metadata.create_all(bind=engine)
    print("\n=== CivicFlow User Management ===")

    # First, list existing users
    users = list_users()

    print("\nOptions:")
    print("  1. Reset password for existing user")
    print("  2. Create staff user")
    print("  3. Exit")

    choice = input("\nEnter choice (1/2/3): ").strip()

    if choice == "1":
        if not users:
            print("No users to reset. Create a staff user instead.")
            choice = "2"
        else:
            email = input("Enter user email: ").strip()
            new_password = input("Enter new password: ").strip()
            if email and new_password:
                reset_password(email, new_password)
            else:
                print("Email and password are required.")

    if choice == "2":
        roles = [r.value for r in STAFF_ROLES]
        email = input("Enter staff email: ").strip()
        password = input("Enter password: ").strip()
        role = input(f"Enter role ({'/'.join(roles)}): ").strip() or Role.ADMIN.value
        name = input("Enter name (default: Admin): ").strip() or "Admin"
        scope_name = None
        if role == Role.AREA_SUPER_ADMIN.value:
            scope_name = input("Enter area name: ").strip()
        elif role == Role.DEPARTMENT_ADMIN.value:
            scope_name = input("Enter department name: ").strip()

        if role not in roles:
            print(f"Role must be one of: {', '.join(roles)}")
        elif email and password:
            create_staff(email, password, role, name, scope_name)
        else:
            print("Email and password are required.")

    if choice == "3":
        print("Goodbye!")

if __name__ == "__main__":
    main()
