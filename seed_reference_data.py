"""
Seed Reference Data
Creates the municipal areas and departments issues are routed through.
Safe to run repeatedly: existing rows (matched by name) are left untouched.
"""
import os
import sys

# Add the app directory to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sqlalchemy.orm import Session
from app.database import SessionLocal, engine, Base
from app.models import Area, Department

AREAS = [
    {"name": "Central Ward", "district": "Central", "state": "Metro"},
    {"name": "North Ward", "district": "North", "state": "Metro"},
    {"name": "South Ward", "district": "South", "state": "Metro"},
    {"name": "East Ward", "district": "East", "state": "Metro"},
    {"name": "West Ward", "district": "West", "state": "Metro"},
]

DEPARTMENTS = [
    {"name": "Public Works - Roads", "category": "roads"},
    {"name": "Water & Utilities", "category": "utilities"},
    {"name": "Environment & Sanitation", "category": "environment"},
    {"name": "Public Safety", "category": "safety"},
    {"name": "Parks & Recreation", "category": "parks"},
    {"name": "General Services", "category": "other"},
]


def seed_reference_data():
    """Create areas and departments"""
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()

    try:
        created_areas = 0
        for area_data in AREAS:
            if db.query(Area).filter(Area.name == area_data["name"]).first():
                print(f"  - Area exists: {area_data['name']}")
                continue
            db.add(Area(**area_data))
            created_areas += 1
            print(f"  + Area: {area_data['name']}")

        created_departments = 0
        for dept_data in DEPARTMENTS:
            if db.query(Department).filter(Department.name == dept_data["name"]).first():
                print(f"  - Department exists: {dept_data['name']}")
                continue
            db.add(Department(is_active=True, **dept_data))
            created_departments += 1
            print(f"  + Department: {dept_data['name']}")

        db.commit()
        print(f"\nSeeded {created_areas} areas and {created_departments} departments")

    except Exception as e:
        db.rollback()
        print(f"ERROR: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_reference_data()
