from __future__ import annotations
from decimal import Decimal
from sqlalchemy.orm import Session
from sqlalchemy import select
from app.config import get_settings
from app.db import SessionLocal, engine, Base
from app.models import Department, Journal, Publication, Role, User
from app.security import hash_password

DEPARTMENTS = [
    ("Cardiology", "CARDIO", "Cardiovascular medicine"),
    ("Neurology", "NEURO", "Neurology and neurosurgery"),
    ("Oncology", "ONCO", "Medical and radiation oncology"),
]

JOURNALS = [
    ("Nature Medicine", "1078-8956", "58.7", "Q1", "MEDICINE, RESEARCH & EXPERIMENTAL", "Nature Portfolio", 2024),
    ("Circulation", "0009-7322", "35.5", "Q1", "CARDIAC & CARDIOVASCULAR SYSTEMS", "Lippincott Williams & Wilkins", 2024),
    ("Journal of Neurology", "0340-5354", "4.8", "Q2", "CLINICAL NEUROLOGY", "Springer", 2024),
    ("BMC Cancer", "1471-2407", "3.4", "Q3", "ONCOLOGY", "BMC", 2024),
]


def ensure_admin(db: Session) -> User:
    s = get_settings()
    admin = db.execute(select(User).where(User.username == s.ADMIN_USERNAME)).scalar_one_or_none()
    if admin:
        print(f"Admin '{admin.username}' already present.")
        return admin
    admin = User(
        username=s.ADMIN_USERNAME,
        email=s.ADMIN_EMAIL,
        password_hash=hash_password(s.ADMIN_PASSWORD),
        role=Role.ADMIN.value,
        is_active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    print(f"Created admin '{admin.username}'. Change the password after first login.")
    return admin


def ensure_demo_data(db: Session, admin: User):
    # Check if any publications exist
    existing = db.execute(select(Publication.id)).first()
    if existing:
        print("Demo data already present. Skipping.")
        return

    depts = {}
    for name, code, description in DEPARTMENTS:
        d = db.execute(select(Department).where(Department.code == code)).scalar_one_or_none()
        if d is None:
            d = Department(name=name, code=code, description=description)
            db.add(d)
        depts[code] = d

    journals = []
    for name, issn, impact, quartile, category, publisher, year in JOURNALS:
        j = Journal(name=name, issn=issn, impact_factor=Decimal(impact), quartile=quartile,
                    category=category, publisher=publisher, year=year)
        db.add(j)
        journals.append(j)
    db.flush()

    db.add(User(
        username="cardioadmin",
        email="cardio.admin@hospital.local",
        password_hash=hash_password("cardio123"),
        role=Role.DEPARTMENT_ADMIN.value,
        department_id=depts["CARDIO"].id,
        is_active=True,
    ))

    p1 = Publication(
        title="Long-term outcomes of catheter ablation in elderly patients",
        authors="Zhang San; Li Si",
        journal_id=journals[1].id,
        department_id=depts["CARDIO"].id,
        user_id=admin.id,
        publish_year=2024,
        doi="10.1161/demo.2024.001",
        document_type="Article",
    )
    p2 = Publication(
        title="Early biomarkers of post-stroke cognitive decline",
        authors="Wang Wu",
        journal_id=journals[2].id,
        department_id=depts["NEURO"].id,
        user_id=admin.id,
        publish_year=2023,
        document_type="Article",
    )
    db.add_all([p1, p2])
    db.commit()
    print(f"Inserted demo data: {len(depts)} departments, {len(journals)} journals, 2 publications, 1 department admin.")


def main():
    # Ensure tables exist
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        admin = ensure_admin(db)
        ensure_demo_data(db, admin)
    finally:
        db.close()


if __name__ == "__main__":
    main()
