from datetime import datetime

import mongomock
import pytest

from gateway import EntityStoreGateway
from schemas import UserProfile


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["agriportal_test"]


@pytest.fixture
def gateway(mongo_db):
    return EntityStoreGateway(mongo_db)


@pytest.fixture
def farmer():
    return UserProfile(
        id="farmer-ravi",
        email="ravi@example.com",
        name="Ravi Kumar",
        region="Punjab",
        crop_interests=["Rice", "Wheat"],
    )


@pytest.fixture
def other_farmer():
    return UserProfile(id="farmer-meena", email="meena@example.com", name="Meena Devi", region="Haryana")


@pytest.fixture
def admin():
    return UserProfile(id="admin-1", email="admin@example.com", name="Portal Admin", role="admin")


@pytest.fixture
def seed_users(mongo_db, farmer, other_farmer, admin):
    for profile in (farmer, other_farmer, admin):
        doc = profile.model_dump(exclude={"id"})
        doc["_id"] = profile.id
        mongo_db.users.insert_one(doc)


@pytest.fixture
def add_scheme(mongo_db):
    def _add(title, eligibility="", deadline=datetime(2025, 12, 31), status="active"):
        result = mongo_db.schemes.insert_one({
            "title": title,
            "description": f"{title} description",
            "eligibility": eligibility,
            "benefits": "Subsidy",
            "deadline": deadline,
            "status": status,
        })
        return str(result.inserted_id)
    return _add


@pytest.fixture
def add_application(mongo_db):
    def _add(farmer_id, applied_at, status="pending", scheme_id="scheme-1", farmer_name="Someone"):
        result = mongo_db.applications.insert_one({
            "farmer_id": farmer_id,
            "farmer_name": farmer_name,
            "scheme_id": scheme_id,
            "scheme_name": "PM-KISAN",
            "status": status,
            "land_size": 2.5,
            "crop_type": "Wheat",
            "details": "",
            "applied_at": applied_at,
        })
        return str(result.inserted_id)
    return _add
