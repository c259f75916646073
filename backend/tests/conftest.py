# tests/conftest.py
import os

# Settings are read at import time, so these must be in place before the app loads
os.environ["SECRET_KEY"] = "testing_secret_key_for_development_only"
os.environ["DISABLE_RATE_LIMIT"] = "1"
os.environ["ENSURE_INDEXES"] = "0"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("REDIS_URL", None)

import pytest
from datetime import datetime
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient
from app.db import init_db
from app.services.auth_service import create_access_token, hash_password
from main import app

PASSWORD = "secret123"

mock_db = AsyncMongoMockClient()["qced_test"]
init_db(app, mock_db)


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def run(client):
    """Run a coroutine on the app's event loop."""
    def _run(fn, *args, **kwargs):
        return client.portal.call(lambda: fn(*args, **kwargs))
    return _run


@pytest.fixture
def db():
    return mock_db


@pytest.fixture(autouse=True)
def clean_db(client):
    async def wipe():
        for name in await mock_db.list_collection_names():
            await mock_db[name].delete_many({})
    client.portal.call(wipe)
    yield


@pytest.fixture
def make_department(run):
    async def _insert(name, code=None, head=None, **extra):
        now = datetime.utcnow()
        doc = {
            "name": name,
            "level": "department",
            "head": head,
            "isActive": True,
            "createdAt": now,
            "updatedAt": now,
            **extra,
        }
        if code:
            doc["organizationalCode"] = code
        result = await mock_db["departments"].insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    return lambda *args, **kwargs: run(_insert, *args, **kwargs)


@pytest.fixture
def make_user(run):
    counter = {"n": 0}

    async def _insert(role="employee", department=None, **extra):
        counter["n"] += 1
        n = counter["n"]
        now = datetime.utcnow()
        doc = {
            "firstName": extra.pop("firstName", role.capitalize()),
            "lastName": extra.pop("lastName", f"User{n}"),
            "email": extra.pop("email", f"{role}{n}@qcc.com.sa"),
            "extension": extra.pop("extension", str(2000 + n)),
            "password": hash_password(extra.pop("password", PASSWORD)),
            "role": role,
            "department": department,
            "position": extra.pop("position", role.capitalize()),
            "employeeCode": f"EMP-{n:06d}",
            "isActive": extra.pop("isActive", True),
            "loginAttempts": 0,
            "accountLocked": False,
            "createdAt": now,
            "updatedAt": now,
            **extra,
        }
        result = await mock_db["users"].insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    return lambda *args, **kwargs: run(_insert, *args, **kwargs)


def auth_headers(user: dict) -> dict:
    token = create_access_token({"sub": str(user["_id"]), "role": user["role"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def org(make_department, make_user, run):
    """Two departments with an admin, an HR officer, a manager heading
    IT and employees in both departments."""
    it = make_department("Information Technology", code="IT-01")
    finance = make_department("Finance", code="FIN-01")
    admin_dept = make_department("Administration", code="ADM-01")

    admin = make_user("admin", admin_dept["_id"], firstName="Sara", lastName="Admin", extension="1000")
    hr = make_user("hr", admin_dept["_id"], firstName="Huda", lastName="Hr")
    manager = make_user("manager", it["_id"], firstName="Majed", lastName="Manager")
    employee = make_user("employee", it["_id"], firstName="Omar", lastName="Ali")
    colleague = make_user("employee", it["_id"], firstName="Nora", lastName="Saleh")
    outsider = make_user("employee", finance["_id"], firstName="Faisal", lastName="Qasim")

    async def set_head():
        await mock_db["departments"].update_one({"_id": it["_id"]}, {"$set": {"head": manager["_id"]}})
    run(set_head)
    it["head"] = manager["_id"]

    return {
        "departments": {"it": it, "finance": finance, "admin": admin_dept},
        "users": {
            "admin": admin, "hr": hr, "manager": manager,
            "employee": employee, "colleague": colleague, "outsider": outsider,
        },
        "headers": {
            "admin": auth_headers(admin), "hr": auth_headers(hr), "manager": auth_headers(manager),
            "employee": auth_headers(employee), "colleague": auth_headers(colleague),
            "outsider": auth_headers(outsider),
        },
    }
