# tests/conftest.py
import os
import tempfile

# Settings are read at import time
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("ENABLE_REDIS_CACHE", "false")
os.environ.setdefault("USE_LOCAL_DB", "true")
os.environ.setdefault("INSPECTOR_STORAGE_PATH", tempfile.mkdtemp(prefix="tablecraft-inspector-"))

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tablecraft.compiler.actions import RouteInfo
from tablecraft.compiler.context import ContextAdapter
from tablecraft.models.descriptor import (
    ActionConfig, ColumnSpec, FormulaPlacement, FormulaSpec, RelationSpec, TableDescriptor,
)
from tablecraft.parity.inspector import Inspector, InspectorConfig

SCHEMA = [
    "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL, email TEXT)",
    "CREATE TABLE orders ("
    " id INTEGER PRIMARY KEY,"
    " user_id INTEGER REFERENCES users(id),"
    " amount INTEGER,"
    " tax INTEGER,"
    " active INTEGER,"
    " note TEXT,"
    " deleted_at TEXT)",
]

USERS = [
    {"id": 1, "name": "alice", "email": "alice@example.com"},
    {"id": 2, "name": "bob", "email": "bob@example.com"},
]

ORDERS = [
    {"id": 1, "user_id": 1, "amount": 100, "tax": 10, "active": 1, "note": "first", "deleted_at": None},
    {"id": 2, "user_id": 2, "amount": 250, "tax": 25, "active": 0, "note": "second", "deleted_at": "2024-01-01"},
    {"id": 3, "user_id": 1, "amount": 75, "tax": 5, "active": 1, "note": "third", "deleted_at": None},
]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    with engine.begin() as conn:
        for statement in SCHEMA:
            conn.execute(text(statement))
        conn.execute(text("INSERT INTO users (id, name, email) VALUES (:id, :name, :email)"), USERS)
        conn.execute(
            text(
                "INSERT INTO orders (id, user_id, amount, tax, active, note, deleted_at) "
                "VALUES (:id, :user_id, :amount, :tax, :active, :note, :deleted_at)"
            ),
            ORDERS
        )
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = sessionmaker(bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user_relation():
    return RelationSpec(
        alias_field="user_name",
        display_field="users.name",
        foreign_key={"users.id": "orders.user_id"}
    )


@pytest.fixture
def orders_descriptor(user_relation):
    return TableDescriptor(
        name="orders",
        columns=[
            ColumnSpec(field="id"),
            ColumnSpec(field="user_name"),
            ColumnSpec(field="amount"),
            ColumnSpec(field="tax"),
            ColumnSpec(field="active"),
        ],
        relations=[user_relation],
        formulas=[
            FormulaSpec(
                name="total",
                source_fields=["amount", "tax"],
                logic="+",
                placement=FormulaPlacement(anchor="last", after=True)
            )
        ],
        actions=ActionConfig(removed_verbs=["insert"]),
        clickable=True,
        numbering=True
    )


@pytest.fixture
def route():
    return RouteInfo(route_name="admin.orders.index", request_path="/api/v1/datatables/orders")


@pytest.fixture
def make_context(orders_descriptor, route):
    adapter = ContextAdapter()

    def _make(params=None, descriptor=None, **kwargs):
        params = params if params is not None else {"draw": "1", "start": "0", "length": "10"}
        return adapter.adapt(params, descriptor or orders_descriptor, route=kwargs.pop("route", route), **kwargs)

    return _make


@pytest.fixture
def inspector(tmp_path):
    return Inspector(InspectorConfig(enabled=True, storage_path=tmp_path / "inspector"))
