import pytest
from sqlalchemy import select

from dataspace_portal.core.models import Tenant, decode_json, encode_json
from dataspace_portal.core.passwords import generate_temp_password, hash_password, verify_password
from dataspace_portal.core.projections import Page, TenantView
from dataspace_portal.db import init_db, make_engine, make_session_factory, session_scope


def test_hash_and_verify():
    hashed = hash_password("password123")
    assert hashed.startswith("$2")
    assert verify_password("password123", hashed)
    assert not verify_password("password124", hashed)


def test_generate_temp_password_is_random():
    assert len(generate_temp_password(24)) == 24
    assert generate_temp_password() != generate_temp_password()


def test_json_metadata_round_trip(session):
    session.add(Tenant(name="acmecorp", metadata_={"région": "EU", "tier": 2}))
    session.commit()
    session.expire_all()
    assert session.scalar(select(Tenant)).metadata_ == {"région": "EU", "tier": 2}


def test_encode_json_rejects_non_mapping():
    with pytest.raises(TypeError):
        encode_json(["a"])
    assert decode_json("") is None
    assert encode_json(None) is None


def test_session_scope_rolls_back(engine):
    factory = make_session_factory(engine)
    with pytest.raises(RuntimeError):
        with session_scope(factory) as session:
            session.add(Tenant(name="acmecorp"))
            session.flush()
            raise RuntimeError("abort")
    with session_scope(factory) as session:
        assert session.scalar(select(Tenant)) is None


def test_file_database_parent_created(tmp_path):
    url = f"sqlite:///{tmp_path / 'nested' / 'portal.db'}"
    engine = make_engine(url)
    init_db(engine)
    assert (tmp_path / "nested" / "portal.db").exists()
    engine.dispose()


def test_page_to_dict(session):
    session.add(Tenant(name="acmecorp"))
    session.commit()
    tenant = session.scalar(select(Tenant))
    page = Page([tenant], page=0, limit=1, total=3).map(TenantView.from_row)
    body = page.to_dict()
    assert body["pages"] == 3
    assert body["items"][0]["name"] == "acmecorp"
    assert body["items"][0]["externalId"] == tenant.external_id
