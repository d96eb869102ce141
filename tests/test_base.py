"""Module tests: org_archiver.base."""

from org_archiver.base import Base


def test_base_is_declarative_base():
    assert hasattr(Base, "metadata")
    assert hasattr(Base.metadata, "tables")


def test_base_metadata_has_models():
    from org_archiver import models, models_archive  # noqa: F401

    for table in ("archives", "orgs", "contacts", "channels", "flows", "msgs", "flow_runs"):
        assert table in Base.metadata.tables
