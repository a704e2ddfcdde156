"""Tests for ID generation"""
from approval_engine.utils.idgen import (
    generate_approval_id, generate_correlation_id, generate_id, generate_instance_id,
    generate_template_id
)


def test_prefixes():
    assert generate_template_id().startswith("WFT-")
    assert generate_instance_id().startswith("WFI-")
    assert generate_approval_id().startswith("APR-")
    assert generate_correlation_id().startswith("COR-")


def test_ids_are_unique():
    assert len({generate_id() for _ in range(1000)}) == 1000


def test_unprefixed_id():
    assert len(generate_id()) == 12
