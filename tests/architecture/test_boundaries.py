from pytest_archon import archrule


def test_domain_isolation() -> None:
    """
    Domain layer should be self-contained.
    It must not import from ports, adapters, the saga core or the boundary.
    """
    (
        archrule("domain_isolation")
        .match("order_saga.domain*")
        .should_not_import("order_saga.ports*")
        .should_not_import("order_saga.adapters*")
        .should_not_import("order_saga.saga*")
        .should_not_import("order_saga.service")
        .should_not_import("order_saga.bootstrap")
        .check("order_saga")
    )


def test_ports_layering() -> None:
    """
    Ports (interfaces) should not depend on Adapters (implementations).
    """
    (
        archrule("ports_layering")
        .match("order_saga.ports*")
        .should_not_import("order_saga.adapters*")
        .check("order_saga")
    )


def test_saga_core_adapter_independence() -> None:
    """
    The saga core talks to storage, workers and metrics only through ports.
    Adapters are plugins and are wired in by the bootstrap.
    """
    (
        archrule("saga_core_isolation")
        .match("order_saga.saga*")
        .should_not_import("order_saga.adapters*")
        .should_not_import("order_saga.bootstrap")
        .should_not_import("order_saga.service")
        .check("order_saga")
    )


def test_core_is_persistence_agnostic() -> None:
    """
    Only the SQLAlchemy adapter package may import sqlalchemy.
    """
    (
        archrule("persistence_agnostic_core")
        .match("order_saga.domain*")
        .match("order_saga.ports*")
        .match("order_saga.saga*")
        .should_not_import("sqlalchemy*")
        .check("order_saga")
    )
