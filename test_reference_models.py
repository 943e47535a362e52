"""
Reference Model Tests

Validates the reference model catalogue and graph queries.
"""

import pytest


class TestCatalogue:
    """Test the built-in reference processes."""

    def test_all_processes_registered(self):
        from process_mining.reference_models import get_default_registry
        registry = get_default_registry()
        assert registry.list_ids() == ["O2C", "P2P", "R2R", "A2R", "H2R", "P2M", "M2S"]
        assert "O2C" in registry
        assert "XYZ" not in registry
        assert registry.get("XYZ") is None

    def test_builtin_models_are_valid(self):
        from process_mining.reference_catalog import BUILTIN_MODELS
        for model in BUILTIN_MODELS:
            assert model.validate() is model
            assert model.start_activities
            assert model.end_activities

    def test_o2c_billing_shortcuts(self):
        from process_mining.reference_models import get_default_registry
        o2c = get_default_registry().get("O2C")
        assert o2c.is_valid_transition("Create Delivery", "Create Invoice")
        assert o2c.is_valid_transition("Create Invoice", "Payment Received")
        assert not o2c.is_valid_transition("Payment Received", "Create Sales Order")

    def test_list_models(self):
        from process_mining.reference_models import get_default_registry
        entries = {m["id"]: m for m in get_default_registry().list_models()}
        assert entries["O2C"]["name"] == "Order to Cash"
        assert entries["O2C"]["activities"] == 15
        assert entries["O2C"]["slaTargets"] > 0


class TestGraphQueries:
    """Test successor, path and SLA lookups."""

    @pytest.fixture
    def o2c(self):
        from process_mining.reference_models import get_default_registry
        return get_default_registry().get("O2C")

    def test_successors_and_predecessors(self, o2c):
        assert "Credit Check" in o2c.get_successors("Create Sales Order")
        assert "Goods Issue" in o2c.get_predecessors("Create Invoice")

    def test_start_and_end(self, o2c):
        assert o2c.is_start_activity("Create Sales Order")
        assert o2c.is_end_activity("Clear Invoice")
        assert not o2c.is_end_activity("Pick")

    def test_shortest_path(self, o2c):
        assert o2c.shortest_path("Pick", "Goods Issue") == ["Pick", "Pack", "Goods Issue"]
        assert o2c.shortest_path("Pick", "Pick") == ["Pick"]
        assert o2c.shortest_path("Clear Invoice", "Pick") is None
        assert o2c.shortest_path("Create Delivery", "Goods Issue", max_steps=2) is None

    def test_critical_path_runs_start_to_end(self, o2c):
        path = o2c.get_critical_path()
        assert path[0] == "Create Sales Order"
        assert path[-1] in o2c.end_activities
        for a, b in zip(path, path[1:]):
            assert o2c.is_valid_transition(a, b)

    def test_sla_target(self, o2c):
        sla = o2c.get_sla_target("Create Invoice", "Payment Received")
        assert sla.target == 30
        assert sla.unit == "days"
        assert sla.bound_ms == 30 * 24 * 3600 * 1000
        assert o2c.get_sla_target("Pick", "Pack") is None


class TestValidationAndSerialization:
    """Test malformed models and the wire form."""

    def test_null_sets_rejected(self):
        from process_mining.reference_models import ReferenceModel, ReferenceModelInvalidError
        model = ReferenceModel.from_dict({"id": "BAD", "activities": None, "edges": None})
        assert model.activities is None
        with pytest.raises(ReferenceModelInvalidError, match="activities is null"):
            model.validate()

    def test_edge_to_unknown_activity_rejected(self):
        from process_mining.reference_models import ReferenceModel, ReferenceModelInvalidError
        model = ReferenceModel.from_dict({
            "id": "BAD",
            "activities": ["A"],
            "edges": [{"from": "A", "to": "B"}],
        })
        with pytest.raises(ReferenceModelInvalidError):
            model.validate()

    def test_unknown_edge_type_rejected(self):
        from process_mining.reference_models import ReferenceModel, ReferenceModelInvalidError
        model = ReferenceModel.from_dict({
            "id": "BAD",
            "activities": ["A", "B"],
            "edges": [{"from": "A", "to": "B", "type": "teleport"}],
        })
        with pytest.raises(ReferenceModelInvalidError, match="teleport"):
            model.validate()

    def test_malformed_wire_form_rejected(self):
        from process_mining.reference_models import ReferenceModel, ReferenceModelInvalidError
        with pytest.raises(ReferenceModelInvalidError, match="malformed"):
            ReferenceModel.from_dict({"id": "BAD", "activities": ["A", "B"], "edges": [["A", "B"]]})
        with pytest.raises(ReferenceModelInvalidError, match="Unknown SLA unit"):
            ReferenceModel.from_dict({"activities": ["A"], "edges": [],
                                      "slaTargets": {"A": {"target": 1, "unit": "weeks"}}})
        with pytest.raises(ReferenceModelInvalidError) as exc_info:
            ReferenceModel.from_dict({"id": "BAD", "slaTargets": {"A": {"target": "soon"}}})
        assert exc_info.value.model_id == "BAD"

    def test_round_trip(self):
        from process_mining.reference_models import ReferenceModel, get_default_registry
        o2c = get_default_registry().get("P2P")
        rebuilt = ReferenceModel.from_dict(o2c.to_dict())
        assert rebuilt.edge_set() == o2c.edge_set()
        assert rebuilt.sla_targets == o2c.sla_targets
        assert rebuilt.start_activities == o2c.start_activities

    def test_sla_coerce(self):
        from process_mining.reference_models import SLATarget
        assert SLATarget.coerce(5000).bound_ms == 5000
        assert SLATarget.coerce({"target": 2, "unit": "hours"}).bound_ms == 2 * 3600 * 1000
        with pytest.raises(ValueError):
            SLATarget.coerce("soon")
        with pytest.raises(ValueError):
            SLATarget(target=1, unit="fortnights")

    def test_registry_rejects_invalid_model(self):
        from process_mining.reference_models import (
            ReferenceModel, ReferenceModelInvalidError, ReferenceModelRegistry,
        )
        registry = ReferenceModelRegistry()
        with pytest.raises(ReferenceModelInvalidError):
            registry.register(ReferenceModel(id="X", name="X", activities=None))
