"""Tests for council configuration loading."""

from sqlalchemy.exc import OperationalError

from ascendancy import config
from ascendancy.council_config import load_council, save_council
from ascendancy.models import CouncilBinding, DEFAULT_COUNCIL


class BrokenStore:
    def list_documents(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))


class TestLoadCouncil:
    """Tests for load_council."""

    def test_no_documents_yields_defaults(self, store):
        council = load_council(store)
        assert council == DEFAULT_COUNCIL

    def test_default_roles_are_distinct_and_non_empty(self, store):
        council = load_council(store)
        models = list(council.to_dict().values())
        assert all(models)
        assert len(set(models)) == 3

    def test_partial_record_filled_per_role(self, store):
        store.create_document(config.COLLECTIONS["council_config"], {
            "configId": "default",
            "moderatorModel": "gpt-4o",
            "skepticModel": "",
            "visionaryModel": None,
        })
        council = load_council(store)
        assert council.moderator == "gpt-4o"
        assert council.skeptic == DEFAULT_COUNCIL.skeptic
        assert council.visionary == DEFAULT_COUNCIL.visionary

    def test_user_config_overrides_shared_default(self, store):
        save_council(store, CouncilBinding("a", "b", "c"), config_id="default")
        save_council(store, CouncilBinding("x", "y", "z"), config_id="user-1")

        assert load_council(store, "user-1") == CouncilBinding("x", "y", "z")
        assert load_council(store, "user-2") == CouncilBinding("a", "b", "c")

    def test_newest_record_wins(self, store):
        save_council(store, CouncilBinding("a", "b", "c"), config_id="user-1")
        save_council(store, CouncilBinding("d", "e", "f"), config_id="user-1")
        assert load_council(store, "user-1") == CouncilBinding("d", "e", "f")

    def test_store_failure_yields_defaults(self):
        assert load_council(BrokenStore(), "user-1") == DEFAULT_COUNCIL

    def test_injected_defaults(self, store):
        custom = CouncilBinding("m", "s", "v")
        assert load_council(store, defaults=custom) == custom
