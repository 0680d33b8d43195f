"""Tests for SecretStore, StoreView and VaultRegistry."""
import pytest

from legacy_vault import exceptions as exc
from legacy_vault import models
from legacy_vault.utils import seconds
from legacy_vault.vault.registry import VaultRegistry
from legacy_vault.vault.store import SecretStore, StoreView


@pytest.fixture
def store(clock):
    """A store for alice holding at most three secrets."""
    return SecretStore("alice", clock=clock, max_secrets=3)


class TestSecretStoreAdd:
    """Tests for adding secrets."""

    def test_add_and_get(self, store, clock, make_secret, make_material):
        """Test an added secret is stamped and readable."""
        clock.advance(seconds(1))
        stored = store.add_secret(make_secret("s1"), make_material())
        assert stored.owner == "alice"
        assert stored.date_created == stored.date_modified == clock.now()
        assert "s1" in store
        assert len(store) == 1
        assert store.get_secret("s1") == stored
        assert store.get_decryption_material("s1") == make_material()
        assert store.date_modified == clock.now()

    def test_owner_is_stamped(self, store, make_secret, make_material):
        """Test the store owner overrides the given owner."""
        secret = make_secret("s1").model_copy(update={"owner": "mallory"})
        assert store.add_secret(secret, make_material()).owner == "alice"

    def test_duplicate_leaves_store_unchanged(self, store, make_secret, make_material):
        """Test a duplicate id changes nothing."""
        store.add_secret(make_secret("s1", name="first"), make_material(b"a"))
        before = store.export_state()
        with pytest.raises(exc.SecretAlreadyExists):
            store.add_secret(make_secret("s1", name="second"), make_material(b"b"))
        assert store.export_state() == before
        assert store.get_secret("s1").name == "first"

    def test_limit(self, store, make_secret, make_material):
        """Test the per-store secret cap."""
        for i in range(3):
            store.add_secret(make_secret(f"s{i}"), make_material())
        with pytest.raises(exc.SecretLimitExceeded):
            store.add_secret(make_secret("s9"), make_material())
        assert len(store) == 3

    def test_returned_copies_are_detached(self, store, make_secret, make_material):
        """Test callers cannot edit stored secrets through copies."""
        returned = store.add_secret(make_secret("s1"), make_material())
        returned.name = "changed"
        store.get_secret("s1").name = "changed again"
        assert store.get_secret("s1").name == "bank"


class TestSecretStoreUpdate:
    """Tests for updating and re-keying secrets."""

    def test_update_keeps_creation_date(self, store, clock, make_secret, make_material):
        """Test an update keeps date_created and the key."""
        created = store.add_secret(make_secret("s1"), make_material())
        clock.advance(seconds(5))
        updated = store.update_secret(make_secret("s1", name="renamed"))
        assert updated.name == "renamed"
        assert updated.date_created == created.date_created
        assert updated.date_modified == clock.now()
        assert store.get_decryption_material("s1") == make_material()

    def test_update_missing(self, store, make_secret):
        """Test updating an unknown secret fails."""
        with pytest.raises(exc.SecretNotFound):
            store.update_secret(make_secret("nope"))
        assert len(store) == 0

    def test_rekey(self, store, clock, make_secret, make_material):
        """Test replacing the decryption material."""
        store.add_secret(make_secret("s1"), make_material(b"a"))
        clock.advance(seconds(1))
        store.update_decryption_material("s1", make_material(b"b"))
        assert store.get_decryption_material("s1") == make_material(b"b")
        assert store.get_secret("s1").date_modified == clock.now()

    def test_rekey_missing(self, store, make_material):
        """Test re-keying an unknown secret fails."""
        with pytest.raises(exc.SecretNotFound):
            store.update_decryption_material("nope", make_material())

    def test_edit_secret(self, store, make_secret, make_material):
        """Test edits are saved on a clean exit."""
        store.add_secret(make_secret("s1"), make_material())
        with store.edit_secret("s1") as draft:
            draft.url = "https://other.example"
        assert store.get_secret("s1").url == "https://other.example"

    def test_edit_secret_discarded_on_error(self, store, make_secret, make_material):
        """Test edits are dropped when the block raises."""
        store.add_secret(make_secret("s1"), make_material())
        with pytest.raises(RuntimeError):
            with store.edit_secret("s1") as draft:
                draft.url = "https://other.example"
                raise RuntimeError("abort")
        assert store.get_secret("s1").url == "https://bank.example"

    def test_edit_secret_id_is_immutable(self, store, make_secret, make_material):
        """Test the id cannot be changed while editing."""
        store.add_secret(make_secret("s1"), make_material())
        with pytest.raises(ValueError):
            with store.edit_secret("s1") as draft:
                draft.id = "s2"
        assert "s2" not in store

    def test_dates_never_go_backwards(self, make_secret, make_material):
        """Test dates stay ordered with a rewinding clock."""
        class Rewinding:
            values = iter([100, 50, 40, 30, 20])

            def now(self):
                return next(self.values)

        store = SecretStore("alice", clock=Rewinding())
        store.add_secret(make_secret("s1"), make_material())
        updated = store.update_secret(make_secret("s1", name="x"))
        assert updated.date_modified >= updated.date_created
        assert store.date_modified >= store.date_created


class TestSecretStoreRemoveAndList:
    """Tests for removing and listing secrets."""

    def test_remove_drops_both_entries(self, store, make_secret, make_material):
        """Test removal drops the secret and its key."""
        store.add_secret(make_secret("s1"), make_material())
        store.remove_secret("s1")
        assert "s1" not in store
        with pytest.raises(exc.SecretNotFound):
            store.get_decryption_material("s1")
        store.check_invariants()

    def test_remove_missing(self, store):
        """Test removing an unknown secret fails."""
        with pytest.raises(exc.SecretNotFound):
            store.remove_secret("nope")

    def test_list_is_sorted_and_non_sensitive(self, store, make_secret, make_material):
        """Test listings are sorted and carry no ciphertext."""
        for secret_id in ("b", "c", "a"):
            store.add_secret(make_secret(secret_id), make_material())
        entries = list(store.list())
        assert [e.id for e in entries] == ["a", "b", "c"]
        assert all(isinstance(e, models.SecretListEntry) for e in entries)
        assert "encrypted_password" not in entries[0].model_dump()
        assert store.secret_ids() == ["a", "b", "c"]

    def test_inconsistent_key_box_detected(self, store, make_secret, make_material):
        """Test a secret without a key is reported."""
        store.add_secret(make_secret("s1"), make_material())
        store._key_box.clear()
        with pytest.raises(exc.KeyBoxInconsistency):
            store.get_decryption_material("s1")
        with pytest.raises(exc.KeyBoxInconsistency):
            store.check_invariants()
        assert not isinstance(exc.KeyBoxInconsistency("x"), exc.LegacyVaultError)


class TestStoreView:
    """Tests for the read-only store view."""

    def test_read_only(self, store, make_secret, make_material):
        """Test the view reads but cannot write."""
        store.add_secret(make_secret("s1"), make_material())
        view = StoreView(store)
        assert view.owner == "alice"
        assert len(view) == 1
        assert "s1" in view
        assert view.get_secret("s1").id == "s1"
        assert [e.id for e in view.list()] == ["s1"]
        assert not hasattr(view, "add_secret")
        assert not hasattr(view, "remove_secret")


class TestVaultRegistry:
    """Tests for the per-user vault registry."""

    def test_get_or_create(self, registry):
        """Test the same store is returned on each call."""
        first = registry.get_or_create_store("alice")
        assert registry.get_or_create_store("alice") is first
        assert "alice" in registry
        assert len(registry) == 1

    def test_readonly_missing_is_none(self, registry):
        """Test read-only lookup never creates a store."""
        assert registry.get_store_readonly("ghost") is None
        assert "ghost" not in registry

    def test_get_store_missing(self, registry):
        """Test strict lookup of an unknown user fails."""
        with pytest.raises(exc.VaultNotFound):
            registry.get_store("ghost")

    def test_create_twice(self, registry):
        """Test a user cannot be created twice."""
        registry.create_store("alice")
        with pytest.raises(exc.UserAlreadyExists):
            registry.create_store("alice")

    def test_delete(self, registry, make_secret, make_material):
        """Test deleting a store, then deleting it again."""
        registry.get_or_create_store("alice").add_secret(make_secret(), make_material())
        registry.delete_store("alice")
        assert registry.get_store_readonly("alice") is None
        with pytest.raises(exc.VaultNotFound):
            registry.delete_store("alice")

    def test_stores_are_isolated(self, registry, make_secret, make_material):
        """Test users never share secrets."""
        registry.get_or_create_store("alice").add_secret(make_secret("s1"), make_material())
        bob = registry.get_or_create_store("bob")
        assert "s1" not in bob
        assert list(registry.identities()) == ["alice", "bob"]

    def test_limit_applies_per_user(self, clock, make_secret, make_material):
        """Test the cap counts each user separately."""
        registry = VaultRegistry(clock=clock, max_secrets_per_user=1)
        registry.get_or_create_store("alice").add_secret(make_secret("s1"), make_material())
        registry.get_or_create_store("bob").add_secret(make_secret("s1"), make_material())
        with pytest.raises(exc.SecretLimitExceeded):
            registry.get_store("alice").add_secret(make_secret("s2"), make_material())

    def test_export_restore(self, registry, clock, make_secret, make_material):
        """Test a registry export restores into a new registry."""
        registry.get_or_create_store("alice").add_secret(make_secret("s1"), make_material())
        state = registry.export_state()
        other = VaultRegistry(clock=clock)
        other.restore_state(state)
        assert other.get_store("alice").get_secret("s1") == registry.get_store(
            "alice"
        ).get_secret("s1")
        assert other.export_state() == state
