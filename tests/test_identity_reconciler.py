"""Tests for IdentityReconciler: bootstrap, change stream, teardown."""

import asyncio

import pytest

from acwhisk.auth import SessionState
from acwhisk.errors import ProfileStoreError, SessionSourceError
from acwhisk.models.enums import UserRole
from acwhisk.models.user import ProfileRow
from acwhisk.services.identity_reconciler import IdentityReconciler

from tests.conftest import make_session


async def _drain(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _reconciler(source, resolver, store, logger, timeout=0.5):
    return IdentityReconciler(
        source=source,
        resolver=resolver,
        store=store,
        state=SessionState(),
        logger=logger,
        probe_timeout_s=timeout,
    )


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_no_session(self, reconciler):
        assert reconciler.initial_loading
        await reconciler.start()
        assert not reconciler.initial_loading
        assert not reconciler.loading
        assert reconciler.session is None
        assert reconciler.user is None

    @pytest.mark.asyncio
    async def test_existing_session_with_missing_row(self, reconciler, source, store):
        source.current = make_session(
            "u-1", "ana@example.com", {"name": "Ana", "role": "instructor"},
        )
        await reconciler.start()

        assert not reconciler.initial_loading
        assert reconciler.session is source.current
        assert reconciler.user.id == "u-1"
        assert reconciler.user.role == UserRole.INSTRUCTOR
        assert store.rows["u-1"].name == "Ana"

    @pytest.mark.asyncio
    async def test_existing_session_with_row(self, reconciler, source, store):
        store.rows["u-1"] = ProfileRow(id="u-1", name="Ana", bio="Sauces")
        source.current = make_session("u-1")
        await reconciler.start()
        assert reconciler.user.profile_complete
        assert [call[0] for call in store.calls] == ["get_by_id"]

    @pytest.mark.asyncio
    async def test_loading_until_resolution_finishes(self, reconciler, source, store):
        gate = asyncio.Event()
        store.read_gates["u-1"] = gate
        source.current = make_session("u-1")

        task = asyncio.create_task(reconciler.start())
        await _drain()
        assert reconciler.initial_loading
        assert reconciler.session is not None
        assert reconciler.user is None

        gate.set()
        await task
        assert not reconciler.initial_loading
        assert reconciler.user is not None

    @pytest.mark.asyncio
    async def test_session_fetch_timeout_starts_signed_out(self, source, resolver, store, logger):
        source.probe_gate = asyncio.Event()
        reconciler = _reconciler(source, resolver, store, logger, timeout=0.05)

        await reconciler.start()

        assert not reconciler.initial_loading
        assert reconciler.session is None
        assert reconciler.user is None

    @pytest.mark.asyncio
    async def test_session_fetch_failure_starts_signed_out(self, reconciler, source):
        source.probe_error = SessionSourceError("fetch failed", code="network")
        await reconciler.start()
        assert not reconciler.initial_loading
        assert reconciler.session is None

    @pytest.mark.asyncio
    async def test_late_session_after_timeout_still_arrives_via_stream(
        self, source, resolver, store, logger,
    ):
        source.probe_gate = asyncio.Event()
        reconciler = _reconciler(source, resolver, store, logger, timeout=0.05)
        await reconciler.start()

        source.emit(make_session("u-1"))
        await reconciler.wait_idle()
        assert reconciler.user.id == "u-1"

    @pytest.mark.asyncio
    async def test_stream_event_supersedes_startup_session(self, reconciler, source):
        gate = asyncio.Event()
        source.probe_gate = gate
        stale = make_session("a")
        fresh = make_session("b")

        task = asyncio.create_task(reconciler.start())
        await _drain()
        source.emit(fresh)
        source.current = stale
        gate.set()
        await task

        assert reconciler.session is fresh
        assert reconciler.user.id == "b"

    @pytest.mark.asyncio
    async def test_superseded_start_waits_for_stream_resolution(
        self, reconciler, source, store,
    ):
        fetch_gate = asyncio.Event()
        read_gate = asyncio.Event()
        source.probe_gate = fetch_gate
        store.read_gates["b"] = read_gate

        task = asyncio.create_task(reconciler.start())
        await _drain()
        source.emit(make_session("b"))
        fetch_gate.set()
        await _drain()

        assert not task.done()
        assert reconciler.initial_loading
        assert reconciler.user is None

        read_gate.set()
        await task
        assert not reconciler.initial_loading
        assert reconciler.user.id == "b"

    @pytest.mark.asyncio
    async def test_start_runs_once(self, reconciler, source):
        await reconciler.start()
        await reconciler.start()
        assert len(source.handlers) == 1


class TestChangeStream:
    @pytest.mark.asyncio
    async def test_sign_in_event_resolves_user(self, reconciler, source):
        await reconciler.start()
        session = make_session("u-1")
        source.emit(session)

        assert reconciler.session is session
        await reconciler.wait_idle()
        assert reconciler.user.id == "u-1"

    @pytest.mark.asyncio
    async def test_sign_out_event_clears_state(self, reconciler, source):
        source.current = make_session("u-1")
        await reconciler.start()
        assert reconciler.user is not None

        source.emit(None)
        assert reconciler.session is None
        assert reconciler.user is None

    @pytest.mark.asyncio
    async def test_session_without_identity_clears_state(self, reconciler, source):
        source.current = make_session("u-1")
        await reconciler.start()
        source.emit(make_session("u-1").model_copy(update={"identity": None}))
        assert reconciler.session is None
        assert reconciler.user is None

    @pytest.mark.asyncio
    async def test_token_refresh_keeps_user_while_resolving(self, reconciler, source, store):
        source.current = make_session("u-1")
        await reconciler.start()
        gate = asyncio.Event()
        store.read_gates["u-1"] = gate

        refreshed = make_session("u-1")
        source.emit(refreshed)
        await _drain()
        assert reconciler.session is refreshed
        assert reconciler.user is not None
        assert reconciler.user.id == "u-1"

        gate.set()
        await reconciler.wait_idle()
        assert reconciler.user.id == "u-1"

    @pytest.mark.asyncio
    async def test_newer_identity_wins_over_slow_resolution(self, reconciler, source, store):
        await reconciler.start()
        gate_a = asyncio.Event()
        store.read_gates["a"] = gate_a
        session_a = make_session("a", "a@example.com")
        session_b = make_session("b", "b@example.com")

        source.emit(session_a)
        await _drain()
        source.emit(session_b)
        await _drain()
        assert reconciler.user.id == "b"

        gate_a.set()
        await reconciler.wait_idle()
        assert reconciler.session is session_b
        assert reconciler.user.id == "b"

    @pytest.mark.asyncio
    async def test_sign_out_during_resolution_is_not_undone(self, reconciler, source, store):
        await reconciler.start()
        gate = asyncio.Event()
        store.read_gates["u-1"] = gate

        source.emit(make_session("u-1"))
        await _drain()
        source.emit(None)
        gate.set()
        await reconciler.wait_idle()

        assert reconciler.session is None
        assert reconciler.user is None

    @pytest.mark.asyncio
    async def test_same_session_reemitted_after_sign_out(self, reconciler, source, store):
        await reconciler.start()
        gate = asyncio.Event()
        store.read_gates["u-1"] = gate
        session = make_session("u-1")

        source.emit(session)
        await _drain()
        source.emit(None)
        source.emit(session)
        gate.set()
        await reconciler.wait_idle()

        assert reconciler.session is session
        assert reconciler.user.id == "u-1"


class TestTeardown:
    @pytest.mark.asyncio
    async def test_close_unsubscribes(self, reconciler, source):
        await reconciler.start()
        reconciler.close()
        assert source.handlers == []
        assert reconciler.is_closed

    @pytest.mark.asyncio
    async def test_in_flight_resolution_does_not_mutate_after_close(
        self, reconciler, source, store,
    ):
        await reconciler.start()
        gate = asyncio.Event()
        store.read_gates["u-1"] = gate
        source.emit(make_session("u-1"))
        await _drain()

        reconciler.close()
        gate.set()
        await reconciler.wait_idle()

        assert reconciler.user is None

    @pytest.mark.asyncio
    async def test_bootstrap_after_close_does_not_commit(self, reconciler, source):
        gate = asyncio.Event()
        source.probe_gate = gate
        source.current = make_session("u-1")

        task = asyncio.create_task(reconciler.start())
        await _drain()
        reconciler.close()
        gate.set()
        await task

        assert reconciler.session is None
        assert reconciler.user is None
        assert not reconciler.initial_loading

    @pytest.mark.asyncio
    async def test_close_twice(self, reconciler):
        await reconciler.start()
        reconciler.close()
        reconciler.close()
        assert reconciler.is_closed

    @pytest.mark.asyncio
    async def test_start_after_close_is_a_no_op(self, reconciler, source):
        reconciler.close()
        await reconciler.start()
        assert source.handlers == []


class TestOperationFlags:
    def test_operation_loading(self, reconciler):
        reconciler.record_error("old failure")
        with reconciler.operation():
            assert reconciler.operation_loading
            assert reconciler.loading
            assert reconciler.last_error is None
        assert not reconciler.operation_loading

    def test_operation_can_keep_last_error(self, reconciler):
        reconciler.record_error("old failure")
        with reconciler.operation(clear_error=False):
            assert reconciler.operation_loading
        assert reconciler.last_error == "old failure"

    def test_overlapping_operations(self, reconciler):
        with reconciler.operation():
            with reconciler.operation():
                pass
            assert reconciler.operation_loading
        assert not reconciler.operation_loading


class TestProfileUpdates:
    @pytest.mark.asyncio
    async def test_requires_user(self, reconciler):
        await reconciler.start()
        with pytest.raises(LookupError):
            await reconciler.apply_profile_update({"bio": "Pastry"})

    @pytest.mark.asyncio
    async def test_persists_and_commits(self, reconciler, source, store):
        store.rows["u-1"] = ProfileRow(id="u-1", name="Ana")
        source.current = make_session("u-1")
        await reconciler.start()

        user = await reconciler.apply_profile_update({"bio": "Pastry"})

        assert user.profile_complete
        assert reconciler.user.bio == "Pastry"
        assert store.rows["u-1"].bio == "Pastry"

    @pytest.mark.asyncio
    async def test_store_error_leaves_user_unchanged(self, reconciler, source, store):
        store.rows["u-1"] = ProfileRow(id="u-1", name="Ana")
        source.current = make_session("u-1")
        await reconciler.start()
        store.failure = ProfileStoreError("permission denied", code="42501")

        with pytest.raises(ProfileStoreError):
            await reconciler.apply_profile_update({"bio": "Pastry"})
        assert reconciler.user.bio is None

    @pytest.mark.asyncio
    async def test_identity_switch_during_update_is_not_committed(
        self, reconciler, source, store,
    ):
        store.rows["u-1"] = ProfileRow(id="u-1", name="Ana")
        source.current = make_session("u-1")
        await reconciler.start()

        original_update = store.update

        async def _slow_update(user_id, fields):
            source.emit(make_session("u-2"))
            return await original_update(user_id, fields)

        store.update = _slow_update
        await reconciler.apply_profile_update({"bio": "Pastry"})
        await reconciler.wait_idle()

        assert reconciler.user.id == "u-2"
        assert reconciler.user.bio is None

    @pytest.mark.asyncio
    async def test_update_during_refresh_read_is_not_overwritten(
        self, reconciler, source, store,
    ):
        store.rows["u-1"] = ProfileRow(id="u-1", name="Ana")
        source.current = make_session("u-1")
        await reconciler.start()
        store.snapshot_reads = True
        gate = asyncio.Event()
        store.read_gates["u-1"] = gate

        source.emit(make_session("u-1"))
        await _drain()
        await reconciler.apply_profile_update({"bio": "Pastry"})
        gate.set()
        await reconciler.wait_idle()

        assert reconciler.user.bio == "Pastry"
        assert store.rows["u-1"].bio == "Pastry"

    @pytest.mark.asyncio
    async def test_refresh_during_write_is_not_committed_over_it(
        self, reconciler, source, store,
    ):
        store.rows["u-1"] = ProfileRow(id="u-1", name="Ana")
        source.current = make_session("u-1")
        await reconciler.start()
        write_gate = asyncio.Event()
        read_gate = asyncio.Event()
        store.write_gate = write_gate

        update = asyncio.create_task(reconciler.apply_profile_update({"bio": "Pastry"}))
        await _drain()
        store.snapshot_reads = True
        store.read_gates["u-1"] = read_gate
        source.emit(make_session("u-1"))
        await _drain()

        write_gate.set()
        await update
        read_gate.set()
        await reconciler.wait_idle()

        assert reconciler.user.bio == "Pastry"

    @pytest.mark.asyncio
    async def test_local_edits_survive_refresh_without_table(
        self, reconciler, source, store,
    ):
        store.table_missing = True
        source.current = make_session("u-1", "ana@example.com", {"name": "Ana"})
        await reconciler.start()
        await reconciler.apply_profile_update({"name": "Ana B", "bio": "Pastry"})

        source.emit(make_session("u-1", "ana.b@example.com", {"name": "Ana"}))
        await reconciler.wait_idle()

        assert reconciler.user.is_fallback
        assert reconciler.user.name == "Ana B"
        assert reconciler.user.bio == "Pastry"
        assert reconciler.user.email == "ana.b@example.com"

    @pytest.mark.asyncio
    async def test_new_identity_without_table_starts_clean(
        self, reconciler, source, store,
    ):
        store.table_missing = True
        source.current = make_session("u-1", "ana@example.com", {"name": "Ana"})
        await reconciler.start()
        await reconciler.apply_profile_update({"bio": "Pastry"})

        source.emit(make_session("u-2", "bo@example.com", {"name": "Bo"}))
        await reconciler.wait_idle()

        assert reconciler.user.id == "u-2"
        assert reconciler.user.bio is None


class TestDiscardSession:
    @pytest.mark.asyncio
    async def test_clears_state(self, reconciler, source):
        source.current = make_session("u-1")
        await reconciler.start()

        reconciler.discard_session()

        assert reconciler.session is None
        assert reconciler.user is None

    @pytest.mark.asyncio
    async def test_in_flight_resolution_is_dropped(self, reconciler, source, store):
        source.current = make_session("u-1")
        await reconciler.start()
        gate = asyncio.Event()
        store.read_gates["u-1"] = gate
        source.emit(make_session("u-1"))
        await _drain()

        reconciler.discard_session()
        gate.set()
        await reconciler.wait_idle()

        assert reconciler.session is None
        assert reconciler.user is None

    @pytest.mark.asyncio
    async def test_no_op_when_signed_out(self, reconciler):
        await reconciler.start()
        reconciler.discard_session()
        assert reconciler.session is None
