"""Tests for token refresh on 401."""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from trainingpeaks_mcp.sdk.errors import ErrorKind, TrainingPeaksError, classify_status
from trainingpeaks_mcp.sdk.refresh import RefreshState, TokenRefresher, execute_with_refresh
from trainingpeaks_mcp.sdk.session import AuthToken, InMemorySession


def unauthorized():
    return TrainingPeaksError(classify_status(401))


@pytest.fixture
def new_token():
    return AuthToken(
        access_token="tok2",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        refresh_token="ref2",
    )


@pytest.fixture
def session(auth_token):
    return InMemorySession(auth_token)


class TestExecuteWithRefresh:
    def test_success_does_not_refresh(self, session):
        send = Mock(return_value="ok")
        refresh = Mock()

        assert execute_with_refresh(send, session, refresh) == "ok"
        send.assert_called_once_with(None)
        refresh.assert_not_called()

    def test_refreshes_once_and_replays_with_new_token(self, session, new_token):
        send = Mock(side_effect=[unauthorized(), "ok"])
        refresh = Mock(return_value=new_token)

        assert execute_with_refresh(send, session, refresh) == "ok"
        refresh.assert_called_once_with("ref1")
        assert send.call_args_list[1].args[0] is new_token

    def test_stores_token_before_replay(self, session, new_token):
        seen = []

        def send(token):
            if token is None:
                raise unauthorized()
            seen.append(session.get())
            return "ok"

        execute_with_refresh(send, session, Mock(return_value=new_token))
        assert seen == [new_token]

    def test_always_401_refreshes_at_most_once(self, session, new_token):
        original = unauthorized()
        send = Mock(side_effect=[original, unauthorized()])
        refresh = Mock(return_value=new_token)

        with pytest.raises(TrainingPeaksError) as exc_info:
            execute_with_refresh(send, session, refresh)

        assert exc_info.value is original
        assert refresh.call_count == 1
        assert send.call_count == 2

    def test_refresh_failure_raises_original_401(self, session):
        original = unauthorized()
        send = Mock(side_effect=original)
        refresh = Mock(side_effect=RuntimeError("refresh endpoint down"))
        log = Mock()

        with pytest.raises(TrainingPeaksError) as exc_info:
            execute_with_refresh(send, session, refresh, log=log)

        assert exc_info.value is original
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        log.error.assert_called_once()
        assert "refresh endpoint down" in log.error.call_args.args[0]

    def test_non_401_is_not_refreshed(self, session):
        send = Mock(side_effect=TrainingPeaksError(classify_status(500)))
        refresh = Mock()

        with pytest.raises(TrainingPeaksError) as exc_info:
            execute_with_refresh(send, session, refresh)

        assert exc_info.value.error.status == 500
        refresh.assert_not_called()

    def test_without_refresh_procedure_raises_401(self, session):
        send = Mock(side_effect=unauthorized())
        with pytest.raises(TrainingPeaksError):
            execute_with_refresh(send, session, None)
        send.assert_called_once()

    def test_without_refresh_token_raises_401(self):
        token = AuthToken(access_token="tok1", expires_at=datetime.now(timezone.utc))
        refresh = Mock()
        with pytest.raises(TrainingPeaksError):
            execute_with_refresh(Mock(side_effect=unauthorized()), InMemorySession(token), refresh)
        refresh.assert_not_called()

    def test_shared_state_limits_refresh_across_attempts(self, session, new_token):
        state = RefreshState()
        refresh = Mock(return_value=new_token)
        send = Mock(side_effect=[unauthorized(), TrainingPeaksError(classify_status(503)), unauthorized()])

        with pytest.raises(TrainingPeaksError):
            execute_with_refresh(send, session, refresh, state=state)
        with pytest.raises(TrainingPeaksError) as exc_info:
            execute_with_refresh(send, session, refresh, state=state)

        assert exc_info.value.error.status == 401
        assert refresh.call_count == 1

    def test_failing_token_store_raises_original_401(self, auth_token, new_token):
        class ReadOnlySession(InMemorySession):
            def set(self, token):
                raise OSError("read-only session store")

        original = unauthorized()
        send = Mock(side_effect=[original, "ok"])

        with pytest.raises(TrainingPeaksError) as exc_info:
            execute_with_refresh(send, ReadOnlySession(auth_token), Mock(return_value=new_token))

        assert exc_info.value is original
        assert isinstance(exc_info.value.__cause__, OSError)
        send.assert_called_once()

    def test_unreadable_session_raises_original_401(self, new_token):
        class BrokenSession(InMemorySession):
            def get(self):
                raise OSError("session store unavailable")

        original = unauthorized()
        refresh = Mock(return_value=new_token)

        with pytest.raises(TrainingPeaksError) as exc_info:
            execute_with_refresh(Mock(side_effect=original), BrokenSession(), refresh)

        assert exc_info.value is original
        refresh.assert_not_called()


@pytest.fixture
def expiring():
    return AuthToken(
        access_token="tok1",
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=1),
        refresh_token="ref1",
    )


class TestTokenRefresher:
    def test_refresh_stores_new_token(self, expiring, new_token):
        session = InMemorySession(expiring)
        refresher = TokenRefresher(session, Mock(return_value=new_token))

        assert refresher.refresh(expiring) is new_token
        assert session.get() is new_token

    def test_already_replaced_token_is_returned(self, expiring, new_token):
        procedure = Mock()
        refresher = TokenRefresher(InMemorySession(new_token), procedure)

        assert refresher.refresh(expiring) is new_token
        procedure.assert_not_called()

    def test_none_from_procedure_is_an_error(self, expiring):
        refresher = TokenRefresher(InMemorySession(expiring), Mock(return_value=None))
        with pytest.raises(ValueError, match="no token"):
            refresher.refresh(expiring)

    def test_concurrent_callers_share_one_refresh(self, expiring, new_token):
        started = threading.Event()
        release = threading.Event()

        def slow_refresh(refresh_token):
            started.set()
            assert release.wait(5)
            return new_token

        procedure = Mock(side_effect=slow_refresh)
        refresher = TokenRefresher(InMemorySession(expiring), procedure)
        results = []

        first = threading.Thread(target=lambda: results.append(refresher.refresh(expiring)))
        first.start()
        assert started.wait(5)
        second = threading.Thread(target=lambda: results.append(refresher.refresh(expiring)))
        second.start()
        release.set()
        first.join(5)
        second.join(5)

        assert procedure.call_count == 1
        assert results == [new_token, new_token]

    def test_waiting_callers_see_the_failure(self, expiring):
        started = threading.Event()
        release = threading.Event()

        def failing_refresh(refresh_token):
            started.set()
            assert release.wait(5)
            raise RuntimeError("refresh endpoint down")

        refresher = TokenRefresher(InMemorySession(expiring), Mock(side_effect=failing_refresh))
        errors = []

        def call():
            try:
                refresher.refresh(expiring)
            except RuntimeError as e:
                errors.append(str(e))

        first = threading.Thread(target=call)
        first.start()
        assert started.wait(5)
        second = threading.Thread(target=call)
        second.start()
        release.set()
        first.join(5)
        second.join(5)

        assert len(errors) == 2
        assert set(errors) == {"refresh endpoint down"}

    def test_ensure_fresh_refreshes_inside_window(self, expiring, new_token):
        session = InMemorySession(expiring)
        refresher = TokenRefresher(session, Mock(return_value=new_token))
        state = RefreshState()

        refresher.ensure_fresh(state)

        assert session.get() is new_token
        assert state.attempted is True

    def test_ensure_fresh_skips_valid_token(self, auth_token):
        procedure = Mock()
        state = RefreshState()
        TokenRefresher(InMemorySession(auth_token), procedure).ensure_fresh(state)
        procedure.assert_not_called()
        assert state.attempted is False

    def test_ensure_fresh_respects_budget(self, expiring):
        procedure = Mock()
        TokenRefresher(InMemorySession(expiring), procedure).ensure_fresh(RefreshState(attempted=True))
        procedure.assert_not_called()

    def test_ensure_fresh_without_refresh_token(self):
        token = AuthToken(access_token="tok1", expires_at=datetime.now(timezone.utc))
        procedure = Mock()
        TokenRefresher(InMemorySession(token), procedure).ensure_fresh(RefreshState())
        procedure.assert_not_called()

    def test_cooldown_after_success(self, expiring):
        clock = Mock(return_value=100.0)
        still_expiring = AuthToken(
            access_token="tok2",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=2),
            refresh_token="ref2",
        )
        procedure = Mock(return_value=still_expiring)
        refresher = TokenRefresher(InMemorySession(expiring), procedure, cooldown=30, clock=clock)

        refresher.ensure_fresh(RefreshState())
        clock.return_value = 110.0
        refresher.ensure_fresh(RefreshState())
        assert procedure.call_count == 1

        clock.return_value = 131.0
        refresher.ensure_fresh(RefreshState())
        assert procedure.call_count == 2

    def test_failed_refresh_starts_no_cooldown(self, expiring):
        procedure = Mock(side_effect=RuntimeError("down"))
        log = Mock()
        refresher = TokenRefresher(InMemorySession(expiring), procedure, log=log)

        refresher.ensure_fresh(RefreshState())
        refresher.ensure_fresh(RefreshState())

        assert procedure.call_count == 2
        assert refresher.in_cooldown() is False
        assert "down" in log.error.call_args.args[0]

    def test_ensure_fresh_unreadable_session(self):
        class BrokenSession(InMemorySession):
            def get(self):
                raise OSError("session store unavailable")

        with pytest.raises(TrainingPeaksError) as exc_info:
            TokenRefresher(BrokenSession(), Mock()).ensure_fresh(RefreshState())
        assert exc_info.value.error.kind == ErrorKind.UNKNOWN
