import threading

import pytest

from docbot.models import ExtractedDocument
from docbot.session_store import Mode, SearchType, Session, SessionRepository, Step

from conftest import FakeClock


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def repo(clock):
    return SessionRepository(max_records=2, clock=clock)


def test_get_or_create_is_lazy_and_stable(repo):
    assert len(repo) == 0
    first = repo.get_or_create("u1")
    assert first.mode is Mode.IDLE and first.step is Step.NONE
    assert repo.get_or_create("u1") is first
    assert len(repo) == 1


def test_idle_sessions_never_expire(repo, clock):
    session = repo.get_or_create("u1")
    clock.advance(10_000)
    assert not repo.is_expired(session, 60)


def test_expiry_is_strictly_after_timeout(repo, clock):
    session = repo.get_or_create("u1")
    session.move_to(Mode.UPLOAD, Step.WAITING_CODE)
    clock.advance(60)
    assert not repo.is_expired(session, 60)
    clock.advance(1)
    assert repo.is_expired(session, 60)


def test_touch_refreshes_activity(repo, clock):
    session = repo.get_or_create("u1")
    session.move_to(Mode.UPLOAD, Step.WAITING_CODE)
    clock.advance(59)
    repo.touch(session)
    clock.advance(59)
    assert not repo.is_expired(session, 60)


def test_search_timer_only_applies_in_search_mode(repo, clock):
    session = repo.get_or_create("u1")
    session.move_to(Mode.SEARCH, Step.CHOOSE_TYPE)
    session.search_waiting_since = clock()
    clock.advance(61)
    assert repo.is_search_expired(session, 60)
    session.move_to(Mode.UPLOAD, Step.WAITING_IMAGE)
    assert not repo.is_search_expired(session, 60)


def test_reset_replaces_session(repo):
    session = repo.get_or_create("u1")
    session.move_to(Mode.SEARCH, Step.WAITING_VALUE)
    session.search_type = SearchType.BY_NAME
    fresh = repo.reset("u1")
    assert fresh is not session
    assert repo.get_or_create("u1") is fresh
    assert fresh.mode is Mode.IDLE and fresh.search_type is SearchType.NONE


def test_move_to_rejects_step_from_other_mode():
    session = Session(last_activity=0.0)
    with pytest.raises(ValueError):
        session.move_to(Mode.UPLOAD, Step.CHOOSE_TYPE)
    with pytest.raises(ValueError):
        session.move_to(Mode.IDLE, Step.WAITING_CODE)


def test_records_are_capped_and_cleared_by_new_code():
    session = Session(last_activity=0.0, max_records=2)
    session.add_record(ExtractedDocument(doc_number="A-1"))
    session.add_record(ExtractedDocument(doc_number="A-2"))
    assert session.is_full
    with pytest.raises(ValueError):
        session.add_record(ExtractedDocument(doc_number="A-3"))
    session.set_employee_code("A0001")
    assert session.image_count == 0


def test_copy_does_not_share_record_list():
    session = Session(last_activity=0.0)
    working = session.copy()
    working.add_record(ExtractedDocument(doc_number="A-1"))
    working.mode = Mode.UPLOAD
    assert session.image_count == 0
    assert session.mode is Mode.IDLE


def test_lock_serializes_one_identity(repo):
    entered = threading.Event()
    release = threading.Event()
    order = []

    def holder():
        with repo.lock("u1"):
            entered.set()
            release.wait(2)
            order.append("holder")

    def waiter():
        entered.wait(2)
        with repo.lock("u1"):
            order.append("waiter")

    threads = [threading.Thread(target=holder), threading.Thread(target=waiter)]
    for thread in threads:
        thread.start()
    entered.wait(2)
    release.set()
    for thread in threads:
        thread.join(2)
    assert order == ["holder", "waiter"]


def test_lock_released_on_exception(repo):
    with pytest.raises(RuntimeError):
        with repo.lock("u1"):
            raise RuntimeError("boom")
    acquired = threading.Event()

    def grab():
        with repo.lock("u1"):
            acquired.set()

    thread = threading.Thread(target=grab)
    thread.start()
    thread.join(2)
    assert acquired.is_set()


def test_different_identities_do_not_block(repo):
    with repo.lock("u1"):
        done = threading.Event()

        def other():
            with repo.lock("u2"):
                done.set()

        thread = threading.Thread(target=other)
        thread.start()
        thread.join(2)
        assert done.is_set()


def test_prune_drops_only_old_sessions(repo, clock):
    repo.get_or_create("old")
    clock.advance(3_000)
    repo.get_or_create("recent")
    clock.advance(700)
    assert repo.prune(3_600) == 1
    assert len(repo) == 1
    assert repo.get_or_create("recent").last_activity == 4_000.0


def test_prune_keeps_identity_whose_lock_is_held(repo, clock):
    stale = repo.get_or_create("u1")
    clock.advance(10_000)
    with repo.lock("u1"):
        assert repo.prune(3_600) == 0
        assert repo.get_or_create("u1") is stale
    assert repo.prune(3_600) == 1
    assert len(repo) == 0
