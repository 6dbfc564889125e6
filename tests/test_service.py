from __future__ import annotations

import io
import threading
from uuid import UUID, uuid4

import pytest

import core.service as service_module
from core.exceptions import (
    BlobExistsError,
    ConfigurationError,
    InvalidIdentifierError,
    PasteNotFoundError,
    StorageError,
    UnauthorizedError,
    UserAlreadyExistsError,
)
from core.registry import State, User
from core.service import PasteService
from core.settings import Settings, StateSettings, StorageSettings


@pytest.fixture()
def data_dir(tmp_path):
    return tmp_path / "pastes"


@pytest.fixture()
def service(data_dir):
    svc = PasteService(data_dir, State())
    svc.register_user("alice", "pw1")
    return svc


def _read(svc: PasteService, paste_id: str) -> bytes:
    with svc.read(paste_id) as fp:
        return fp.read()


def test_owned_paste_lifecycle(service):
    paste_id = service.create(io.BytesIO(b"hello"), auth=("alice", "pw1"))

    assert _read(service, paste_id) == b"hello"
    assert service.list("alice", "pw1") == [paste_id]

    service.delete(paste_id, "alice", "pw1")

    with pytest.raises(PasteNotFoundError):
        service.read(paste_id)
    assert service.list("alice", "pw1") == []


def test_anonymous_paste_is_readable_until_reconciliation(service):
    paste_id = service.create(io.BytesIO(b"x"))
    assert _read(service, paste_id) == b"x"

    report = service.reconcile()

    assert report.removed_blobs == [paste_id]
    with pytest.raises(PasteNotFoundError):
        service.read(paste_id)


def test_create_with_unknown_user_leaves_no_blob(service, data_dir):
    with pytest.raises(UnauthorizedError):
        service.create(io.BytesIO(b"x"), auth=("bob", "wrong"))
    assert list(data_dir.iterdir()) == []


def test_create_with_wrong_password_is_unauthorized(service, data_dir):
    with pytest.raises(UnauthorizedError):
        service.create(io.BytesIO(b"x"), auth=("alice", "nope"))
    assert list(data_dir.iterdir()) == []


def test_identifiers_are_canonical_uuids(service):
    paste_id = service.create(io.BytesIO(b"x"), auth=("alice", "pw1"))
    assert paste_id == str(UUID(paste_id))
    assert paste_id == paste_id.lower()


def test_list_preserves_insertion_order(service):
    ids = [service.create(io.BytesIO(str(i).encode()), auth=("alice", "pw1")) for i in range(4)]
    assert service.list("alice", "pw1") == ids


def test_list_rejects_bad_credentials(service):
    with pytest.raises(UnauthorizedError):
        service.list("alice", "wrong")


def test_read_accepts_uuid_objects_and_rejects_garbage(service):
    paste_id = service.create(io.BytesIO(b"data"), auth=("alice", "pw1"))
    with service.read(UUID(paste_id)) as fp:
        assert fp.read() == b"data"
    with pytest.raises(InvalidIdentifierError):
        service.read("../../state.json")


def test_register_existing_user_is_rejected(service):
    with pytest.raises(UserAlreadyExistsError):
        service.register_user("alice", "other")
    assert service.list("alice", "pw1") == []


def test_replace_owned_paste(service):
    paste_id = service.create(io.BytesIO(b"v1"), auth=("alice", "pw1"))
    service.replace(paste_id, io.BytesIO(b"v2"), auth=("alice", "pw1"))
    assert _read(service, paste_id) == b"v2"


def test_replace_paste_owned_by_someone_else_is_not_found(service):
    service.register_user("bob", "pw2")
    paste_id = service.create(io.BytesIO(b"alice's"), auth=("alice", "pw1"))

    with pytest.raises(PasteNotFoundError):
        service.replace(paste_id, io.BytesIO(b"bob's"), auth=("bob", "pw2"))
    assert _read(service, paste_id) == b"alice's"


def test_replace_with_bad_credentials_is_unauthorized(service):
    paste_id = service.create(io.BytesIO(b"v1"), auth=("alice", "pw1"))
    with pytest.raises(UnauthorizedError):
        service.replace(paste_id, io.BytesIO(b"v2"), auth=("alice", "bad"))


def test_anonymous_replace_requires_existing_blob(service):
    paste_id = service.create(io.BytesIO(b"v1"))
    service.replace(paste_id, io.BytesIO(b"v2"))
    assert _read(service, paste_id) == b"v2"

    with pytest.raises(PasteNotFoundError):
        service.replace(str(uuid4()), io.BytesIO(b"nope"))


def test_replace_of_owned_paste_with_missing_blob_is_not_found(service, data_dir):
    paste_id = service.create(io.BytesIO(b"v1"), auth=("alice", "pw1"))
    (data_dir / paste_id).unlink()

    with pytest.raises(PasteNotFoundError):
        service.replace(paste_id, io.BytesIO(b"v2"), auth=("alice", "pw1"))


def test_delete_requires_matching_credentials(service):
    paste_id = service.create(io.BytesIO(b"x"), auth=("alice", "pw1"))

    with pytest.raises(UnauthorizedError):
        service.delete(paste_id, "alice", "wrong")
    assert _read(service, paste_id) == b"x"


def test_delete_of_unowned_paste_is_not_found(service):
    service.register_user("bob", "pw2")
    paste_id = service.create(io.BytesIO(b"x"), auth=("alice", "pw1"))

    with pytest.raises(PasteNotFoundError):
        service.delete(paste_id, "bob", "pw2")
    assert _read(service, paste_id) == b"x"


def test_delete_cannot_target_anonymous_pastes(service):
    paste_id = service.create(io.BytesIO(b"x"))
    with pytest.raises(PasteNotFoundError):
        service.delete(paste_id, "alice", "pw1")


def test_delete_runs_reconciliation(service):
    owned = service.create(io.BytesIO(b"keep"), auth=("alice", "pw1"))
    doomed = service.create(io.BytesIO(b"bye"), auth=("alice", "pw1"))
    anonymous = service.create(io.BytesIO(b"anon"))

    service.delete(doomed, "alice", "pw1")

    assert service.blobs.list_all() == {owned}
    assert not service.blobs.exists(anonymous)


def test_delete_tolerates_blob_already_missing(service, data_dir):
    paste_id = service.create(io.BytesIO(b"x"), auth=("alice", "pw1"))
    (data_dir / paste_id).unlink()

    service.delete(paste_id, "alice", "pw1")
    assert service.list("alice", "pw1") == []


def test_construction_reconciles_crash_leftovers(data_dir):
    data_dir.mkdir(parents=True)
    kept, lost, orphan = str(uuid4()), str(uuid4()), str(uuid4())
    (data_dir / kept).write_bytes(b"kept")
    (data_dir / orphan).write_bytes(b"orphan")
    (data_dir / f"{kept}.partial").write_bytes(b"half")
    state = State({"alice": User("alice", "pw1", [lost, kept])})

    svc = PasteService(data_dir, state)

    assert svc.list("alice", "pw1") == [kept]
    assert svc.blobs.list_all() == {kept}
    assert sorted(p.name for p in data_dir.iterdir()) == [kept]


def test_reconciliation_keeps_a_single_owner_per_identifier(data_dir):
    data_dir.mkdir(parents=True)
    shared = str(uuid4())
    (data_dir / shared).write_bytes(b"shared")
    state = State(
        {
            "alice": User("alice", "pw1", [shared, shared]),
            "bob": User("bob", "pw2", [shared]),
        }
    )

    svc = PasteService(data_dir, state)

    assert svc.list("alice", "pw1") == [shared]
    assert svc.list("bob", "pw2") == []


def test_reconcile_is_idempotent(service, data_dir):
    service.create(io.BytesIO(b"owned"), auth=("alice", "pw1"))
    service.create(io.BytesIO(b"anon"))
    service.blobs.create_exclusive(str(uuid4()), io.BytesIO(b"stray"))

    first = service.reconcile()
    snapshot = (service.list("alice", "pw1"), service.blobs.list_all())
    second = service.reconcile()

    assert first.changed
    assert not second.changed
    assert (service.list("alice", "pw1"), service.blobs.list_all()) == snapshot


def test_after_reconcile_registry_and_disk_agree(service, data_dir):
    service.register_user("bob", "pw2")
    a = service.create(io.BytesIO(b"a"), auth=("alice", "pw1"))
    b = service.create(io.BytesIO(b"b"), auth=("bob", "pw2"))
    service.create(io.BytesIO(b"anon"))
    (data_dir / a).unlink()

    report = service.reconcile()

    assert report.dropped_refs == [("alice", a)]
    owned = set(service.list("alice", "pw1")) | set(service.list("bob", "pw2"))
    assert owned == service.blobs.list_all() == {b}


def test_credentials_changing_mid_upload_roll_back_the_blob(service, data_dir):
    def body():
        yield b"part one"
        # Password changes while the body is still streaming
        service._state.auth_mut("alice", "pw1").password = "changed"
        yield b"part two"

    with pytest.raises(UnauthorizedError):
        service.create(body(), auth=("alice", "pw1"))

    assert list(data_dir.iterdir()) == []
    assert service.list("alice", "changed") == []


def test_reconcile_during_upload_spares_in_flight_paste(service):
    reports = []

    def body():
        yield b"first half "
        reports.append(service.reconcile())
        yield b"second half"

    paste_id = service.create(body(), auth=("alice", "pw1"))

    assert reports[0].removed_blobs == []
    assert _read(service, paste_id) == b"first half second half"
    assert service.list("alice", "pw1") == [paste_id]


def test_reconcile_during_replace_spares_partial_file(service):
    paste_id = service.create(io.BytesIO(b"v1"), auth=("alice", "pw1"))
    reports = []

    def body():
        yield b"v2"
        reports.append(service.reconcile())

    service.replace(paste_id, body(), auth=("alice", "pw1"))

    assert reports[0].swept_partials == 0
    assert _read(service, paste_id) == b"v2"


def test_overlapping_replaces_never_mix_bodies(service, data_dir):
    paste_id = service.create(io.BytesIO(b"v1"), auth=("alice", "pw1"))
    paused, resume = threading.Event(), threading.Event()
    errors = []

    def slow_body():
        yield b"A" * 100_000
        paused.set()
        resume.wait(timeout=5)
        yield b"C" * 10

    def slow_writer():
        try:
            service.replace(paste_id, slow_body(), auth=("alice", "pw1"))
        except Exception as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    worker = threading.Thread(target=slow_writer)
    worker.start()
    assert paused.wait(timeout=5)

    service.replace(paste_id, io.BytesIO(b"B" * 200_000), auth=("alice", "pw1"))
    assert _read(service, paste_id) == b"B" * 200_000

    resume.set()
    worker.join(timeout=5)

    assert errors == []
    assert _read(service, paste_id) == b"A" * 100_000 + b"C" * 10
    assert sorted(p.name for p in data_dir.iterdir()) == [paste_id]


def test_failed_upload_is_removed(service, data_dir):
    def body():
        yield b"partial"
        raise OSError("client went away")

    with pytest.raises(StorageError):
        service.create(body(), auth=("alice", "pw1"))
    assert list(data_dir.iterdir()) == []
    assert service.list("alice", "pw1") == []
    assert not service._in_flight


def test_identifier_collision_regenerates(service, data_dir, monkeypatch):
    taken, fresh = str(uuid4()), str(uuid4())
    service.blobs.create_exclusive(taken, io.BytesIO(b"existing"))
    candidates = iter([taken, fresh])
    monkeypatch.setattr(service_module, "new_identifier", lambda: next(candidates))

    paste_id = service.create(io.BytesIO(b"new"), auth=("alice", "pw1"))

    assert paste_id == fresh
    assert _read(service, taken) == b"existing"
    assert _read(service, fresh) == b"new"


def test_identifier_collision_gives_up_after_retries(service, monkeypatch):
    taken = str(uuid4())
    service.blobs.create_exclusive(taken, io.BytesIO(b"existing"))
    monkeypatch.setattr(service_module, "new_identifier", lambda: taken)

    with pytest.raises(BlobExistsError):
        service.create(io.BytesIO(b"new"), auth=("alice", "pw1"))
    assert service.list("alice", "pw1") == []


def test_dump_state_round_trips_through_open(tmp_path, service, data_dir):
    paste_id = service.create(io.BytesIO(b"persisted"), auth=("alice", "pw1"))
    state_path = tmp_path / "state.json"
    service.dump_state(state_path)

    settings = Settings(
        storage=StorageSettings(data_dir=data_dir),
        state=StateSettings(path=state_path),
    )
    reopened = PasteService.open(settings)

    assert reopened.list("alice", "pw1") == [paste_id]
    assert _read(reopened, paste_id) == b"persisted"


def test_constructor_needs_storage():
    with pytest.raises(ConfigurationError):
        PasteService(None, State())


def test_concurrent_owned_creates_are_all_recorded(service):
    ids: list[str] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def worker(n: int) -> None:
        try:
            paste_id = service.create(io.BytesIO(f"paste {n}".encode()), auth=("alice", "pw1"))
        except BaseException as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)
            return
        with lock:
            ids.append(paste_id)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(service.list("alice", "pw1")) == sorted(ids)
    assert service.blobs.list_all() == set(ids)
