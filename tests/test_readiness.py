from http import HTTPStatus

from ztunnel.readiness import Ready, respond


def test_register_and_close():
    ready = Ready()
    block = ready.register_task("xds")
    assert ready.pending() == {"xds"}
    block.close()
    assert ready.pending() == set()


def test_close_twice_is_harmless():
    ready = Ready()
    first = ready.register_task("a")
    ready.register_task("b")
    first.close()
    first.close()
    assert ready.pending() == {"b"}


def test_context_manager_completes_task():
    ready = Ready()
    with ready.register_task("proxy"):
        assert ready.pending() == {"proxy"}
    assert ready.pending() == set()


def test_subtask_registers_on_parent():
    ready = Ready()
    parent = ready.register_task("parent")
    child = parent.subtask("child")
    assert ready.pending() == {"parent", "child"}
    parent.close()
    assert ready.pending() == {"child"}
    child.close()
    assert ready.pending() == set()


def test_pending_is_a_copy():
    ready = Ready()
    ready.register_task("x")
    snapshot = ready.pending()
    snapshot.clear()
    assert ready.pending() == {"x"}


def test_respond_ready():
    assert respond(Ready(), "GET", "/healthz/ready") == (HTTPStatus.OK, "ready\n")


def test_respond_not_ready_lists_sorted_pending():
    ready = Ready()
    ready.register_task("zeta")
    ready.register_task("alpha")
    status, body = respond(ready, "GET", "/healthz/ready")
    assert status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert body == "not ready, pending: alpha, zeta\n"


def test_respond_wrong_method():
    assert respond(Ready(), "POST", "/healthz/ready") == (
        HTTPStatus.METHOD_NOT_ALLOWED,
        "",
    )


def test_respond_unknown_path():
    assert respond(Ready(), "GET", "/other") == (HTTPStatus.NOT_FOUND, "")