import asyncio

import pytest

from fakes import FakeLocator, FakePage
from pagekeeper.dsl import Candidate, ProbeFailure, Target
from pagekeeper.errors import FailureClass, NotFound
from pagekeeper.runtime.candidate_resolver import CandidateResolver


def test_returns_rank_of_only_matching_candidate() -> None:
    page = FakePage({"#submit": FakeLocator("submit")})
    resolver = CandidateResolver(page)

    resolved = asyncio.run(resolver.resolve(["#missing", "#submit", "#other"], timeout_ms=100))

    assert resolved.rank == 1
    assert resolved.locator is page.elements["#submit"]
    assert [probe.failure for probe in resolved.probes] == [ProbeFailure.ABSENT, None]


def test_first_matching_candidate_wins_even_if_later_one_also_matches() -> None:
    page = FakePage(
        {
            "button": FakeLocator("any-button"),
            "#precise": FakeLocator("precise"),
        }
    )

    resolved = asyncio.run(CandidateResolver(page).resolve(["button", "#precise"], timeout_ms=100))

    assert resolved.rank == 0
    assert len(resolved.probes) == 1


def test_candidate_that_appears_within_its_timeout_is_selected() -> None:
    page = FakePage(
        {
            "#old-login": FakeLocator("old", present=False),
            "role=button[Log in]": FakeLocator("login", appears_after_ms=2_000),
            "text=Log in": FakeLocator("login-text"),
        }
    )
    target = Target.of(
        "#old-login",
        Candidate(query="button", by="role", name="Log in"),
        Candidate(query="Log in", by="text", tag="last-resort"),
        description="login button",
    )

    resolved = asyncio.run(CandidateResolver(page).resolve(target, "visible", 5_000))

    assert resolved.rank == 1
    assert resolved.candidate.by == "role"


def test_not_found_lists_every_candidate_tried() -> None:
    page = FakePage({"#hidden": FakeLocator("hidden", visible=False)})
    target = Target.of("#absent", "#hidden", description="save button")

    with pytest.raises(NotFound) as excinfo:
        asyncio.run(CandidateResolver(page).resolve(target, timeout_ms=50))

    error = excinfo.value
    assert error.failure is FailureClass.NOT_FOUND
    assert [probe.rank for probe in error.probes] == [0, 1]
    assert [probe.failure for probe in error.probes] == [ProbeFailure.ABSENT, ProbeFailure.HIDDEN]
    message = str(error)
    assert "save button" in message
    assert "#0 (#absent): absent" in message
    assert "#1 (#hidden): hidden" in message


def test_malformed_query_is_skipped_not_raised() -> None:
    page = FakePage({"#ok": FakeLocator("ok")})

    resolved = asyncio.run(CandidateResolver(page).resolve(["!!broken[", "#ok"], timeout_ms=50))

    assert resolved.rank == 1
    assert resolved.probes[0].failure is ProbeFailure.ERROR
    assert "Unexpected token" in resolved.probes[0].detail


def test_attached_requirement_accepts_hidden_element() -> None:
    page = FakePage({"#menu": FakeLocator("menu", visible=False)})

    resolved = asyncio.run(CandidateResolver(page).resolve("#menu", "attached", 50))

    assert resolved.rank == 0


def test_enabled_requirement_reports_disabled_candidate() -> None:
    page = FakePage({"#pay": FakeLocator("pay", enabled=False)})

    with pytest.raises(NotFound) as excinfo:
        asyncio.run(CandidateResolver(page).resolve("#pay", "enabled", 50))

    assert excinfo.value.probes[0].failure is ProbeFailure.DISABLED


def test_empty_target_is_rejected() -> None:
    with pytest.raises(ValueError):
        Target(candidates=())
