from __future__ import annotations

import pytest

from fakes import make_repo


@pytest.mark.asyncio
async def test_immediate_put_writes_through(store, scheduler) -> None:
    repo = make_repo(store, "premiumKeys", scheduler)
    await repo.load()

    assert await repo.put("KEY", {"used": False}) is True

    assert store.documents["premiumKeys"] == {"KEY": {"used": False}}
    assert store.save_count["premiumKeys"] == 1
    assert scheduler.pending == []


@pytest.mark.asyncio
async def test_get_returns_copies(store, scheduler) -> None:
    repo = make_repo(store, "guildConfigs", scheduler)
    repo.set("1", {"supportRoles": ["1"]})

    value = repo.get("1")
    value["supportRoles"].append("2")

    assert repo.get("1") == {"supportRoles": ["1"]}
    assert repo.get("missing", {}) == {}
    assert "1" in repo


@pytest.mark.asyncio
async def test_debounced_burst_is_one_write(store, scheduler) -> None:
    repo = make_repo(store, "guildConfigs", scheduler, debounce_seconds=0.25)

    for index in range(5):
        await repo.put("1", {"edit": index})
        await scheduler.advance(0.1)

    assert store.save_count.get("guildConfigs", 0) == 0
    await scheduler.advance(0.25)

    assert store.save_count["guildConfigs"] == 1
    assert store.documents["guildConfigs"] == {"1": {"edit": 4}}


@pytest.mark.asyncio
async def test_failed_write_degrades_and_retries(store, scheduler) -> None:
    repo = make_repo(store, "premiumGuilds", scheduler)
    store.fail_writes = True

    assert await repo.put("1", {"isPremium": True}) is False
    assert repo.degraded
    assert repo.get("1") == {"isPremium": True}
    assert len(scheduler.pending_named("retry")) == 1

    # A second failure does not stack retries.
    await repo.put("2", {"isPremium": False})
    assert len(scheduler.pending_named("retry")) == 1

    store.fail_writes = False
    await scheduler.advance(30)

    assert not repo.degraded
    assert store.documents["premiumGuilds"] == {"1": {"isPremium": True}, "2": {"isPremium": False}}


@pytest.mark.asyncio
async def test_degraded_debounced_repo_waits_for_retry(store, scheduler) -> None:
    repo = make_repo(store, "guildConfigs", scheduler, debounce_seconds=0.25)
    store.fail_writes = True
    await repo.put("1", {"a": 1})
    await scheduler.advance(0.25)
    assert repo.degraded

    store.fail_writes = False
    await repo.put("1", {"a": 2})
    assert scheduler.pending_named("flush") == []

    await scheduler.advance(30)
    assert store.documents["guildConfigs"] == {"1": {"a": 2}}
    assert not repo.degraded


@pytest.mark.asyncio
async def test_close_flushes_pending_changes(store, scheduler) -> None:
    repo = make_repo(store, "guildConfigs", scheduler, debounce_seconds=0.25)
    await repo.put("1", {"a": 1})

    await repo.close()

    assert store.documents["guildConfigs"] == {"1": {"a": 1}}
    assert scheduler.pending == []
