"""Tests for the teardown registry."""

import pytest

from pages_e2e.teardown import TeardownService


class TestTeardownService:
    """Tests for TeardownService."""

    @pytest.mark.asyncio
    async def test_runs_in_reverse_order(self) -> None:
        """Test that actions run most recent first."""
        teardown = TeardownService()
        ran: list[str] = []

        for name in ("branch", "hook", "server"):

            async def action(name: str = name) -> None:
                ran.append(name)

            teardown.register(name, action)

        failed = await teardown.run()

        assert ran == ["server", "hook", "branch"]
        assert failed == []
        assert teardown.pending == []

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_others(self) -> None:
        """Test that a failing action is reported and the rest still run."""
        teardown = TeardownService()
        ran: list[str] = []

        async def ok() -> None:
            ran.append("ok")

        async def broken() -> None:
            raise RuntimeError("remote gone")

        teardown.register("Delete Git branch", ok)
        teardown.register("Delete Deploy Hook", broken)

        failed = await teardown.run()

        assert failed == ["Delete Deploy Hook"]
        assert ran == ["ok"]

    @pytest.mark.asyncio
    async def test_run_twice(self) -> None:
        """Test that actions are cleared after running."""
        teardown = TeardownService()
        calls = 0

        async def action() -> None:
            nonlocal calls
            calls += 1

        teardown.register("once", action)
        await teardown.run()
        await teardown.run()

        assert calls == 1
