"""Unit tests for the application lifespan."""

import pytest

from campaign_dialer.main import create_app
from campaign_dialer.services.dispatcher_mock import MockDispatcher
from campaign_dialer.services.runtime import DialerRuntime


class TestLifespan:
    """Tests for start-up and shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_closes_dispatcher(self, runtime: DialerRuntime, dispatcher: MockDispatcher):
        """終了時にディスパッチャーを閉じる"""
        app = create_app(runtime)

        async with app.router.lifespan_context(app):
            assert not dispatcher.closed

        assert dispatcher.closed
