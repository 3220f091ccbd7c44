# tests/test_registry_client.py
"""
Unit tests for the registry lifecycle client.
"""
import asyncio
import pytest
from unittest.mock import patch, MagicMock

from requests.exceptions import RequestException

from provider_node.core.errors import RegistryCommunicationError
from provider_node.services.registry_client import RegistryLifecycleClient

REGISTRY_URL = "http://registry.test/api"
PROVIDER_ID = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


def ok_response():
    response = MagicMock()
    response.ok = True
    response.status_code = 200
    return response


def error_response(status_code=500, text="registry exploded"):
    response = MagicMock()
    response.ok = False
    response.status_code = status_code
    response.text = text
    return response


def posted_paths(mock_post):
    return [c.args[0].rsplit("/", 1)[-1] for c in mock_post.call_args_list]


def make_client(**kwargs):
    return RegistryLifecycleClient(REGISTRY_URL, PROVIDER_ID, **kwargs)


async def register(client):
    await client.register(
        apis=["echo"],
        url="http://node.test:9000",
        prices={"echo": 0.01},
        chains=["solana"],
    )


class TestRegister:

    @patch("provider_node.services.registry_client.requests.post")
    def test_register_posts_record_and_starts_heartbeat(self, mock_post):
        """Registration posts the provider record and starts heartbeats."""
        mock_post.return_value = ok_response()
        client = make_client()

        async def scenario():
            await register(client)
            running = client.heartbeat_running
            await client.unregister()
            return running

        assert asyncio.run(scenario()) is True

        url = mock_post.call_args_list[0].args[0]
        payload = mock_post.call_args_list[0].kwargs["json"]
        assert url == "http://registry.test/api/register"
        assert payload == {
            "providerId": PROVIDER_ID,
            "apis": ["echo"],
            "url": "http://node.test:9000",
            "prices": {"echo": 0.01},
            "chains": ["solana"],
        }
        assert mock_post.call_args_list[0].kwargs["timeout"] == client.timeout

    @patch("provider_node.services.registry_client.requests.post")
    def test_rejected_registration_is_fatal(self, mock_post):
        """A registry rejection raises."""
        mock_post.return_value = error_response(text="duplicate provider")
        client = make_client()

        with pytest.raises(RegistryCommunicationError, match="duplicate provider"):
            asyncio.run(register(client))

        assert client.heartbeat_running is False

    @patch("provider_node.services.registry_client.requests.post")
    def test_unreachable_registry_is_fatal(self, mock_post):
        """An unreachable registry raises."""
        mock_post.side_effect = RequestException("connection refused")

        with pytest.raises(RegistryCommunicationError, match="Failed to register"):
            asyncio.run(register(make_client()))


class TestHeartbeat:

    @patch("provider_node.services.registry_client.requests.post")
    def test_heartbeat_payload(self, mock_post):
        """Heartbeats carry the provider id, health fields and a timestamp."""
        mock_post.return_value = ok_response()
        client = make_client()

        sent = asyncio.run(client.heartbeat({"latency": 12, "requestsServed": 3, "errors": 1}))

        assert sent is True
        assert mock_post.call_args.args[0] == "http://registry.test/api/heartbeat"
        payload = mock_post.call_args.kwargs["json"]
        assert payload["providerId"] == PROVIDER_ID
        assert payload["latency"] == 12
        assert payload["requestsServed"] == 3
        assert payload["errors"] == 1
        assert "timestamp" in payload

    @patch("provider_node.services.registry_client.requests.post")
    def test_network_failure_swallowed(self, mock_post):
        """Network errors during a heartbeat are logged, not raised."""
        mock_post.side_effect = RequestException("network down")
        assert asyncio.run(make_client().heartbeat({"latency": 0})) is False

    @patch("provider_node.services.registry_client.requests.post")
    def test_rejection_swallowed(self, mock_post):
        """A rejected heartbeat returns False."""
        mock_post.return_value = error_response()
        assert asyncio.run(make_client().heartbeat({"latency": 0})) is False

    @patch("provider_node.services.registry_client.requests.post")
    def test_periodic_heartbeat_uses_health_provider(self, mock_post):
        """The periodic heartbeat reports the health provider's values."""
        mock_post.return_value = ok_response()
        health = {"latency": 20.5, "requestsServed": 7, "errors": 2}
        client = make_client(heartbeat_interval=0.01, health_provider=lambda: health)

        async def scenario():
            await register(client)
            await asyncio.sleep(0.1)
            await client.unregister()

        asyncio.run(scenario())

        heartbeats = [c.kwargs["json"] for c in mock_post.call_args_list if c.args[0].endswith("/heartbeat")]
        assert len(heartbeats) >= 1
        assert heartbeats[0]["requestsServed"] == 7
        assert heartbeats[0]["errors"] == 2

    @patch("provider_node.services.registry_client.requests.post")
    def test_periodic_heartbeat_zeroed_without_provider(self, mock_post):
        """Without a health provider the periodic heartbeat is zeroed."""
        mock_post.return_value = ok_response()
        client = make_client(heartbeat_interval=0.01)

        async def scenario():
            await register(client)
            await asyncio.sleep(0.1)
            await client.unregister()

        asyncio.run(scenario())

        heartbeats = [c.kwargs["json"] for c in mock_post.call_args_list if c.args[0].endswith("/heartbeat")]
        assert heartbeats
        assert heartbeats[0]["latency"] == 0
        assert heartbeats[0]["requestsServed"] == 0
        assert heartbeats[0]["errors"] == 0

    @patch("provider_node.services.registry_client.requests.post")
    def test_start_twice_is_noop(self, mock_post):
        """Starting the heartbeat twice keeps one task."""
        mock_post.return_value = ok_response()
        client = make_client()

        async def scenario():
            await register(client)
            first = client._heartbeat_task
            client.start_heartbeat()
            same = client._heartbeat_task is first
            await client.unregister()
            return same

        assert asyncio.run(scenario()) is True


class TestUnregister:

    @patch("provider_node.services.registry_client.requests.post")
    def test_unregister_stops_heartbeats(self, mock_post):
        """No heartbeat is sent after unregistering."""
        mock_post.return_value = ok_response()
        client = make_client(heartbeat_interval=0.01)

        async def scenario():
            await register(client)
            await asyncio.sleep(0.05)
            await client.unregister()
            count = len(mock_post.call_args_list)
            await asyncio.sleep(0.05)
            return count

        count_at_stop = asyncio.run(scenario())

        assert len(mock_post.call_args_list) == count_at_stop
        assert posted_paths(mock_post)[-1] == "unregister"
        assert client.heartbeat_running is False

    @patch("provider_node.services.registry_client.requests.post")
    def test_unregister_twice(self, mock_post):
        """Only the first unregister reaches the registry."""
        mock_post.return_value = ok_response()
        client = make_client()

        async def scenario():
            await register(client)
            await client.unregister()
            await client.unregister()
            await client.stop_heartbeat()
            return await client.heartbeat({"latency": 1})

        sent_after_stop = asyncio.run(scenario())

        assert sent_after_stop is False
        assert posted_paths(mock_post) == ["register", "unregister"]
        assert mock_post.call_args.kwargs["json"] == {"providerId": PROVIDER_ID}

    @patch("provider_node.services.registry_client.requests.post")
    def test_unregister_errors_swallowed(self, mock_post):
        """Unregister failures are logged, not raised."""
        mock_post.side_effect = RequestException("gone")
        asyncio.run(make_client().unregister())
        assert posted_paths(mock_post) == ["unregister"]

    def test_stop_without_start(self):
        """Stopping a heartbeat that never started is harmless."""
        asyncio.run(make_client().stop_heartbeat())
