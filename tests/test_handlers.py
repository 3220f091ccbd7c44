# tests/test_handlers.py
"""
Unit tests for the handler registry.
"""
import pytest

from provider_node.gateway.handlers import HandlerRegistration, HandlerRegistry


async def echo(params):
    return params


class TestHandlerRegistration:

    def test_negative_price_rejected(self):
        """Negative prices are rejected."""
        with pytest.raises(ValueError, match="non-negative"):
            HandlerRegistration(name="echo", handler=echo, price=-0.01)

    @pytest.mark.parametrize("price", [float("nan"), float("inf")])
    def test_non_finite_price_rejected(self, price):
        """A NaN or infinite price would make every price check pass or fail silently."""
        with pytest.raises(ValueError, match="finite"):
            HandlerRegistration(name="echo", handler=echo, price=price)

    def test_non_positive_timeout_rejected(self):
        """A zero timeout is rejected."""
        with pytest.raises(ValueError, match="positive"):
            HandlerRegistration(name="echo", handler=echo, timeout=0)

    def test_nan_timeout_rejected(self):
        """A NaN timeout is rejected."""
        with pytest.raises(ValueError, match="positive"):
            HandlerRegistration(name="echo", handler=echo, timeout=float("nan"))

    def test_defaults(self):
        """Price defaults to zero; timeout and rate limit to None."""
        reg = HandlerRegistration(name="echo", handler=echo)
        assert reg.price == 0.0
        assert reg.timeout is None
        assert reg.rate_limit is None


class TestHandlerRegistry:

    def test_register_and_get(self):
        """A registered API can be looked up by name."""
        registry = HandlerRegistry()
        registry.register(HandlerRegistration(name="echo", handler=echo, price=0.01))

        assert registry.get("echo").price == 0.01
        assert "echo" in registry
        assert len(registry) == 1

    def test_unknown_name(self):
        """Unknown names return None."""
        assert HandlerRegistry().get("missing") is None

    def test_last_registration_wins(self):
        """Registering a name again replaces the old registration."""
        registry = HandlerRegistry()
        registry.register(HandlerRegistration(name="echo", handler=echo, price=0.01))
        registry.register(HandlerRegistration(name="echo", handler=echo, price=0.05))

        assert registry.get("echo").price == 0.05
        assert registry.names() == ["echo"]

    def test_price_table(self):
        """The price table lists every API in registration order."""
        registry = HandlerRegistry()
        registry.register(HandlerRegistration(name="echo", handler=echo, price=0.01))
        registry.register(HandlerRegistration(name="weather", handler=echo, price=0.2))

        assert registry.price_table() == {"echo": 0.01, "weather": 0.2}
        assert registry.names() == ["echo", "weather"]
